import asyncio
import logging
from typing import List, Optional

from quantum_matrix.core.exceptions import EngineError
from quantum_matrix.pipelines.market.market_data import MarketData
from quantum_matrix.utils.sentiment_scaler import clamp, index_to_signal

log = logging.getLogger(__name__)

MAX_CHARS = 512


class LanguageModelUnavailable(EngineError):
    pass


class TransformersScorer:
    """
    Scores market text with a Hugging Face sentiment pipeline and reports a
    0-100 reading (50 = neutral). The pipeline is loaded on first use.
    """

    def __init__(self, model: Optional[str] = None) -> None:
        self.model = model
        self._nlp = None

    def _pipeline(self):
        if self._nlp is None:
            try:
                from transformers import pipeline
                self._nlp = pipeline("sentiment-analysis", model=self.model) if self.model else pipeline("sentiment-analysis")
            except Exception as e:
                raise LanguageModelUnavailable(f"Sentiment pipeline could not be loaded: {e}") from e
        return self._nlp

    def score_texts(self, texts: List[str]) -> float:
        texts = [t[:MAX_CHARS] for t in texts if t and t.strip()]
        if not texts:
            raise ValueError("No text to score")

        nlp = self._pipeline()
        signed = []
        for r in nlp(texts):
            label = r.get("label", "")
            score = float(r.get("score", 0.0))
            signed.append(score if "POS" in label.upper() else -score)

        mean = sum(signed) / len(signed)
        return clamp((mean + 1.0) * 50.0, 0.0, 100.0)

    async def score(self, market: MarketData) -> float:
        texts = [n.title for n in market.news] + [p.title for p in market.posts]
        return await asyncio.to_thread(self.score_texts, texts)


def language_model_signal(score_0_100: float) -> float:
    return index_to_signal(score_0_100, 50.0)
