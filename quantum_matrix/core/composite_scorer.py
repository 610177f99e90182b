from __future__ import annotations

import logging
from typing import List, Optional

from quantum_matrix.core.confidence import estimate_confidence, is_disagreement, resolve_disagreement
from quantum_matrix.core.schema import (
    SIGNAL_KEYS,
    MacroDetails,
    SentimentLabel,
    SentimentRecord,
    SignalComponents,
    SignalWeights,
    utcnow,
)
from quantum_matrix.pipelines.market.market_data import FearGreedReading
from quantum_matrix.utils.config_loader import EngineConfig
from quantum_matrix.utils.sentiment_scaler import clamp, to_normalized_scale

log = logging.getLogger(__name__)


def weighted_score(components: SignalComponents, weights: SignalWeights) -> float:
    c = components.as_dict()
    w = weights.as_dict()
    return sum(w[k] * c[k] for k in SIGNAL_KEYS)


def compute_final_score(
    components: SignalComponents,
    weights: SignalWeights,
    confidence: float,
    nudge: float = 0.0,
) -> float:
    """(Σ w·c + nudge) · confidence, clipped to [-1, 1]. Confidence only ever dampens."""
    return clamp((weighted_score(components, weights) + nudge) * confidence, -1.0, 1.0)


def score_to_label(score: float) -> SentimentLabel:
    if score <= -0.3:
        return SentimentLabel.BEARISH
    if score <= 0.2:
        return SentimentLabel.NEUTRAL
    if score <= 0.6:
        return SentimentLabel.BULLISH
    return SentimentLabel.EUPHORIC


def build_summary(score: float, confidence: float, fear_greed: Optional[FearGreedReading]) -> str:
    label = score_to_label(score)
    fng = f" Fear & Greed Index at {fear_greed.value} ({fear_greed.classification})." if fear_greed else ""
    return (
        f"Market sentiment is {label.value.lower()} (S³: {to_normalized_scale(score)}/100) "
        f"with {round(confidence * 100)}% confidence.{fng}"
    )


class CompositeScorer:
    """
    Combines the five signal components into one published sentiment record:
    weighted sum, agreement-based confidence, disagreement nudge, label.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()

    def score(
        self,
        components: SignalComponents,
        weights: SignalWeights,
        fear_greed: Optional[FearGreedReading] = None,
        trending_topics: Optional[List[str]] = None,
        macro: Optional[MacroDetails] = None,
    ) -> SentimentRecord:
        confidence = estimate_confidence(components, self.config)
        raw = weighted_score(components, weights)

        resolution = None
        nudge = 0.0
        if is_disagreement(confidence, self.config):
            fng_value = fear_greed.value if fear_greed is not None else None
            adjusted, resolution = resolve_disagreement(raw, fng_value, self.config)
            nudge = adjusted - raw

        final = compute_final_score(components, weights, confidence, nudge)

        record = SentimentRecord(
            raw_score=round(final, 3),
            normalized_score=to_normalized_scale(final),
            label=score_to_label(final),
            confidence=round(confidence, 2),
            components=components,
            weights=weights,
            disagreement_resolved=resolution is not None,
            resolution=resolution,
            summary=build_summary(final, confidence, fear_greed),
            trending_topics=list(trending_topics or [])[:5],
            macro=macro,
            recorded_at=utcnow(),
        )

        log.info(
            "S³ score calculated: score=%.3f normalized=%d label=%s confidence=%.2f macro_weight=%.3f",
            record.raw_score, record.normalized_score, record.label.value,
            record.confidence, weights.macro,
        )
        return record
