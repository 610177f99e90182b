from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Protocol, Tuple

from quantum_matrix.core.cache import CacheService
from quantum_matrix.core.composite_scorer import CompositeScorer
from quantum_matrix.core.schema import (
    AnalysisContext,
    MacroDetails,
    SentimentRecord,
    SentimentSignal,
    SignalComponents,
    utcnow,
)
from quantum_matrix.core.weight_allocator import WeightAllocator
from quantum_matrix.pipelines.lexicon.lexicon_sentiment import lexicon_score
from quantum_matrix.pipelines.language_model.lm_sentiment import language_model_signal
from quantum_matrix.pipelines.market.market_data import MarketData, MarketDataClient
from quantum_matrix.pipelines.macros.macros_sentiment import MacroSignalProvider, MacroSignals
from quantum_matrix.pipelines.news.news_sentiment import news_trend_score
from quantum_matrix.pipelines.social.social_sentiment import social_score
from quantum_matrix.utils.config_loader import EngineConfig, SourcesConfig
from quantum_matrix.utils.tasks import gather_settled

log = logging.getLogger(__name__)

SENTIMENT_CACHE_KEY = "s3:sentiment"


class LanguageModelScorer(Protocol):
    async def score(self, market: MarketData) -> float:
        """0-100 reading, 50 = neutral."""


class SentimentOrchestrator:
    """
    Produces the S³ sentiment record.

    Fetches market inputs once, runs the five extractors concurrently with a
    timeout each, substitutes fallbacks for any that fail, and hands the
    components to the CompositeScorer. The default-context result is cached.
    """

    def __init__(
        self,
        market: MarketDataClient,
        language_model: LanguageModelScorer,
        macro: MacroSignalProvider,
        cache: Optional[CacheService] = None,
        config: Optional[EngineConfig] = None,
        sources: Optional[SourcesConfig] = None,
    ) -> None:
        self.market = market
        self.language_model = language_model
        self.macro = macro
        self.cache = cache or CacheService()
        self.config = config or EngineConfig()
        self.sources = sources or SourcesConfig()
        self.allocator = WeightAllocator(self.config)
        self.scorer = CompositeScorer(self.config)

    # ---------- extractors ----------

    async def _lexicon(self, market: MarketData) -> float:
        return lexicon_score(market.fear_greed)

    async def _social(self, market: MarketData) -> float:
        return await asyncio.to_thread(social_score, market.posts)

    async def _news(self, market: MarketData) -> float:
        return await asyncio.to_thread(
            news_trend_score, market.news, self.sources.credibility, self.sources.default_credibility,
        )

    async def _language_model(self, market: MarketData) -> float:
        return language_model_signal(await self.language_model.score(market))

    async def _macro(self) -> MacroSignals:
        return await self.macro.get_macro_signals()

    async def collect_signals(self, market: MarketData) -> Tuple[Dict[str, SentimentSignal], Optional[MacroDetails]]:
        cfg = self.config
        settled = await gather_settled(
            {
                "lexicon": self._lexicon(market),
                "social": self._social(market),
                "news_trend": self._news(market),
                "language_model": self._language_model(market),
                "macro": self._macro(),
            },
            timeout={
                "lexicon": cfg.extractor_timeout_seconds,
                "social": cfg.extractor_timeout_seconds,
                "news_trend": cfg.extractor_timeout_seconds,
                "language_model": cfg.language_model_timeout_seconds,
                "macro": cfg.extractor_timeout_seconds,
            },
        )

        now = utcnow()
        signals: Dict[str, SentimentSignal] = {}
        for name in ("lexicon", "social", "news_trend"):
            result = settled[name]
            if result.ok:
                signals[name] = SentimentSignal(source=name, timestamp=now, score=float(result.value))
            else:
                log.warning("%s extractor failed: %r, using 0", name, result.error)
                signals[name] = SentimentSignal(source=name, timestamp=now, score=0.0,
                                                fallback=True, detail=repr(result.error))

        lm = settled["language_model"]
        if lm.ok:
            signals["language_model"] = SentimentSignal(source="language_model", timestamp=now, score=float(lm.value))
        else:
            substitute = signals["lexicon"].score * cfg.language_model_fallback_factor
            log.warning("Language model unavailable (%r), falling back to lexicon x%.2f",
                        lm.error, cfg.language_model_fallback_factor)
            signals["language_model"] = SentimentSignal(source="language_model", timestamp=now, score=substitute,
                                                        fallback=True, detail=repr(lm.error))

        macro = settled["macro"]
        details: Optional[MacroDetails] = None
        if macro.ok:
            details = macro.value.details()
            signals["macro"] = SentimentSignal(source="macro", timestamp=now, score=macro.value.composite_score,
                                               detail=macro.value.interpretation)
        else:
            log.warning("Macro signals unavailable: %r, using 0", macro.error)
            signals["macro"] = SentimentSignal(source="macro", timestamp=now, score=0.0,
                                               fallback=True, detail=repr(macro.error))

        return signals, details

    # ---------- synthesis ----------

    async def synthesize(self, context: Optional[AnalysisContext] = None, use_cache: bool = True) -> SentimentRecord:
        """
        Published sentiment for a context. Requests without a context share
        one cached record; any explicit context is always computed fresh.
        Raises MarketDataUnavailable when no market input could be fetched.
        """
        default_context = context is None
        if default_context and use_cache:
            cached = self.cache.get(SENTIMENT_CACHE_KEY)
            if cached is not None:
                log.debug("Returning cached S³ sentiment")
                return cached

        market = await self.market.get_aggregated_data()
        signals, macro_details = await self.collect_signals(market)

        components = SignalComponents(**{name: s.score for name, s in signals.items()})
        weights = self.allocator.allocate(context or AnalysisContext())
        record = self.scorer.score(
            components,
            weights,
            fear_greed=market.fear_greed,
            trending_topics=market.trending,
            macro=macro_details,
        )

        if default_context:
            self.cache.set(SENTIMENT_CACHE_KEY, record, self.config.cache_ttl_seconds)
        return record

    async def debug_breakdown(self) -> Dict[str, Dict[str, object]]:
        """Per-extractor score and fallback flag for the current market inputs."""
        market = await self.market.get_aggregated_data()
        signals, _ = await self.collect_signals(market)
        return {
            name: {"score": round(s.score, 4), "fallback": s.fallback, "detail": s.detail}
            for name, s in signals.items()
        }

    def invalidate(self) -> None:
        self.cache.delete(SENTIMENT_CACHE_KEY)
