import pytest

from quantum_matrix.core.exceptions import MarketDataUnavailable
from quantum_matrix.core.orchestrator import SENTIMENT_CACHE_KEY
from quantum_matrix.core.schema import AnalysisContext, SentimentLabel, TimeHorizon

from tests.conftest import FakeLanguageModel, FakeMacro


class TestSynthesis:
    """End-to-end synthesis over fake inputs."""

    @pytest.mark.asyncio
    async def test_neutral_inputs(self, orchestrator):
        record = await orchestrator.synthesize()
        assert record.raw_score == 0
        assert record.normalized_score == 50
        assert record.label == SentimentLabel.NEUTRAL
        assert record.confidence == 1.0
        assert record.trending_topics == ["BTC", "ETH"]
        assert record.macro.interpretation == "Neutral"

    @pytest.mark.asyncio
    async def test_greedy_market_is_bullish(self, orchestrator, market, language_model):
        market.data.fear_greed.value = 90
        language_model.value = 90
        record = await orchestrator.synthesize()
        assert record.components.lexicon == pytest.approx(0.8)
        assert record.components.language_model == pytest.approx(0.8)
        assert record.raw_score > 0
        assert record.normalized_score > 50

    @pytest.mark.asyncio
    async def test_market_data_unavailable_propagates(self, orchestrator, market):
        market.unavailable = True
        with pytest.raises(MarketDataUnavailable):
            await orchestrator.synthesize()
        assert orchestrator.cache.get(SENTIMENT_CACHE_KEY) is None


class TestFallbacks:
    """Failed or slow extractors are replaced without blocking the rest."""

    @pytest.mark.asyncio
    async def test_language_model_failure_uses_scaled_lexicon(self, orchestrator, market):
        market.data.fear_greed.value = 75
        orchestrator.language_model = FakeLanguageModel(error=RuntimeError("model missing"))
        breakdown = await orchestrator.debug_breakdown()
        assert breakdown["lexicon"]["score"] == pytest.approx(0.5)
        assert breakdown["language_model"]["score"] == pytest.approx(0.45)
        assert breakdown["language_model"]["fallback"] is True

    @pytest.mark.asyncio
    async def test_language_model_timeout(self, orchestrator, market):
        market.data.fear_greed.value = 25
        orchestrator.config.language_model_timeout_seconds = 0.05
        orchestrator.language_model = FakeLanguageModel(value=99, delay=1.0)
        record = await orchestrator.synthesize()
        assert record.components.language_model == pytest.approx(-0.45)

    @pytest.mark.asyncio
    async def test_macro_failure_is_zero(self, orchestrator):
        orchestrator.macro = FakeMacro(error=RuntimeError("fred down"))
        record = await orchestrator.synthesize()
        assert record.components.macro == 0.0
        assert record.macro is None

    @pytest.mark.asyncio
    async def test_macro_score_flows_through(self, orchestrator):
        orchestrator.macro = FakeMacro(score=-0.4)
        record = await orchestrator.synthesize()
        assert record.components.macro == pytest.approx(-0.4)
        assert record.raw_score < 0


class TestCaching:
    """Only the default context is cached."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_fetch(self, orchestrator, market):
        first = await orchestrator.synthesize()
        second = await orchestrator.synthesize()
        assert market.calls == 1
        assert second is first

    @pytest.mark.asyncio
    async def test_context_requests_bypass_cache(self, orchestrator, market):
        cached = await orchestrator.synthesize()
        ctx = AnalysisContext(time_horizon=TimeHorizon.SHORT)
        fresh = await orchestrator.synthesize(ctx)
        assert market.calls == 2
        assert fresh is not cached
        assert orchestrator.cache.get(SENTIMENT_CACHE_KEY) is cached

    @pytest.mark.asyncio
    async def test_refresh_overwrites_default_entry(self, orchestrator, market):
        await orchestrator.synthesize()
        market.data.fear_greed.value = 80
        fresh = await orchestrator.synthesize(use_cache=False)
        assert market.calls == 2
        assert orchestrator.cache.get(SENTIMENT_CACHE_KEY) is fresh
        orchestrator.invalidate()
        assert orchestrator.cache.get(SENTIMENT_CACHE_KEY) is None
