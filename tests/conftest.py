import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Optional

import pytest

from quantum_matrix.api.core.settings import Settings
from quantum_matrix.core.cache import CacheService
from quantum_matrix.core.composite_scorer import score_to_label
from quantum_matrix.core.engine import build_engine
from quantum_matrix.core.exceptions import MarketDataUnavailable
from quantum_matrix.core.orchestrator import SentimentOrchestrator
from quantum_matrix.core.schema import (
    SentimentRecord,
    SignalComponents,
    SignalWeights,
    utcnow,
)
from quantum_matrix.pipelines.macros.macros_sentiment import MacroSignals
from quantum_matrix.pipelines.market.market_data import FearGreedReading, MarketData
from quantum_matrix.storage.repository import InMemoryRepository
from quantum_matrix.utils.config_loader import EngineConfig, SourcesConfig, load_strategy_catalog

ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"


class FrozenClock:
    """Monotonic clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMarket:
    def __init__(self, fear_greed: Optional[int] = 50, price: Optional[float] = 100.0):
        self.data = MarketData(
            fear_greed=FearGreedReading(fear_greed, "Neutral") if fear_greed is not None else None,
            trending=["BTC", "ETH"],
        )
        self.price = price
        self.unavailable = False
        self.calls = 0

    async def get_aggregated_data(self) -> MarketData:
        self.calls += 1
        if self.unavailable:
            raise MarketDataUnavailable("all sources down")
        return self.data

    async def get_reference_price(self) -> Optional[float]:
        return self.price


class FakeLanguageModel:
    def __init__(self, value: float = 50.0, error: Optional[Exception] = None, delay: float = 0.0):
        self.value = value
        self.error = error
        self.delay = delay

    async def score(self, market) -> float:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


def neutral_macro(score: float = 0.0) -> MacroSignals:
    return MacroSignals(
        cpi=None, fed_rate=None, dxy=None,
        cpi_signal=score, rate_signal=score, dxy_signal=score,
        composite_score=score,
        interpretation="Neutral",
        data_freshness="fallback",
        last_update="",
    )


class FakeMacro:
    def __init__(self, score: float = 0.0, error: Optional[Exception] = None):
        self.signals = neutral_macro(score)
        self.error = error

    async def get_macro_signals(self) -> MacroSignals:
        if self.error is not None:
            raise self.error
        return self.signals


def make_record(score: int, recorded_at=None, price: Optional[float] = 100.0) -> SentimentRecord:
    raw = (score - 50) / 50
    return SentimentRecord(
        raw_score=raw,
        normalized_score=score,
        label=score_to_label(raw),
        confidence=1.0,
        components=SignalComponents(),
        weights=SignalWeights(),
        market_price_at_recording=price,
        recorded_at=recorded_at or utcnow(),
    )


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def catalog():
    return load_strategy_catalog(str(CONFIG_DIR / "strategies.yaml"))


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def language_model():
    return FakeLanguageModel()


@pytest.fixture
def macro():
    return FakeMacro()


@pytest.fixture
def orchestrator(market, language_model, macro, config):
    return SentimentOrchestrator(
        market=market,
        language_model=language_model,
        macro=macro,
        cache=CacheService(),
        config=config,
        sources=SourcesConfig(),
    )


@pytest.fixture
def settings():
    return Settings(
        persist_delay_seconds=0,
        storage_backend="memory",
        engine_config_path=str(CONFIG_DIR / "engine.yaml"),
        sources_config_path=str(CONFIG_DIR / "sources.yaml"),
        strategies_config_path=str(CONFIG_DIR / "strategies.yaml"),
    )


@pytest.fixture
def engine(settings, repository, market, language_model, macro):
    return build_engine(settings, repository=repository, market=market, language_model=language_model, macro=macro)


@pytest.fixture
def day_old():
    return utcnow() - timedelta(hours=25)
