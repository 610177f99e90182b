from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_id() -> str:
    return uuid.uuid4().hex[:12]


class _LenientEnum(str, Enum):
    """Accepts values case-insensitively and with spaces/underscores stripped."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.replace(" ", "").replace("_", "").lower()
            for member in cls:
                if member.value.replace("_", "").lower() == key:
                    return member
            for alias, target in getattr(cls, "_aliases", lambda: {})().items():
                if alias == key:
                    return cls(target)
        return None


class SentimentLabel(_LenientEnum):
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"
    BULLISH = "Bullish"
    EUPHORIC = "Euphoric"


class Condition(_LenientEnum):
    ALWAYS = "Always"
    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"
    EUPHORIC = "Euphoric"
    HIGH_VOLATILITY = "HighVolatility"
    AI_ADAPTIVE = "AIAdaptive"


class RiskTier(_LenientEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    DEGEN = "Degen"


class DataSource(_LenientEnum):
    SOCIAL = "social"
    NEWS = "news"
    MIXED = "mixed"

    @staticmethod
    def _aliases():
        return {"socialmedia": "social"}


class TimeHorizon(_LenientEnum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class AssetMaturity(_LenientEnum):
    NEW = "new"
    ESTABLISHED = "established"


class VolatilityRegime(_LenientEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class RebalanceStatus(_LenientEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TriggerType(_LenientEnum):
    SENTIMENT_AUTO = "sentiment_auto"
    MANUAL = "manual"


SIGNAL_KEYS = ("lexicon", "social", "news_trend", "language_model", "macro")


@dataclass
class SentimentSignal:
    """
    One extractor output.

    `score` is always in [-1.0, 1.0]. `fallback` is set when the extractor
    failed or timed out and the score is a substitute value.
    """
    source: str          # one of SIGNAL_KEYS
    timestamp: datetime
    score: float
    fallback: bool = False
    detail: Optional[str] = None


@dataclass
class SignalComponents:
    lexicon: float = 0.0
    social: float = 0.0
    news_trend: float = 0.0
    language_model: float = 0.0
    macro: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {k: getattr(self, k) for k in SIGNAL_KEYS}

    def values(self) -> List[float]:
        return [getattr(self, k) for k in SIGNAL_KEYS]


@dataclass
class SignalWeights:
    lexicon: float = 0.2
    social: float = 0.2
    news_trend: float = 0.2
    language_model: float = 0.2
    macro: float = 0.2

    def as_dict(self) -> Dict[str, float]:
        return {k: getattr(self, k) for k in SIGNAL_KEYS}

    def total(self) -> float:
        return sum(getattr(self, k) for k in SIGNAL_KEYS)


@dataclass
class AnalysisContext:
    data_source: DataSource = DataSource.MIXED
    time_horizon: TimeHorizon = TimeHorizon.MEDIUM
    asset_maturity: AssetMaturity = AssetMaturity.ESTABLISHED
    volatility_regime: VolatilityRegime = VolatilityRegime.NORMAL

    @classmethod
    def from_partial(cls, **values: Any) -> "AnalysisContext":
        """Build a context from optional raw values; None means default."""
        ctx = cls()
        if values.get("data_source") is not None:
            ctx.data_source = DataSource(values["data_source"])
        if values.get("time_horizon") is not None:
            ctx.time_horizon = TimeHorizon(values["time_horizon"])
        if values.get("asset_maturity") is not None:
            ctx.asset_maturity = AssetMaturity(values["asset_maturity"])
        if values.get("volatility_regime") is not None:
            ctx.volatility_regime = VolatilityRegime(values["volatility_regime"])
        return ctx

    @property
    def high_volatility(self) -> bool:
        return self.volatility_regime == VolatilityRegime.HIGH


@dataclass
class Resolution:
    source: str
    signal: str    # "bullish" | "bearish" | "neutral"
    nudge: float


@dataclass
class MacroDetails:
    composite_score: float
    interpretation: str
    cpi_signal: float
    rate_signal: float
    dxy_signal: float
    data_freshness: str


@dataclass
class SentimentRecord:
    raw_score: float
    normalized_score: int
    label: SentimentLabel
    confidence: float
    components: SignalComponents
    weights: SignalWeights
    disagreement_resolved: bool = False
    resolution: Optional[Resolution] = None
    summary: str = ""
    trending_topics: List[str] = field(default_factory=list)
    macro: Optional[MacroDetails] = None
    market_price_at_recording: Optional[float] = None
    recorded_at: datetime = field(default_factory=utcnow)
    realized_price_change_24h: Optional[float] = None
    is_correct: Optional[bool] = None
    id: Optional[int] = None

    @property
    def score(self) -> int:
        return self.normalized_score

    @property
    def is_evaluated(self) -> bool:
        return self.realized_price_change_24h is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["label"] = self.label.value
        return data


@dataclass
class Strategy:
    id: str
    name: str
    risk_tier: RiskTier
    apy: float = 0.0
    type: str = ""
    description: str = ""


@dataclass
class StrategyLayer:
    strategy_id: str
    condition: Condition = Condition.ALWAYS
    weight: float = 0.0
    id: str = field(default_factory=_short_id)


@dataclass
class Allocation:
    wallet_address: str
    asset_id: str
    ecosystem: str
    layers: List[StrategyLayer] = field(default_factory=list)
    amount: float = 0.0
    asset_symbol: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def total_weight(self) -> float:
        return sum(layer.weight for layer in self.layers)


@dataclass
class RebalanceEvent:
    allocation_id: str
    wallet_address: str
    ecosystem: str
    asset_id: str
    trigger_type: TriggerType
    sentiment_score: Optional[int]
    sentiment_label: Optional[SentimentLabel]
    active_strategies: List[str] = field(default_factory=list)
    status: RebalanceStatus = RebalanceStatus.PENDING
    error_message: Optional[str] = None
    gas_cost_usd: Optional[float] = None
    profit_usd: Optional[float] = None
    executed_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None
