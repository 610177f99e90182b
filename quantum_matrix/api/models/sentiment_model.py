from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from quantum_matrix.core.schema import SentimentRecord


class ResolutionModel(BaseModel):
    source: str
    signal: str
    nudge: float


class MacroModel(BaseModel):
    composite_score: float
    interpretation: str
    cpi_signal: float
    rate_signal: float
    dxy_signal: float
    data_freshness: str


class SentimentResponse(BaseModel):
    id: Optional[int] = None
    score: int = Field(..., description="S³ score on a 0-100 scale, 50 = neutral")
    raw_score: float = Field(..., description="Final score in [-1, 1]")
    label: str
    confidence: float
    components: Dict[str, float]
    weights: Dict[str, float]
    disagreement_resolved: bool
    resolution: Optional[ResolutionModel] = None
    summary: str = ""
    trending_topics: List[str] = []
    macro: Optional[MacroModel] = None
    market_price_at_recording: Optional[float] = None
    recorded_at: datetime
    realized_price_change_24h: Optional[float] = None
    is_correct: Optional[bool] = None

    @classmethod
    def from_record(cls, record: SentimentRecord) -> "SentimentResponse":
        return cls(
            id=record.id,
            score=record.normalized_score,
            raw_score=record.raw_score,
            label=record.label.value,
            confidence=record.confidence,
            components=record.components.as_dict(),
            weights={k: round(v, 4) for k, v in record.weights.as_dict().items()},
            disagreement_resolved=record.disagreement_resolved,
            resolution=ResolutionModel(**vars(record.resolution)) if record.resolution else None,
            summary=record.summary,
            trending_topics=record.trending_topics,
            macro=MacroModel(**vars(record.macro)) if record.macro else None,
            market_price_at_recording=record.market_price_at_recording,
            recorded_at=record.recorded_at,
            realized_price_change_24h=record.realized_price_change_24h,
            is_correct=record.is_correct,
        )


class SentimentHistoryResponse(BaseModel):
    days: int
    count: int
    records: List[SentimentResponse]


class MacroSignalsResponse(BaseModel):
    composite_score: float
    interpretation: str
    cpi_signal: float
    rate_signal: float
    dxy_signal: float
    data_freshness: str
    last_update: str
    cpi_yoy: Optional[float] = None
    fed_rate: Optional[float] = None
    dxy: Optional[float] = None


class BandStats(BaseModel):
    count: int
    accuracy: float
    avg_change_pct: float


class CalibrationResponse(BaseModel):
    evaluated: int
    accuracy: Optional[float] = None
    bands: Dict[str, BandStats] = {}
    recent_mistakes: List[Dict[str, object]] = []
