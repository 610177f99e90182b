from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from quantum_matrix.core.schema import Allocation, Condition, RebalanceEvent


class LayerModel(BaseModel):
    id: str
    strategy_id: str
    condition: str
    weight: float


class AllocationResponse(BaseModel):
    id: str
    wallet_address: str
    asset_id: str
    ecosystem: str
    asset_symbol: str = ""
    amount: float = 0.0
    layers: List[LayerModel]
    total_weight: float
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> "AllocationResponse":
        return cls(
            id=allocation.id,
            wallet_address=allocation.wallet_address,
            asset_id=allocation.asset_id,
            ecosystem=allocation.ecosystem,
            asset_symbol=allocation.asset_symbol,
            amount=allocation.amount,
            layers=[
                LayerModel(id=l.id, strategy_id=l.strategy_id, condition=l.condition.value, weight=round(l.weight, 6))
                for l in allocation.layers
            ],
            total_weight=round(allocation.total_weight(), 6),
            created_at=allocation.created_at,
            updated_at=allocation.updated_at,
        )


class AddLayerRequest(BaseModel):
    strategy_id: str
    condition: str = Condition.ALWAYS.value
    ecosystem: str = ""
    amount: Optional[float] = Field(None, ge=0)
    asset_symbol: Optional[str] = None


class UpdateLayerRequest(BaseModel):
    weight: Optional[float] = Field(None, allow_inf_nan=False)
    condition: Optional[str] = None


class RebalanceEventResponse(BaseModel):
    id: Optional[int] = None
    allocation_id: str
    wallet_address: str
    ecosystem: str
    asset_id: str
    trigger_type: str
    sentiment_score: Optional[int] = None
    sentiment_label: Optional[str] = None
    active_strategies: List[str]
    status: str
    error_message: Optional[str] = None
    gas_cost_usd: Optional[float] = None
    profit_usd: Optional[float] = None
    executed_at: datetime

    @classmethod
    def from_event(cls, event: RebalanceEvent) -> "RebalanceEventResponse":
        return cls(
            id=event.id,
            allocation_id=event.allocation_id,
            wallet_address=event.wallet_address,
            ecosystem=event.ecosystem,
            asset_id=event.asset_id,
            trigger_type=event.trigger_type.value,
            sentiment_score=event.sentiment_score,
            sentiment_label=event.sentiment_label.value if event.sentiment_label else None,
            active_strategies=event.active_strategies,
            status=event.status.value,
            error_message=event.error_message,
            gas_cost_usd=event.gas_cost_usd,
            profit_usd=event.profit_usd,
            executed_at=event.executed_at,
        )


class RebalanceHistoryResponse(BaseModel):
    wallet_address: str
    total: int
    limit: int
    offset: int
    events: List[RebalanceEventResponse]


class SimulateRequest(BaseModel):
    wallet_address: str
    asset_id: str
    high_volatility: bool = False


class SimulationResponse(BaseModel):
    wallet_address: str
    asset_id: str
    sentiment_score: int
    sentiment_label: str
    active_strategies: List[str]
    would_rebalance: bool
    estimated_profit_usd: float
    gas_cost_usd: float
