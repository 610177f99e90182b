"""
Layer activation rules.

`is_layer_active` is the single answer to "is this strategy layer live right
now". The API uses it for display and for simulations, the rebalance job uses
it to decide what to record, so both always agree.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from quantum_matrix.core.schema import (
    Condition,
    RiskTier,
    SentimentLabel,
    SentimentRecord,
    Strategy,
    StrategyLayer,
)
from quantum_matrix.utils.config_loader import AdaptiveBands

LABEL_CONDITIONS: Dict[Condition, SentimentLabel] = {
    Condition.BULLISH: SentimentLabel.BULLISH,
    Condition.BEARISH: SentimentLabel.BEARISH,
    Condition.NEUTRAL: SentimentLabel.NEUTRAL,
    Condition.EUPHORIC: SentimentLabel.EUPHORIC,
}


def adaptive_tier_active(risk_tier: RiskTier, score: int, bands: Optional[AdaptiveBands] = None) -> bool:
    """
    Risk tier vs score band. Bands overlap on purpose (Medium and High are
    both live between 61 and 80) and every score activates at least one tier.
    """
    b = bands or AdaptiveBands()
    if risk_tier in (RiskTier.HIGH, RiskTier.DEGEN):
        return score >= b.aggressive_min_score
    if risk_tier == RiskTier.MEDIUM:
        return b.medium_min_score <= score <= b.medium_max_score
    if risk_tier == RiskTier.LOW:
        return score <= b.low_max_score
    raise ValueError(f"Unhandled risk tier {risk_tier!r}")


def is_layer_active(
    condition: Condition,
    risk_tier: RiskTier,
    record: SentimentRecord,
    high_volatility: bool = False,
    bands: Optional[AdaptiveBands] = None,
) -> bool:
    if condition == Condition.ALWAYS:
        return True
    if condition in LABEL_CONDITIONS:
        return record.label == LABEL_CONDITIONS[condition]
    if condition == Condition.HIGH_VOLATILITY:
        return bool(high_volatility)
    if condition == Condition.AI_ADAPTIVE:
        return adaptive_tier_active(risk_tier, record.normalized_score, bands)
    raise ValueError(f"Unhandled condition {condition!r}")


def active_strategies(
    layers: Iterable[StrategyLayer],
    record: SentimentRecord,
    catalog: Dict[str, Strategy],
    high_volatility: bool = False,
    bands: Optional[AdaptiveBands] = None,
) -> List[str]:
    """Strategy ids of the layers that are live, in layer order."""
    out: List[str] = []
    for layer in layers:
        strategy = catalog.get(layer.strategy_id)
        # unknown strategies are treated as medium risk for AIAdaptive
        tier = strategy.risk_tier if strategy else RiskTier.MEDIUM
        if is_layer_active(layer.condition, tier, record, high_volatility, bands):
            out.append(layer.strategy_id)
    return out
