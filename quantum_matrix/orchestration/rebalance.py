"""
Rebalance orchestrator.

One tick publishes a fresh sentiment record, then walks every allocation in
turn. Allocations with at least one live layer get a paper-trade rebalance
event; a storage failure on one allocation is recorded as a failed event and
never stops the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from quantum_matrix.core import layers as layer_ops
from quantum_matrix.core.conditions import active_strategies
from quantum_matrix.core.exceptions import AllocationNotFound, NothingToRebalance
from quantum_matrix.core.orchestrator import SentimentOrchestrator
from quantum_matrix.core.schema import (
    Allocation,
    AnalysisContext,
    RebalanceEvent,
    RebalanceStatus,
    SentimentRecord,
    Strategy,
    TriggerType,
)
from quantum_matrix.storage.repository import Repository
from quantum_matrix.utils.config_loader import EngineConfig

log = logging.getLogger(__name__)


def paper_profit(amount: float, n_active: int, score: int, config: Optional[EngineConfig] = None) -> float:
    cfg = config or EngineConfig()
    rate = cfg.paper_base_rate * n_active
    if score > cfg.paper_bonus_score_above:
        rate += cfg.paper_bullish_bonus
    return round(amount * rate, 2)


@dataclass
class RebalanceSimulation:
    wallet_address: str
    asset_id: str
    sentiment_score: int
    sentiment_label: str
    active_strategies: List[str] = field(default_factory=list)
    estimated_profit_usd: float = 0.0
    gas_cost_usd: float = 0.0

    @property
    def would_rebalance(self) -> bool:
        return bool(self.active_strategies)


def simulate_rebalance(
    allocation: Allocation,
    record: SentimentRecord,
    catalog: Dict[str, Strategy],
    config: Optional[EngineConfig] = None,
    high_volatility: bool = False,
) -> RebalanceSimulation:
    """What a rebalance would do right now. Nothing is persisted."""
    cfg = config or EngineConfig()
    layers = layer_ops.normalize(allocation.layers)
    active = active_strategies(layers, record, catalog, high_volatility, cfg.adaptive)
    return RebalanceSimulation(
        wallet_address=allocation.wallet_address,
        asset_id=allocation.asset_id,
        sentiment_score=record.normalized_score,
        sentiment_label=record.label.value,
        active_strategies=active,
        estimated_profit_usd=paper_profit(allocation.amount, len(active), record.normalized_score, cfg) if active else 0.0,
        gas_cost_usd=cfg.paper_gas_cost_usd if active else 0.0,
    )


def record_rebalance(
    repository: Repository,
    allocation: Allocation,
    record: SentimentRecord,
    active: List[str],
    trigger_type: TriggerType,
    config: Optional[EngineConfig] = None,
) -> RebalanceEvent:
    """
    Store a rebalance event as pending and mark it successful. If storage
    fails part way, a failed event carrying the error is left behind when
    possible and the original error is re-raised.
    """
    cfg = config or EngineConfig()
    event = RebalanceEvent(
        allocation_id=allocation.id,
        wallet_address=allocation.wallet_address,
        ecosystem=allocation.ecosystem,
        asset_id=allocation.asset_id,
        trigger_type=trigger_type,
        sentiment_score=record.normalized_score,
        sentiment_label=record.label,
        active_strategies=list(active),
        gas_cost_usd=cfg.paper_gas_cost_usd,
        profit_usd=paper_profit(allocation.amount, len(active), record.normalized_score, cfg),
    )

    stored: Optional[RebalanceEvent] = None
    try:
        stored = repository.create_rebalance_event(event)
        repository.update_rebalance_status(stored.id, RebalanceStatus.SUCCESS)
        stored.status = RebalanceStatus.SUCCESS
        return stored
    except Exception as e:
        _mark_failed(repository, event, stored, str(e))
        raise


def _mark_failed(repository: Repository, event: RebalanceEvent, stored: Optional[RebalanceEvent], message: str) -> None:
    try:
        if stored is not None:
            repository.update_rebalance_status(stored.id, RebalanceStatus.FAILED, message)
        else:
            event.status = RebalanceStatus.FAILED
            event.error_message = message
            event.gas_cost_usd = None
            event.profit_usd = None
            repository.create_rebalance_event(event)
    except Exception:
        log.exception("Could not record failed rebalance for allocation %s", event.allocation_id)


async def run_orchestrator_tick(
    orchestrator: SentimentOrchestrator,
    repository: Repository,
    catalog: Dict[str, Strategy],
    config: Optional[EngineConfig] = None,
    context: Optional[AnalysisContext] = None,
) -> int:
    """
    One rebalance cycle. Returns the number of successful rebalances.

    MarketDataUnavailable propagates: without a fresh record there is
    nothing to evaluate and the scheduler retries on the next tick.
    """
    cfg = config or orchestrator.config
    log.info("Rebalance tick started")

    record = await orchestrator.synthesize(context, use_cache=False)
    price = await orchestrator.market.get_reference_price()
    # the synthesized record is also the cached one
    record = repository.save_sentiment(replace(record, market_price_at_recording=price))
    log.info("Recorded sentiment %s: %d (%s)", record.id, record.normalized_score, record.label.value)

    high_volatility = context.high_volatility if context is not None else False
    allocations = repository.list_allocations()
    rebalanced = 0
    failed = 0

    for allocation in allocations:
        if not allocation.layers:
            continue
        layers = layer_ops.normalize(allocation.layers)
        active = active_strategies(layers, record, catalog, high_volatility, cfg.adaptive)
        if not active:
            continue
        try:
            record_rebalance(repository, allocation, record, active, TriggerType.SENTIMENT_AUTO, cfg)
            rebalanced += 1
        except Exception:
            failed += 1
            log.exception("Rebalance failed for %s/%s", allocation.wallet_address, allocation.asset_id)

    log.info(
        "Rebalance tick complete: %d of %d allocations rebalanced, %d failed",
        rebalanced, len(allocations), failed,
    )
    return rebalanced


async def trigger_manual_rebalance(
    repository: Repository,
    orchestrator: SentimentOrchestrator,
    wallet_address: str,
    asset_id: str,
    catalog: Dict[str, Strategy],
    config: Optional[EngineConfig] = None,
) -> RebalanceEvent:
    """
    Record a manual rebalance for one allocation against the latest stored
    sentiment. Raises NothingToRebalance when no layer is active; no event is
    written in that case.
    """
    cfg = config or orchestrator.config
    allocation = repository.get_allocation(wallet_address, asset_id)
    if allocation is None:
        raise AllocationNotFound(f"No allocation for {wallet_address}/{asset_id}")

    record = repository.latest_sentiment()
    if record is None:
        record = repository.save_sentiment(await orchestrator.synthesize())

    active = active_strategies(layer_ops.normalize(allocation.layers), record, catalog, False, cfg.adaptive)
    if not active:
        raise NothingToRebalance(
            f"No active layer for {wallet_address}/{asset_id} at {record.normalized_score} ({record.label.value})"
        )
    event = record_rebalance(repository, allocation, record, active, TriggerType.MANUAL, cfg)
    log.info("Manual rebalance recorded for %s/%s: %s", wallet_address, asset_id, active)
    return event
