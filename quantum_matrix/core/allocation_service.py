from __future__ import annotations

import copy
import logging
from typing import Dict, List, Optional

from quantum_matrix.core import layers as layer_ops
from quantum_matrix.core.coalescer import WriteCoalescer
from quantum_matrix.core.exceptions import AllocationNotFound, UnknownStrategy
from quantum_matrix.core.schema import Allocation, Condition, Strategy, utcnow
from quantum_matrix.storage.repository import Repository

log = logging.getLogger(__name__)


class AllocationService:
    """
    Entry point for allocation edits.

    Every mutation computes the new layer list from a copy of the current
    allocation and hands the result to storage, so a failed write leaves the
    stored allocation as it was. With a coalescer, writes are debounced per
    (wallet, asset) and reads see the pending state first.
    """

    def __init__(
        self,
        repository: Repository,
        catalog: Dict[str, Strategy],
        coalescer: Optional[WriteCoalescer] = None,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.coalescer = coalescer

    # ---------- reads ----------

    def _current(self, wallet_address: str, asset_id: str) -> Optional[Allocation]:
        if self.coalescer is not None:
            pending = self.coalescer.peek((wallet_address, asset_id))
            if pending is not None:
                return copy.deepcopy(pending)
        return self.repository.get_allocation(wallet_address, asset_id)

    def _balanced(self, allocation: Allocation) -> Allocation:
        if not layer_ops.is_balanced(allocation.layers):
            log.warning(
                "Allocation %s/%s weights sum to %.4f, renormalizing",
                allocation.wallet_address, allocation.asset_id, allocation.total_weight(),
            )
            allocation.layers = layer_ops.normalize(allocation.layers)
        return allocation

    def get(self, wallet_address: str, asset_id: str) -> Allocation:
        allocation = self._current(wallet_address, asset_id)
        if allocation is None:
            raise AllocationNotFound(f"No allocation for {wallet_address}/{asset_id}")
        return self._balanced(allocation)

    def list_allocations(self, wallet_address: str, ecosystem: Optional[str] = None) -> List[Allocation]:
        stored = {
            (a.wallet_address, a.asset_id): a
            for a in self.repository.list_allocations(wallet_address, ecosystem)
        }
        if self.coalescer is not None:
            for pending in self.coalescer.pending():
                if pending.wallet_address != wallet_address:
                    continue
                if ecosystem is not None and pending.ecosystem != ecosystem:
                    continue
                stored[(pending.wallet_address, pending.asset_id)] = copy.deepcopy(pending)
        rows = sorted(stored.values(), key=lambda a: a.created_at)
        return [self._balanced(a) for a in rows]

    # ---------- writes ----------

    def _persist(self, allocation: Allocation) -> Allocation:
        allocation.updated_at = utcnow()
        if self.coalescer is not None:
            self.coalescer.submit((allocation.wallet_address, allocation.asset_id), copy.deepcopy(allocation))
            return allocation
        return self.repository.save_allocation(allocation)

    def _check_strategy(self, strategy_id: str) -> None:
        if strategy_id not in self.catalog:
            raise UnknownStrategy(f"Unknown strategy {strategy_id!r}")

    def add_layer(
        self,
        wallet_address: str,
        asset_id: str,
        strategy_id: str,
        condition: Condition = Condition.ALWAYS,
        ecosystem: str = "",
        amount: Optional[float] = None,
        asset_symbol: Optional[str] = None,
    ) -> Allocation:
        """Drop a strategy onto an asset, creating the allocation on first drop."""
        self._check_strategy(strategy_id)
        allocation = self._current(wallet_address, asset_id)
        if allocation is None:
            allocation = Allocation(wallet_address=wallet_address, asset_id=asset_id, ecosystem=ecosystem)
        if amount is not None:
            allocation.amount = float(amount)
        if asset_symbol:
            allocation.asset_symbol = asset_symbol

        allocation.layers = layer_ops.add_layer(allocation.layers, strategy_id, condition)
        log.info("Added %s layer to %s/%s (%d layers)", strategy_id, wallet_address, asset_id, len(allocation.layers))
        return self._persist(allocation)

    def update_weight(self, wallet_address: str, asset_id: str, layer_id: str, weight: float) -> Allocation:
        allocation = self.get(wallet_address, asset_id)
        allocation.layers = layer_ops.update_weight(allocation.layers, layer_id, weight)
        return self._persist(allocation)

    def update_condition(self, wallet_address: str, asset_id: str, layer_id: str, condition: Condition) -> Allocation:
        allocation = self.get(wallet_address, asset_id)
        allocation.layers = layer_ops.update_condition(allocation.layers, layer_id, condition)
        return self._persist(allocation)

    def update_layer(
        self,
        wallet_address: str,
        asset_id: str,
        layer_id: str,
        weight: Optional[float] = None,
        condition: Optional[Condition] = None,
    ) -> Allocation:
        """Apply a condition and/or weight change as a single write."""
        if weight is None and condition is None:
            raise ValueError("Nothing to update: provide weight and/or condition")
        allocation = self.get(wallet_address, asset_id)
        layers = allocation.layers
        if condition is not None:
            layers = layer_ops.update_condition(layers, layer_id, condition)
        if weight is not None:
            layers = layer_ops.update_weight(layers, layer_id, weight)
        allocation.layers = layers
        return self._persist(allocation)

    def remove_layer(self, wallet_address: str, asset_id: str, layer_id: str) -> Allocation:
        allocation = self.get(wallet_address, asset_id)
        allocation.layers = layer_ops.remove_layer(allocation.layers, layer_id)
        return self._persist(allocation)

    def clear(self, wallet_address: str, asset_id: str) -> Allocation:
        allocation = self.get(wallet_address, asset_id)
        allocation.layers = []
        log.info("Cleared allocation %s/%s", wallet_address, asset_id)
        return self._persist(allocation)

    def flush(self) -> int:
        return self.coalescer.flush() if self.coalescer is not None else 0
