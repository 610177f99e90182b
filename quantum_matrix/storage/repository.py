from __future__ import annotations

import copy
import itertools
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from quantum_matrix.core.exceptions import FeedbackAlreadyRecorded, PersistenceError
from quantum_matrix.core.schema import (
    Allocation,
    RebalanceEvent,
    RebalanceStatus,
    SentimentRecord,
    utcnow,
)


class Repository(ABC):
    """Persistence operations the engine relies on."""

    # ---------- sentiment history ----------

    @abstractmethod
    def save_sentiment(self, record: SentimentRecord) -> SentimentRecord: ...

    @abstractmethod
    def get_sentiment(self, record_id: int) -> Optional[SentimentRecord]: ...

    @abstractmethod
    def latest_sentiment(self) -> Optional[SentimentRecord]: ...

    @abstractmethod
    def sentiment_history(self, since: datetime) -> List[SentimentRecord]: ...

    @abstractmethod
    def unevaluated_sentiment(self, older_than: datetime, limit: int) -> List[SentimentRecord]:
        """Records recorded before older_than with a reference price and no realized outcome, oldest first."""

    @abstractmethod
    def evaluated_sentiment(self, limit: Optional[int] = None) -> List[SentimentRecord]: ...

    @abstractmethod
    def record_feedback(self, record_id: int, price_change_pct: float, is_correct: bool) -> None: ...

    @abstractmethod
    def prune_sentiment(self, before: datetime) -> int: ...

    # ---------- allocations ----------

    @abstractmethod
    def list_allocations(self, wallet_address: Optional[str] = None, ecosystem: Optional[str] = None) -> List[Allocation]: ...

    @abstractmethod
    def get_allocation(self, wallet_address: str, asset_id: str) -> Optional[Allocation]: ...

    @abstractmethod
    def save_allocation(self, allocation: Allocation) -> Allocation: ...

    # ---------- rebalance history ----------

    @abstractmethod
    def create_rebalance_event(self, event: RebalanceEvent) -> RebalanceEvent: ...

    @abstractmethod
    def update_rebalance_status(self, event_id: int, status: RebalanceStatus, error_message: Optional[str] = None) -> None: ...

    @abstractmethod
    def rebalance_history(self, wallet_address: str, limit: int = 50, offset: int = 0) -> Tuple[List[RebalanceEvent], int]: ...

    def ping(self) -> bool:
        return True


def check_status_transition(current: RebalanceStatus, new: RebalanceStatus) -> None:
    if current != RebalanceStatus.PENDING or new == RebalanceStatus.PENDING:
        raise ValueError(f"Illegal rebalance status transition {current.value} -> {new.value}")


class InMemoryRepository(Repository):
    """Dict-backed repository; stores and returns copies so callers never share state with it."""

    def __init__(self) -> None:
        self._sentiment: Dict[int, SentimentRecord] = {}
        self._allocations: Dict[Tuple[str, str], Allocation] = {}
        self._events: Dict[int, RebalanceEvent] = {}
        self._sentiment_ids = itertools.count(1)
        self._event_ids = itertools.count(1)

    # ---------- sentiment history ----------

    def save_sentiment(self, record: SentimentRecord) -> SentimentRecord:
        stored = copy.deepcopy(record)
        stored.id = next(self._sentiment_ids)
        self._sentiment[stored.id] = stored
        return copy.deepcopy(stored)

    def get_sentiment(self, record_id: int) -> Optional[SentimentRecord]:
        rec = self._sentiment.get(record_id)
        return copy.deepcopy(rec) if rec else None

    def latest_sentiment(self) -> Optional[SentimentRecord]:
        if not self._sentiment:
            return None
        rec = max(self._sentiment.values(), key=lambda r: (r.recorded_at, r.id))
        return copy.deepcopy(rec)

    def sentiment_history(self, since: datetime) -> List[SentimentRecord]:
        rows = [r for r in self._sentiment.values() if r.recorded_at >= since]
        rows.sort(key=lambda r: r.recorded_at, reverse=True)
        return copy.deepcopy(rows)

    def unevaluated_sentiment(self, older_than: datetime, limit: int) -> List[SentimentRecord]:
        rows = [
            r for r in self._sentiment.values()
            if r.realized_price_change_24h is None
            and r.market_price_at_recording
            and r.recorded_at < older_than
        ]
        rows.sort(key=lambda r: r.recorded_at)
        return copy.deepcopy(rows[:limit])

    def evaluated_sentiment(self, limit: Optional[int] = None) -> List[SentimentRecord]:
        rows = [r for r in self._sentiment.values() if r.is_evaluated]
        rows.sort(key=lambda r: r.recorded_at, reverse=True)
        return copy.deepcopy(rows[:limit] if limit else rows)

    def record_feedback(self, record_id: int, price_change_pct: float, is_correct: bool) -> None:
        rec = self._sentiment.get(record_id)
        if rec is None:
            raise PersistenceError(f"Sentiment record {record_id} not found")
        if rec.is_evaluated:
            raise FeedbackAlreadyRecorded(f"Sentiment record {record_id} already evaluated")
        rec.realized_price_change_24h = price_change_pct
        rec.is_correct = is_correct

    def prune_sentiment(self, before: datetime) -> int:
        stale = [k for k, r in self._sentiment.items() if r.recorded_at < before]
        for k in stale:
            del self._sentiment[k]
        return len(stale)

    # ---------- allocations ----------

    def list_allocations(self, wallet_address: Optional[str] = None, ecosystem: Optional[str] = None) -> List[Allocation]:
        rows = [
            a for a in self._allocations.values()
            if (wallet_address is None or a.wallet_address == wallet_address)
            and (ecosystem is None or a.ecosystem == ecosystem)
        ]
        rows.sort(key=lambda a: a.created_at)
        return copy.deepcopy(rows)

    def get_allocation(self, wallet_address: str, asset_id: str) -> Optional[Allocation]:
        alloc = self._allocations.get((wallet_address, asset_id))
        return copy.deepcopy(alloc) if alloc else None

    def save_allocation(self, allocation: Allocation) -> Allocation:
        stored = copy.deepcopy(allocation)
        existing = self._allocations.get((stored.wallet_address, stored.asset_id))
        if existing is not None:
            stored.id = existing.id
            stored.created_at = existing.created_at
        stored.updated_at = utcnow()
        self._allocations[(stored.wallet_address, stored.asset_id)] = stored
        return copy.deepcopy(stored)

    # ---------- rebalance history ----------

    def create_rebalance_event(self, event: RebalanceEvent) -> RebalanceEvent:
        stored = copy.deepcopy(event)
        stored.id = next(self._event_ids)
        self._events[stored.id] = stored
        return copy.deepcopy(stored)

    def update_rebalance_status(self, event_id: int, status: RebalanceStatus, error_message: Optional[str] = None) -> None:
        event = self._events.get(event_id)
        if event is None:
            raise PersistenceError(f"Rebalance event {event_id} not found")
        check_status_transition(event.status, status)
        event.status = status
        event.error_message = error_message

    def rebalance_history(self, wallet_address: str, limit: int = 50, offset: int = 0) -> Tuple[List[RebalanceEvent], int]:
        rows = [e for e in self._events.values() if e.wallet_address == wallet_address]
        rows.sort(key=lambda e: (e.executed_at, e.id), reverse=True)
        return copy.deepcopy(rows[offset:offset + limit]), len(rows)
