"""
ClickHouse-backed repository.

Sentiment and rebalance history are append-only MergeTree tables whose few
permitted updates (feedback fields, event status) go through synchronous
`ALTER TABLE ... UPDATE` mutations. Allocations live in a ReplacingMergeTree
keyed by (wallet, asset) and are always read with FINAL.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from clickhouse_driver import Client
from clickhouse_driver.errors import Error as ClickHouseError

from quantum_matrix.core.exceptions import FeedbackAlreadyRecorded, PersistenceError
from quantum_matrix.core.schema import (
    Allocation,
    Condition,
    MacroDetails,
    RebalanceEvent,
    RebalanceStatus,
    Resolution,
    SentimentLabel,
    SentimentRecord,
    SignalComponents,
    SignalWeights,
    StrategyLayer,
    TriggerType,
    utcnow,
)
from quantum_matrix.storage.repository import Repository, check_status_transition

log = logging.getLogger(__name__)

SYNC_MUTATIONS = {"mutations_sync": 1}

DDL = [
    """
    CREATE TABLE IF NOT EXISTS sentiment_history (
        id UInt64,
        recorded_at DateTime64(3, 'UTC'),
        raw_score Float64,
        normalized_score UInt8,
        label LowCardinality(String),
        confidence Float64,
        components String,
        weights String,
        disagreement_resolved UInt8,
        resolution String,
        summary String,
        trending_topics Array(String),
        macro String,
        market_price_at_recording Nullable(Float64),
        realized_price_change_24h Nullable(Float64),
        is_correct Nullable(UInt8)
    ) ENGINE = MergeTree ORDER BY (recorded_at, id)
    """,
    """
    CREATE TABLE IF NOT EXISTS allocations (
        id String,
        wallet_address String,
        asset_id String,
        ecosystem String,
        asset_symbol String,
        amount Float64,
        layers String,
        created_at DateTime64(3, 'UTC'),
        updated_at DateTime64(3, 'UTC')
    ) ENGINE = ReplacingMergeTree(updated_at) ORDER BY (wallet_address, asset_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS rebalance_history (
        id UInt64,
        allocation_id String,
        wallet_address String,
        ecosystem String,
        asset_id String,
        trigger_type LowCardinality(String),
        sentiment_score Nullable(UInt8),
        sentiment_label Nullable(String),
        active_strategies Array(String),
        status LowCardinality(String),
        error_message Nullable(String),
        gas_cost_usd Nullable(Float64),
        profit_usd Nullable(Float64),
        executed_at DateTime64(3, 'UTC')
    ) ENGINE = MergeTree ORDER BY (wallet_address, executed_at, id)
    """,
]

SENTIMENT_COLUMNS = (
    "id, recorded_at, raw_score, normalized_score, label, confidence, components, weights, "
    "disagreement_resolved, resolution, summary, trending_topics, macro, "
    "market_price_at_recording, realized_price_change_24h, is_correct"
)
ALLOCATION_COLUMNS = "id, wallet_address, asset_id, ecosystem, asset_symbol, amount, layers, created_at, updated_at"
EVENT_COLUMNS = (
    "id, allocation_id, wallet_address, ecosystem, asset_id, trigger_type, sentiment_score, "
    "sentiment_label, active_strategies, status, error_message, gas_cost_usd, profit_usd, executed_at"
)


def _new_id() -> int:
    return uuid.uuid4().int >> 65


def _dumps(obj: Any) -> str:
    return json.dumps(asdict(obj)) if obj is not None else ""


def _layers_json(layers: List[StrategyLayer]) -> str:
    return json.dumps([
        {"id": l.id, "strategy_id": l.strategy_id, "condition": l.condition.value, "weight": l.weight}
        for l in layers
    ])


def _layers_from_json(raw: str) -> List[StrategyLayer]:
    return [
        StrategyLayer(
            id=row["id"],
            strategy_id=row["strategy_id"],
            condition=Condition(row["condition"]),
            weight=float(row["weight"]),
        )
        for row in json.loads(raw or "[]")
    ]


def _sentiment_from_row(row: Tuple) -> SentimentRecord:
    (rid, recorded_at, raw, normalized, label, confidence, components, weights,
     resolved, resolution, summary, topics, macro, price, change, correct) = row
    return SentimentRecord(
        id=int(rid),
        recorded_at=recorded_at,
        raw_score=float(raw),
        normalized_score=int(normalized),
        label=SentimentLabel(label),
        confidence=float(confidence),
        components=SignalComponents(**json.loads(components)),
        weights=SignalWeights(**json.loads(weights)),
        disagreement_resolved=bool(resolved),
        resolution=Resolution(**json.loads(resolution)) if resolution else None,
        summary=summary,
        trending_topics=list(topics),
        macro=MacroDetails(**json.loads(macro)) if macro else None,
        market_price_at_recording=price,
        realized_price_change_24h=change,
        is_correct=None if correct is None else bool(correct),
    )


def _allocation_from_row(row: Tuple) -> Allocation:
    aid, wallet, asset, ecosystem, symbol, amount, layers, created_at, updated_at = row
    return Allocation(
        id=aid,
        wallet_address=wallet,
        asset_id=asset,
        ecosystem=ecosystem,
        asset_symbol=symbol,
        amount=float(amount),
        layers=_layers_from_json(layers),
        created_at=created_at,
        updated_at=updated_at,
    )


def _event_from_row(row: Tuple) -> RebalanceEvent:
    (eid, allocation_id, wallet, ecosystem, asset, trigger, score, label, active,
     status, error, gas, profit, executed_at) = row
    return RebalanceEvent(
        id=int(eid),
        allocation_id=allocation_id,
        wallet_address=wallet,
        ecosystem=ecosystem,
        asset_id=asset,
        trigger_type=TriggerType(trigger),
        sentiment_score=score,
        sentiment_label=SentimentLabel(label) if label else None,
        active_strategies=list(active),
        status=RebalanceStatus(status),
        error_message=error,
        gas_cost_usd=gas,
        profit_usd=profit,
        executed_at=executed_at,
    )


class ClickHouseRepository(Repository):
    def __init__(self, host: str = "localhost", port: int = 9000, database: str = "default",
                 client: Optional[Client] = None) -> None:
        self.client = client or Client(host=host, port=port, database=database)

    def _execute(self, query: str, params: Any = None, settings: Optional[Dict[str, Any]] = None):
        try:
            return self.client.execute(query, params, settings=settings)
        except ClickHouseError as e:
            log.error("ClickHouse query failed: %s", e)
            raise PersistenceError(str(e)) from e

    def ensure_schema(self) -> None:
        for ddl in DDL:
            self._execute(ddl)
        log.info("ClickHouse schema ready")

    def ping(self) -> bool:
        try:
            self.client.execute("SELECT 1")
            return True
        except ClickHouseError as e:
            log.error("ClickHouse ping failed: %s", e)
            return False

    # ---------- sentiment history ----------

    def save_sentiment(self, record: SentimentRecord) -> SentimentRecord:
        record = replace(record, id=_new_id())
        self._execute(f"INSERT INTO sentiment_history ({SENTIMENT_COLUMNS}) VALUES", [(
            record.id,
            record.recorded_at,
            record.raw_score,
            record.normalized_score,
            record.label.value,
            record.confidence,
            _dumps(record.components),
            _dumps(record.weights),
            int(record.disagreement_resolved),
            _dumps(record.resolution),
            record.summary,
            list(record.trending_topics),
            _dumps(record.macro),
            record.market_price_at_recording,
            None,
            None,
        )])
        return record

    def _select_sentiment(self, where: str, params: Dict[str, Any], tail: str = "") -> List[SentimentRecord]:
        rows = self._execute(f"SELECT {SENTIMENT_COLUMNS} FROM sentiment_history WHERE {where} {tail}", params)
        return [_sentiment_from_row(r) for r in rows]

    def get_sentiment(self, record_id: int) -> Optional[SentimentRecord]:
        rows = self._select_sentiment("id = %(id)s", {"id": record_id}, "LIMIT 1")
        return rows[0] if rows else None

    def latest_sentiment(self) -> Optional[SentimentRecord]:
        rows = self._select_sentiment("1", {}, "ORDER BY recorded_at DESC LIMIT 1")
        return rows[0] if rows else None

    def sentiment_history(self, since: datetime) -> List[SentimentRecord]:
        return self._select_sentiment("recorded_at >= %(since)s", {"since": since}, "ORDER BY recorded_at DESC")

    def unevaluated_sentiment(self, older_than: datetime, limit: int) -> List[SentimentRecord]:
        return self._select_sentiment(
            "realized_price_change_24h IS NULL AND market_price_at_recording > 0 AND recorded_at < %(before)s",
            {"before": older_than, "limit": limit},
            "ORDER BY recorded_at LIMIT %(limit)s",
        )

    def evaluated_sentiment(self, limit: Optional[int] = None) -> List[SentimentRecord]:
        tail = "ORDER BY recorded_at DESC" + (" LIMIT %(limit)s" if limit else "")
        return self._select_sentiment("realized_price_change_24h IS NOT NULL", {"limit": limit}, tail)

    def record_feedback(self, record_id: int, price_change_pct: float, is_correct: bool) -> None:
        current = self.get_sentiment(record_id)
        if current is None:
            raise PersistenceError(f"Sentiment record {record_id} not found")
        if current.is_evaluated:
            raise FeedbackAlreadyRecorded(f"Sentiment record {record_id} already evaluated")
        self._execute(
            "ALTER TABLE sentiment_history UPDATE realized_price_change_24h = %(pct)s, is_correct = %(ok)s "
            "WHERE id = %(id)s AND realized_price_change_24h IS NULL",
            {"pct": price_change_pct, "ok": int(is_correct), "id": record_id},
            settings=SYNC_MUTATIONS,
        )

    def prune_sentiment(self, before: datetime) -> int:
        count = self._execute(
            "SELECT count() FROM sentiment_history WHERE recorded_at < %(before)s", {"before": before},
        )[0][0]
        if count:
            self._execute(
                "ALTER TABLE sentiment_history DELETE WHERE recorded_at < %(before)s",
                {"before": before},
                settings=SYNC_MUTATIONS,
            )
        return int(count)

    # ---------- allocations ----------

    def list_allocations(self, wallet_address: Optional[str] = None, ecosystem: Optional[str] = None) -> List[Allocation]:
        clauses = ["1"]
        if wallet_address is not None:
            clauses.append("wallet_address = %(wallet)s")
        if ecosystem is not None:
            clauses.append("ecosystem = %(ecosystem)s")
        rows = self._execute(
            f"SELECT {ALLOCATION_COLUMNS} FROM allocations FINAL WHERE {' AND '.join(clauses)} ORDER BY created_at",
            {"wallet": wallet_address, "ecosystem": ecosystem},
        )
        return [_allocation_from_row(r) for r in rows]

    def get_allocation(self, wallet_address: str, asset_id: str) -> Optional[Allocation]:
        rows = self._execute(
            f"SELECT {ALLOCATION_COLUMNS} FROM allocations FINAL "
            "WHERE wallet_address = %(wallet)s AND asset_id = %(asset)s LIMIT 1",
            {"wallet": wallet_address, "asset": asset_id},
        )
        return _allocation_from_row(rows[0]) if rows else None

    def save_allocation(self, allocation: Allocation) -> Allocation:
        existing = self.get_allocation(allocation.wallet_address, allocation.asset_id)
        if existing is not None:
            allocation = replace(allocation, id=existing.id, created_at=existing.created_at)
        allocation = replace(allocation, updated_at=utcnow())
        self._execute(f"INSERT INTO allocations ({ALLOCATION_COLUMNS}) VALUES", [(
            allocation.id,
            allocation.wallet_address,
            allocation.asset_id,
            allocation.ecosystem,
            allocation.asset_symbol,
            float(allocation.amount),
            _layers_json(allocation.layers),
            allocation.created_at,
            allocation.updated_at,
        )])
        return allocation

    # ---------- rebalance history ----------

    def create_rebalance_event(self, event: RebalanceEvent) -> RebalanceEvent:
        event = replace(event, id=_new_id())
        self._execute(f"INSERT INTO rebalance_history ({EVENT_COLUMNS}) VALUES", [(
            event.id,
            event.allocation_id,
            event.wallet_address,
            event.ecosystem,
            event.asset_id,
            event.trigger_type.value,
            event.sentiment_score,
            event.sentiment_label.value if event.sentiment_label else None,
            list(event.active_strategies),
            event.status.value,
            event.error_message,
            event.gas_cost_usd,
            event.profit_usd,
            event.executed_at,
        )])
        return event

    def update_rebalance_status(self, event_id: int, status: RebalanceStatus, error_message: Optional[str] = None) -> None:
        rows = self._execute("SELECT status FROM rebalance_history WHERE id = %(id)s LIMIT 1", {"id": event_id})
        if not rows:
            raise PersistenceError(f"Rebalance event {event_id} not found")
        check_status_transition(RebalanceStatus(rows[0][0]), status)
        self._execute(
            "ALTER TABLE rebalance_history UPDATE status = %(status)s, error_message = %(error)s WHERE id = %(id)s",
            {"status": status.value, "error": error_message, "id": event_id},
            settings=SYNC_MUTATIONS,
        )

    def rebalance_history(self, wallet_address: str, limit: int = 50, offset: int = 0) -> Tuple[List[RebalanceEvent], int]:
        params = {"wallet": wallet_address, "limit": limit, "offset": offset}
        rows = self._execute(
            f"SELECT {EVENT_COLUMNS} FROM rebalance_history WHERE wallet_address = %(wallet)s "
            "ORDER BY executed_at DESC, id DESC LIMIT %(limit)s OFFSET %(offset)s",
            params,
        )
        total = self._execute(
            "SELECT count() FROM rebalance_history WHERE wallet_address = %(wallet)s", params,
        )[0][0]
        return [_event_from_row(r) for r in rows], int(total)
