from datetime import timedelta

import pytest
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
    SignalComponents,
    SignalWeights,
    StrategyLayer,
    TriggerType,
    utcnow,
)
from quantum_matrix.ingestion.clickhouse_ingest import DDL, ClickHouseRepository

from tests.conftest import make_record


def flat(query):
    return " ".join(query.split())


class FakeClient:
    """Records every statement; SELECTs answer with the first canned result whose fragment matches."""

    def __init__(self):
        self.queries = []
        self.results = []
        self.error = None

    def answer(self, fragment, rows):
        self.results.append((fragment, rows))

    def execute(self, query, params=None, settings=None):
        if self.error is not None:
            raise self.error
        query = flat(query)
        self.queries.append((query, params, settings))
        for fragment, rows in self.results:
            if fragment in query:
                return rows
        return []

    def statements(self, prefix):
        return [q for q in self.queries if q[0].startswith(prefix)]


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(client):
    return ClickHouseRepository(client=client)


def inserted_row(client, table):
    (query, params, _), = client.statements(f"INSERT INTO {table}")
    return params[0]


class TestSchemaAndConnectivity:
    """DDL setup and error wrapping."""

    def test_ensure_schema(self, store, client):
        store.ensure_schema()
        assert len(client.queries) == len(DDL)
        assert all(q.startswith("CREATE TABLE IF NOT EXISTS") for q, _, _ in client.queries)

    def test_driver_errors_become_persistence_errors(self, store, client):
        client.error = ClickHouseError("connection refused")
        with pytest.raises(PersistenceError):
            store.latest_sentiment()
        assert store.ping() is False


class TestSentimentRows:
    """Sentiment history maps to and from flat rows."""

    def _record(self):
        record = make_record(72)
        record.components = SignalComponents(0.4, 0.2, -0.1, 0.6, 0.05)
        record.weights = SignalWeights(0.25, 0.2, 0.2, 0.2, 0.15)
        record.disagreement_resolved = True
        record.resolution = Resolution("fear_greed", "bullish", 0.1)
        record.trending_topics = ["PEPE", "SOL"]
        record.macro = MacroDetails(-0.2, "Hawkish", -0.15, -0.3, -0.1, "fresh")
        return record

    def test_round_trip(self, store, client):
        record = self._record()
        saved = store.save_sentiment(record)

        assert record.id is None
        assert isinstance(saved.id, int)
        row = inserted_row(client, "sentiment_history")

        client.answer("FROM sentiment_history WHERE id =", [row])
        loaded = store.get_sentiment(saved.id)

        assert loaded.id == saved.id
        assert loaded.label == SentimentLabel.BULLISH
        assert loaded.normalized_score == 72
        assert loaded.components == record.components
        assert loaded.weights == record.weights
        assert loaded.resolution == record.resolution
        assert loaded.macro == record.macro
        assert loaded.trending_topics == ["PEPE", "SOL"]
        assert loaded.market_price_at_recording == 100.0
        assert loaded.is_correct is None

    def test_optional_parts_stay_empty(self, store, client):
        store.save_sentiment(make_record(50, price=None))
        row = inserted_row(client, "sentiment_history")
        client.answer("ORDER BY recorded_at DESC LIMIT 1", [row])

        latest = store.latest_sentiment()
        assert latest.resolution is None
        assert latest.macro is None
        assert latest.market_price_at_recording is None

    def test_feedback_is_written_once(self, store, client):
        store.save_sentiment(make_record(70))
        row = list(inserted_row(client, "sentiment_history"))
        client.answer("FROM sentiment_history WHERE id =", [tuple(row)])

        store.record_feedback(row[0], 2.0, True)
        (query, params, settings), = client.statements("ALTER TABLE sentiment_history UPDATE")
        assert params == {"pct": 2.0, "ok": 1, "id": row[0]}
        assert settings == {"mutations_sync": 1}

        row[-2], row[-1] = 2.0, 1
        client.results = [("FROM sentiment_history WHERE id =", [tuple(row)])]
        with pytest.raises(FeedbackAlreadyRecorded):
            store.record_feedback(row[0], -5.0, False)
        assert len(client.statements("ALTER TABLE sentiment_history UPDATE")) == 1

    def test_feedback_for_unknown_record(self, store):
        with pytest.raises(PersistenceError):
            store.record_feedback(42, 1.0, True)

    def test_unevaluated_query_limits(self, store, client):
        before = utcnow() - timedelta(hours=24)
        store.unevaluated_sentiment(before, 50)
        (query, params, _), = client.queries
        assert "realized_price_change_24h IS NULL" in query
        assert query.endswith("LIMIT %(limit)s")
        assert params == {"before": before, "limit": 50}

    def test_prune_counts_then_deletes(self, store, client):
        client.answer("SELECT count() FROM sentiment_history", [(3,)])
        assert store.prune_sentiment(utcnow()) == 3
        assert len(client.statements("ALTER TABLE sentiment_history DELETE")) == 1

        client.results = [("SELECT count() FROM sentiment_history", [(0,)])]
        assert store.prune_sentiment(utcnow()) == 0
        assert len(client.statements("ALTER TABLE sentiment_history DELETE")) == 1


class TestAllocationRows:
    """Allocations are upserts into a replacing table."""

    def test_first_save_and_read_back(self, store, client):
        alloc = Allocation(
            wallet_address="0x1", asset_id="eth", ecosystem="ethereum", amount=500,
            layers=[StrategyLayer("strat-basis-arb", Condition.BULLISH, 60),
                    StrategyLayer("strat-delta-gamma", Condition.AI_ADAPTIVE, 40)],
        )
        store.save_allocation(alloc)
        row = inserted_row(client, "allocations")

        client.answer("FROM allocations FINAL", [row])
        loaded = store.get_allocation("0x1", "eth")
        assert loaded.id == alloc.id
        assert [(l.id, l.strategy_id, l.condition, l.weight) for l in loaded.layers] == [
            (l.id, l.strategy_id, l.condition, l.weight) for l in alloc.layers
        ]
        assert loaded.amount == 500.0

    def test_resave_keeps_identity(self, store, client):
        first = Allocation(wallet_address="0x1", asset_id="eth", ecosystem="ethereum")
        store.save_allocation(first)
        client.answer("FROM allocations FINAL", [inserted_row(client, "allocations")])

        second = Allocation(wallet_address="0x1", asset_id="eth", ecosystem="ethereum",
                            layers=[StrategyLayer("strat-basis-arb", weight=100)])
        saved = store.save_allocation(second)

        assert saved.id == first.id
        assert saved.created_at == first.created_at
        assert second.id != first.id
        assert client.statements("INSERT INTO allocations")[-1][1][0][0] == first.id

    def test_list_filters(self, store, client):
        store.list_allocations("0x1", "ethereum")
        (query, params, _), = client.queries
        assert "wallet_address = %(wallet)s AND ecosystem = %(ecosystem)s" in query
        assert params == {"wallet": "0x1", "ecosystem": "ethereum"}


class TestRebalanceRows:
    """Event status guard and paginated history."""

    def _event(self):
        return RebalanceEvent(
            allocation_id="a1", wallet_address="0x1", ecosystem="ethereum", asset_id="eth",
            trigger_type=TriggerType.MANUAL, sentiment_score=70, sentiment_label=SentimentLabel.BULLISH,
            active_strategies=["strat-basis-arb"], gas_cost_usd=3.5, profit_usd=7.0,
        )

    def test_pending_to_success(self, store, client):
        client.answer("SELECT status FROM rebalance_history", [("pending",)])
        store.update_rebalance_status(7, RebalanceStatus.SUCCESS)
        (query, params, settings), = client.statements("ALTER TABLE rebalance_history UPDATE")
        assert params == {"status": "success", "error": None, "id": 7}
        assert settings == {"mutations_sync": 1}

    def test_success_cannot_go_back_to_pending(self, store, client):
        client.answer("SELECT status FROM rebalance_history", [("success",)])
        with pytest.raises(ValueError):
            store.update_rebalance_status(7, RebalanceStatus.PENDING)
        assert client.statements("ALTER TABLE") == []

    def test_unknown_event(self, store):
        with pytest.raises(PersistenceError):
            store.update_rebalance_status(7, RebalanceStatus.SUCCESS)

    def test_history_page(self, store, client):
        event = self._event()
        stored = store.create_rebalance_event(event)
        assert event.id is None
        row = inserted_row(client, "rebalance_history")

        client.answer("SELECT count() FROM rebalance_history", [(11,)])
        client.answer("FROM rebalance_history WHERE wallet_address", [row])
        events, total = store.rebalance_history("0x1", limit=5, offset=10)

        assert total == 11
        assert events[0].id == stored.id
        assert events[0].trigger_type == TriggerType.MANUAL
        assert events[0].sentiment_label == SentimentLabel.BULLISH
        assert events[0].active_strategies == ["strat-basis-arb"]
        page_query, params, _ = client.statements("SELECT id, allocation_id")[0]
        assert page_query.endswith("LIMIT %(limit)s OFFSET %(offset)s")
        assert params == {"wallet": "0x1", "limit": 5, "offset": 10}
