import asyncio

import pytest
from fastapi.testclient import TestClient

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.settings import settings as api_settings
from quantum_matrix.api.main import app
from quantum_matrix.core.exceptions import PersistenceError
from quantum_matrix.orchestration.scheduler import JOB_IDS
from quantum_matrix.orchestration.scheduler import main as scheduler_main

from tests.conftest import make_record

WALLET = "0xfeed"


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app, headers={"X-API-Key": api_settings.api_key}) as c:
        yield c
    app.dependency_overrides.clear()


class TestHealth:
    """Unauthenticated health checks."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["database"] == "online"
        assert body["storage"] == "InMemoryRepository"
        assert body["strategies"] == 6

    def test_key_required(self, engine):
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            with TestClient(app) as anonymous:
                assert anonymous.get("/sentiment/s3").status_code in (401, 403)
                assert anonymous.get("/sentiment/s3", headers={"X-API-Key": "wrong"}).status_code == 401
        finally:
            app.dependency_overrides.clear()


class TestSentimentRoutes:
    """Sentiment synthesis and history endpoints."""

    def test_default_reading(self, client):
        body = client.get("/sentiment/s3").json()
        assert body["score"] == 50
        assert body["label"] == "Neutral"
        assert sum(body["weights"].values()) == pytest.approx(1.0, abs=1e-3)
        assert set(body["components"]) == {"lexicon", "social", "news_trend", "language_model", "macro"}

    def test_context_reading(self, client):
        body = client.get("/sentiment/s3", params={"volatility_regime": "high"}).json()
        assert body["weights"]["macro"] == pytest.approx(0.25, abs=1e-3)

    def test_bad_context(self, client):
        assert client.get("/sentiment/s3", params={"time_horizon": "forever"}).status_code == 400

    def test_market_outage(self, client, market):
        market.unavailable = True
        assert client.get("/sentiment/s3", params={"refresh": True}).status_code == 503

    def test_latest_and_history(self, client, repository):
        assert client.get("/sentiment/latest").status_code == 404
        repository.save_sentiment(make_record(64))
        assert client.get("/sentiment/latest").json()["score"] == 64
        history = client.get("/sentiment/history", params={"days": 1}).json()
        assert history["count"] == 1

    def test_macro(self, client):
        assert client.get("/sentiment/macro").json()["interpretation"] == "Neutral"

    def test_calibration_empty(self, client):
        body = client.get("/sentiment/calibration").json()
        assert body["evaluated"] == 0
        assert body["accuracy"] is None


class TestAllocationRoutes:
    """Allocation edits through the API keep weights at 100."""

    def test_layer_lifecycle(self, client):
        r = client.post(f"/allocations/{WALLET}/eth/layers",
                        json={"strategy_id": "strat-basis-arb", "ecosystem": "ethereum", "amount": 500})
        assert r.status_code == 201
        assert r.json()["total_weight"] == pytest.approx(100)

        body = client.post(f"/allocations/{WALLET}/eth/layers",
                           json={"strategy_id": "strat-momentum-alpha", "condition": "aiadaptive"}).json()
        assert [l["weight"] for l in body["layers"]] == [50, 50]
        assert body["layers"][1]["condition"] == "AIAdaptive"
        layer_id = body["layers"][1]["id"]

        body = client.patch(f"/allocations/{WALLET}/eth/layers/{layer_id}", json={"weight": 80}).json()
        assert [l["weight"] for l in body["layers"]] == [20, 80]

        body = client.delete(f"/allocations/{WALLET}/eth/layers/{layer_id}").json()
        assert [l["weight"] for l in body["layers"]] == [100]

        listed = client.get(f"/allocations/{WALLET}", params={"ecosystem": "ethereum"}).json()
        assert len(listed) == 1

        assert client.delete(f"/allocations/{WALLET}/eth").json()["layers"] == []

    def test_errors(self, client):
        assert client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "nope"}).status_code == 400
        assert client.post(f"/allocations/{WALLET}/eth/layers",
                           json={"strategy_id": "strat-basis-arb", "condition": "Sometimes"}).status_code == 400
        assert client.get(f"/allocations/{WALLET}/btc").status_code == 404
        client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-basis-arb"})
        assert client.patch(f"/allocations/{WALLET}/eth/layers/missing", json={"weight": 5}).status_code == 404
        assert client.patch(f"/allocations/{WALLET}/eth/layers/missing", json={}).status_code == 400


class TestRebalanceRoutes:
    """Manual trigger, simulation and history."""

    def test_trigger_and_history(self, client, repository):
        client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-basis-arb", "amount": 1000})
        repository.save_sentiment(make_record(70))

        sim = client.post("/rebalance/simulate", json={"wallet_address": WALLET, "asset_id": "eth"}).json()
        assert sim["would_rebalance"] is True
        assert sim["estimated_profit_usd"] == 7.0

        r = client.post(f"/rebalance/{WALLET}/eth/trigger")
        assert r.status_code == 201
        assert r.json()["trigger_type"] == "manual"
        assert r.json()["status"] == "success"

        history = client.get(f"/rebalance/history/{WALLET}", params={"limit": 10}).json()
        assert history["total"] == 1
        assert history["events"][0]["active_strategies"] == ["strat-basis-arb"]

    def test_trigger_unknown_allocation(self, client):
        assert client.post(f"/rebalance/{WALLET}/doge/trigger").status_code == 404


class TestLayerUpdateSafety:
    """Layer patches are validated and written as one change."""

    def _two_layers(self, client):
        client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-basis-arb"})
        return client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-delta-gamma"}).json()

    def test_nan_weight_rejected(self, client, repository):
        layer_id = self._two_layers(client)["layers"][0]["id"]
        r = client.patch(f"/allocations/{WALLET}/eth/layers/{layer_id}",
                         content='{"weight": NaN}', headers={"Content-Type": "application/json"})
        assert r.status_code == 422
        assert [l.weight for l in repository.get_allocation(WALLET, "eth").layers] == [50.0, 50.0]

    def test_combined_patch_is_atomic(self, client, repository, monkeypatch):
        layer_id = self._two_layers(client)["layers"][0]["id"]

        def refuse(allocation):
            raise PersistenceError("write refused")

        monkeypatch.setattr(repository, "save_allocation", refuse)
        r = client.patch(f"/allocations/{WALLET}/eth/layers/{layer_id}", json={"condition": "Bullish", "weight": 90})

        assert r.status_code == 503
        stored = repository.get_allocation(WALLET, "eth")
        assert [(l.condition.value, l.weight) for l in stored.layers] == [("Always", 50.0), ("Always", 50.0)]

    def test_combined_patch_applies_both(self, client):
        layer_id = self._two_layers(client)["layers"][0]["id"]
        body = client.patch(f"/allocations/{WALLET}/eth/layers/{layer_id}",
                            json={"condition": "Bullish", "weight": 90}).json()
        assert [(l["condition"], l["weight"]) for l in body["layers"]] == [("Bullish", 90), ("Always", 10)]


class TestManualTriggerWithoutActiveLayers:
    """A manual trigger with nothing live writes no event."""

    def test_conflict(self, client, repository):
        client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-basis-arb", "condition": "Euphoric"})
        repository.save_sentiment(make_record(50))

        assert client.post(f"/rebalance/{WALLET}/eth/trigger").status_code == 409
        assert client.get(f"/rebalance/history/{WALLET}").json()["total"] == 0


class TestEmbeddedScheduler:
    """Periodic jobs run inside the API process on its own engine."""

    def test_jobs_registered(self, client, engine):
        scheduler = app.state.scheduler
        assert scheduler.running
        assert {job.id for job in scheduler.get_jobs()} == set(JOB_IDS)
        assert all(job.args == (engine,) for job in scheduler.get_jobs())

    def test_rebalance_job_sees_api_allocations(self, client):
        client.post(f"/allocations/{WALLET}/eth/layers", json={"strategy_id": "strat-basis-arb", "amount": 1000})

        job = app.state.scheduler.get_job("rebalance")
        asyncio.run(job.func(*job.args))

        assert client.get(f"/rebalance/history/{WALLET}").json()["total"] == 1
        assert client.get("/sentiment/latest").json()["score"] == 50

    def test_can_be_switched_off(self, engine, monkeypatch):
        monkeypatch.setattr(api_settings, "embedded_scheduler", False)
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            with TestClient(app):
                assert app.state.scheduler is None
        finally:
            app.dependency_overrides.clear()

    def test_standalone_refuses_memory_backend(self, monkeypatch):
        monkeypatch.setattr(api_settings, "storage_backend", "memory")
        assert scheduler_main() == 1
