from datetime import timedelta

import pytest

from quantum_matrix.core.calibration import calibration_report, export_calibration, recent_mistakes
from quantum_matrix.core.exceptions import FeedbackAlreadyRecorded
from quantum_matrix.core.schema import utcnow
from quantum_matrix.orchestration.feedback import (
    classify_prediction,
    price_change_pct,
    prune_sentiment_history,
    run_feedback_tick,
)
from quantum_matrix.utils.config_loader import FeedbackConfig

from tests.conftest import FakeMarket, make_record


class TestClassification:
    """Bullish calls need a rise, bearish a drop, neutral a flat market."""

    def test_bullish_call_price_up(self):
        assert classify_prediction(70, price_change_pct(100, 102)) is True

    def test_bullish_call_price_slightly_down(self):
        assert classify_prediction(70, price_change_pct(100, 99.8)) is False

    @pytest.mark.parametrize("score,change,expected", [
        (30, -1.0, True),
        (30, 0.0, False),
        (50, 1.0, True),
        (50, -2.0, False),
        (55, 1.4, True),
        (45, -1.4, True),
        (56, 0.5, False),
    ])
    def test_bands(self, score, change, expected):
        assert classify_prediction(score, change) is expected

    def test_thresholds_configurable(self):
        strict = FeedbackConfig(bullish_min_change_pct=3.0)
        assert classify_prediction(70, 2.0, strict) is False


class TestFeedbackTick:
    """Grading old records against the current price."""

    @pytest.mark.asyncio
    async def test_grades_old_records_only(self, repository, day_old):
        old = repository.save_sentiment(make_record(70, recorded_at=day_old))
        fresh = repository.save_sentiment(make_record(70))
        unpriced = repository.save_sentiment(make_record(70, recorded_at=day_old, price=None))

        graded = await run_feedback_tick(repository, FakeMarket(price=102.0))

        assert graded == 1
        assert repository.get_sentiment(old.id).is_correct is True
        assert repository.get_sentiment(old.id).realized_price_change_24h == pytest.approx(2.0)
        assert repository.get_sentiment(fresh.id).is_correct is None
        assert repository.get_sentiment(unpriced.id).is_correct is None

    @pytest.mark.asyncio
    async def test_wrong_call(self, repository, day_old):
        rec = repository.save_sentiment(make_record(70, recorded_at=day_old))
        await run_feedback_tick(repository, FakeMarket(price=99.8))
        assert repository.get_sentiment(rec.id).is_correct is False

    @pytest.mark.asyncio
    async def test_graded_once(self, repository, day_old):
        repository.save_sentiment(make_record(70, recorded_at=day_old))
        assert await run_feedback_tick(repository, FakeMarket(price=102.0)) == 1
        assert await run_feedback_tick(repository, FakeMarket(price=90.0)) == 0

    @pytest.mark.asyncio
    async def test_batch_size(self, repository, day_old):
        for i in range(5):
            repository.save_sentiment(make_record(50, recorded_at=day_old - timedelta(minutes=i)))
        graded = await run_feedback_tick(repository, FakeMarket(price=100.0), FeedbackConfig(batch_size=3))
        assert graded == 3
        assert len(repository.evaluated_sentiment()) == 3

    @pytest.mark.asyncio
    async def test_price_unavailable(self, repository, day_old):
        repository.save_sentiment(make_record(70, recorded_at=day_old))
        assert await run_feedback_tick(repository, FakeMarket(price=None)) == 0

    def test_feedback_is_write_once(self, repository, day_old):
        rec = repository.save_sentiment(make_record(70, recorded_at=day_old))
        repository.record_feedback(rec.id, 2.0, True)
        with pytest.raises(FeedbackAlreadyRecorded):
            repository.record_feedback(rec.id, -5.0, False)


class TestRetentionAndCalibration:
    """History pruning and accuracy statistics."""

    def test_prune(self, repository):
        repository.save_sentiment(make_record(50, recorded_at=utcnow() - timedelta(days=400)))
        kept = repository.save_sentiment(make_record(50))
        assert prune_sentiment_history(repository, 365) == 1
        assert repository.latest_sentiment().id == kept.id

    def _graded(self, repository, day_old):
        outcomes = [(70, 2.0, True), (70, -1.0, False), (30, -2.0, True), (50, 0.5, True)]
        for i, (score, change, correct) in enumerate(outcomes):
            rec = repository.save_sentiment(make_record(score, recorded_at=day_old - timedelta(hours=i)))
            repository.record_feedback(rec.id, change, correct)
        return repository.evaluated_sentiment()

    def test_report(self, repository, day_old):
        report = calibration_report(self._graded(repository, day_old))
        assert report["evaluated"] == 4
        assert report["accuracy"] == 0.75
        assert report["bands"]["bullish"]["count"] == 2
        assert report["bands"]["bullish"]["accuracy"] == 0.5
        assert report["bands"]["bearish"]["accuracy"] == 1.0

    def test_empty_report(self):
        assert calibration_report([]) == {"evaluated": 0, "accuracy": None, "bands": {}}

    def test_recent_mistakes(self, repository, day_old):
        mistakes = recent_mistakes(self._graded(repository, day_old))
        assert len(mistakes) == 1
        assert mistakes[0]["normalized_score"] == 70
        assert mistakes[0]["realized_price_change_24h"] == -1.0

    def test_export(self, repository, day_old, tmp_path):
        path = export_calibration(self._graded(repository, day_old), str(tmp_path / "calibration" / "evals"))
        assert path.endswith(".csv")
        assert (tmp_path / "calibration" / "evals.csv").exists()
