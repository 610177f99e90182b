"""
Feedback loop: grades published sentiment against what the price did next.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from quantum_matrix.core.exceptions import FeedbackAlreadyRecorded
from quantum_matrix.core.schema import utcnow
from quantum_matrix.storage.repository import Repository
from quantum_matrix.utils.config_loader import FeedbackConfig

log = logging.getLogger(__name__)


class PriceSource(Protocol):
    async def get_reference_price(self) -> Optional[float]: ...


def price_change_pct(recorded: float, current: float) -> float:
    return (current - recorded) / recorded * 100.0


def classify_prediction(score: float, change_pct: float, config: Optional[FeedbackConfig] = None) -> bool:
    """
    Was a 0-100 score right about the move that followed?
    Bullish calls need a rise, bearish calls a drop, neutral calls a flat market.
    """
    cfg = config or FeedbackConfig()
    if score > cfg.bullish_score_above:
        return change_pct > cfg.bullish_min_change_pct
    if score < cfg.bearish_score_below:
        return change_pct < cfg.bearish_max_change_pct
    return abs(change_pct) < cfg.neutral_max_abs_change_pct


async def run_feedback_tick(
    repository: Repository,
    prices: PriceSource,
    config: Optional[FeedbackConfig] = None,
    now: Optional[datetime] = None,
) -> int:
    """Grade up to one batch of old, ungraded records. Returns how many were graded."""
    cfg = config or FeedbackConfig()
    now = now or utcnow()

    pending = repository.unevaluated_sentiment(now - timedelta(hours=cfg.min_age_hours), cfg.batch_size)
    if not pending:
        log.info("Feedback tick: nothing to evaluate")
        return 0

    current = await prices.get_reference_price()
    if current is None:
        log.warning("Feedback tick skipped: current price unavailable (%d records waiting)", len(pending))
        return 0

    graded = 0
    for record in pending:
        if not record.market_price_at_recording:
            continue
        change = price_change_pct(record.market_price_at_recording, current)
        correct = classify_prediction(record.normalized_score, change, cfg)
        try:
            repository.record_feedback(record.id, round(change, 4), correct)
            graded += 1
        except FeedbackAlreadyRecorded:
            log.info("Sentiment %s already graded, skipping", record.id)
        except Exception:
            log.exception("Failed to record feedback for sentiment %s", record.id)

    log.info("Feedback tick complete: %d of %d records graded", graded, len(pending))
    return graded


def prune_sentiment_history(repository: Repository, retention_days: int, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    removed = repository.prune_sentiment(cutoff)
    log.info("Pruned %d sentiment records older than %s", removed, cutoff.isoformat())
    return removed
