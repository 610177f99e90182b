"""
Periodic jobs: rebalance tick, feedback tick and daily retention.

The API process runs them on an AsyncIOScheduler bound to its own engine, so
the jobs see the same allocations and history as the routes. The standalone
BlockingScheduler below is only for deployments with shared storage and the
embedded scheduler switched off (EMBEDDED_SCHEDULER=false).
"""
import logging
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from quantum_matrix.api.core.settings import settings
from quantum_matrix.core.engine import Engine
from quantum_matrix.orchestration.jobs import run_feedback_job, run_rebalance_job, run_retention_job

log = logging.getLogger(__name__)

JOB_IDS = ("rebalance", "feedback", "retention")


def _add_jobs(scheduler, rebalance, feedback, retention, args=()):
    scheduler.add_job(rebalance, "interval", minutes=settings.rebalance_interval_minutes, args=args,
                      id="rebalance", max_instances=1, coalesce=True)
    scheduler.add_job(feedback, "interval", hours=settings.feedback_interval_hours, args=args,
                      id="feedback", max_instances=1, coalesce=True)
    scheduler.add_job(retention, "cron", hour=3, args=args, id="retention")   # daily prune
    return scheduler


def build_async_scheduler(engine: Engine) -> AsyncIOScheduler:
    return _add_jobs(
        AsyncIOScheduler(timezone="UTC"),
        run_rebalance_job.run_async,
        run_feedback_job.run_async,
        run_retention_job.run,
        args=(engine,),
    )


def main() -> int:
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    if settings.storage_backend == "memory":
        log.error("Standalone scheduler needs shared storage; with STORAGE_BACKEND=memory the jobs run inside the API")
        return 1
    scheduler = _add_jobs(
        BlockingScheduler(timezone="UTC"),
        run_rebalance_job.run,
        run_feedback_job.run,
        run_retention_job.run,
    )
    log.info("Scheduler started: rebalance every %d min, feedback every %d h",
             settings.rebalance_interval_minutes, settings.feedback_interval_hours)
    scheduler.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
