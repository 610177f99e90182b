import asyncio
import logging
from datetime import datetime, timezone

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.core.engine import Engine
from quantum_matrix.orchestration.feedback import run_feedback_tick

log = logging.getLogger(__name__)


async def run_async(engine: Engine) -> None:
    try:
        graded = await run_feedback_tick(engine.repository, engine.market, engine.config.feedback)
        log.info("[%s] Feedback job executed OK. Graded: %d", datetime.now(timezone.utc), graded)
    except Exception as e:
        log.exception("[%s] Feedback job failed: %s", datetime.now(timezone.utc), e)


def run():
    asyncio.run(run_async(get_engine()))
