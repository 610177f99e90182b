import asyncio
import logging
from datetime import datetime, timezone

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.core.engine import Engine
from quantum_matrix.orchestration.rebalance import run_orchestrator_tick

log = logging.getLogger(__name__)


async def run_async(engine: Engine) -> None:
    try:
        # pending debounced edits must be visible to the tick
        engine.allocations.flush()
        count = await run_orchestrator_tick(
            engine.orchestrator, engine.repository, engine.catalog, engine.config,
        )
        log.info("[%s] Rebalance job executed OK. Rebalanced: %d", datetime.now(timezone.utc), count)
    except Exception as e:
        log.exception("[%s] Rebalance job failed: %s", datetime.now(timezone.utc), e)


def run():
    asyncio.run(run_async(get_engine()))
