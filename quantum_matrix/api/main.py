import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.logging import logger
from quantum_matrix.api.core.security import validate_api_key
from quantum_matrix.api.core.settings import settings
from quantum_matrix.api.routers.allocation_router import router as allocation_router
from quantum_matrix.api.routers.health_router import router as health_router
from quantum_matrix.api.routers.rebalance_router import router as rebalance_router
from quantum_matrix.api.routers.sentiment_router import router as sentiment_router
from quantum_matrix.orchestration.scheduler import build_async_scheduler

FLUSH_INTERVAL_SECONDS = 0.5


async def _pump_writes(coalescer):
    while True:
        await asyncio.sleep(FLUSH_INTERVAL_SECONDS)
        coalescer.pump()


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    pump = None
    if engine.coalescer is not None:
        pump = asyncio.create_task(_pump_writes(engine.coalescer))
    scheduler = None
    if settings.embedded_scheduler:
        scheduler = build_async_scheduler(engine)
        scheduler.start()
    app.state.scheduler = scheduler
    logger.info(f"API started (embedded scheduler: {'on' if scheduler is not None else 'off'})")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        if pump is not None:
            pump.cancel()
        written = engine.allocations.flush()
        logger.info(f"API stopped, flushed {written} pending allocation writes")


app = FastAPI(
    title="Quantum Matrix S³ API",
    version="1.0.0",
    description="Sentiment synthesis and sentiment-driven strategy rebalancing",
    lifespan=lifespan,
)

# Attach routers
app.include_router(sentiment_router, prefix="/sentiment", tags=["Sentiment"], dependencies=[Depends(validate_api_key)])
app.include_router(allocation_router, prefix="/allocations", tags=["Allocations"], dependencies=[Depends(validate_api_key)])
app.include_router(rebalance_router, prefix="/rebalance", tags=["Rebalance"], dependencies=[Depends(validate_api_key)])
app.include_router(health_router, tags=["Health"])
