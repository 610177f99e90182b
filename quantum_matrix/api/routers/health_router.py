from fastapi import APIRouter, Depends, HTTPException

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.logging import logger
from quantum_matrix.core.engine import Engine
from quantum_matrix.core.orchestrator import SENTIMENT_CACHE_KEY

router = APIRouter()


@router.get("/health", summary="Simple liveness probe")
def health():
    """
    Lightweight liveness probe, returns immediately with 'ok'
    """
    return {"status": "ok"}


@router.get("/status", summary="System readiness & service status")
def status(engine: Engine = Depends(get_engine)):
    """
    Readiness/status endpoint used by deployment monitors.
    """
    try:
        db_online = engine.repository.ping()
        cache_ttl = engine.cache.ttl(SENTIMENT_CACHE_KEY)
        response = {
            "database": "online" if db_online else "offline",
            "storage": type(engine.repository).__name__,
            "sentiment_cache": "warm" if cache_ttl > 0 else "cold",
            "pending_writes": len(engine.coalescer) if engine.coalescer is not None else 0,
            "strategies": len(engine.catalog),
        }

        # set an unhealthy HTTP code when something's down
        if not db_online:
            raise HTTPException(status_code=503, detail=response)

        return response

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error computing status: {e}")
        raise HTTPException(status_code=500, detail="Internal status check error")
