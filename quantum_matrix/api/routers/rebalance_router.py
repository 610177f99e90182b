from fastapi import APIRouter, Depends, HTTPException, Query

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.logging import logger
from quantum_matrix.api.models.allocation_model import (
    RebalanceEventResponse,
    RebalanceHistoryResponse,
    SimulateRequest,
    SimulationResponse,
)
from quantum_matrix.core.engine import Engine
from quantum_matrix.core.exceptions import AllocationNotFound, MarketDataUnavailable, NothingToRebalance
from quantum_matrix.orchestration.rebalance import simulate_rebalance, trigger_manual_rebalance

router = APIRouter()


@router.get("/history/{wallet_address}", response_model=RebalanceHistoryResponse,
            summary="Paginated rebalance history of a wallet, newest first")
def get_history(
    wallet_address: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: Engine = Depends(get_engine),
):
    try:
        events, total = engine.repository.rebalance_history(wallet_address, limit, offset)
        return RebalanceHistoryResponse(
            wallet_address=wallet_address,
            total=total,
            limit=limit,
            offset=offset,
            events=[RebalanceEventResponse.from_event(e) for e in events],
        )
    except Exception as e:
        logger.error(f"Rebalance history failed for {wallet_address}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal rebalance history error")


@router.post("/simulate", response_model=SimulationResponse, summary="Evaluate an allocation without recording anything")
async def simulate(body: SimulateRequest, engine: Engine = Depends(get_engine)):
    try:
        allocation = engine.allocations.get(body.wallet_address, body.asset_id)
        record = engine.repository.latest_sentiment() or await engine.orchestrator.synthesize()
        sim = simulate_rebalance(allocation, record, engine.catalog, engine.config, body.high_volatility)
        return SimulationResponse(
            wallet_address=sim.wallet_address,
            asset_id=sim.asset_id,
            sentiment_score=sim.sentiment_score,
            sentiment_label=sim.sentiment_label,
            active_strategies=sim.active_strategies,
            would_rebalance=sim.would_rebalance,
            estimated_profit_usd=sim.estimated_profit_usd,
            gas_cost_usd=sim.gas_cost_usd,
        )
    except AllocationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MarketDataUnavailable as e:
        logger.warning(f"Market data unavailable: {e}")
        raise HTTPException(status_code=503, detail="Market data unavailable, try again shortly")
    except Exception as e:
        logger.error(f"Rebalance simulation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal simulation error")


@router.post("/{wallet_address}/{asset_id}/trigger", response_model=RebalanceEventResponse, status_code=201,
             summary="Record a manual rebalance for one allocation")
async def trigger(wallet_address: str, asset_id: str, engine: Engine = Depends(get_engine)):
    try:
        engine.allocations.flush()
        event = await trigger_manual_rebalance(
            engine.repository, engine.orchestrator, wallet_address, asset_id, engine.catalog, engine.config,
        )
        return RebalanceEventResponse.from_event(event)
    except AllocationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NothingToRebalance as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MarketDataUnavailable as e:
        logger.warning(f"Market data unavailable: {e}")
        raise HTTPException(status_code=503, detail="Market data unavailable, try again shortly")
    except Exception as e:
        logger.error(f"Manual rebalance failed for {wallet_address}/{asset_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal rebalance error")
