from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.logging import logger
from quantum_matrix.api.models.allocation_model import (
    AddLayerRequest,
    AllocationResponse,
    UpdateLayerRequest,
)
from quantum_matrix.core.engine import Engine
from quantum_matrix.core.exceptions import (
    AllocationNotFound,
    LayerNotFound,
    PersistenceError,
    UnknownStrategy,
)
from quantum_matrix.core.schema import Condition

router = APIRouter()


def _to_http(e: Exception, action: str) -> HTTPException:
    if isinstance(e, (AllocationNotFound, LayerNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (UnknownStrategy, ValueError)):
        logger.warning(f"Invalid {action} request: {e}")
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PersistenceError):
        logger.error(f"Storage failed during {action}: {e}")
        return HTTPException(status_code=503, detail="Storage unavailable, allocation unchanged")
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Internal {action} error")


@router.get("/{wallet_address}", response_model=List[AllocationResponse], summary="Allocations of a wallet")
def list_allocations(
    wallet_address: str,
    ecosystem: Optional[str] = Query(None),
    engine: Engine = Depends(get_engine),
):
    try:
        return [AllocationResponse.from_allocation(a)
                for a in engine.allocations.list_allocations(wallet_address, ecosystem)]
    except Exception as e:
        raise _to_http(e, "allocation list")


@router.get("/{wallet_address}/{asset_id}", response_model=AllocationResponse, summary="One allocation")
def get_allocation(wallet_address: str, asset_id: str, engine: Engine = Depends(get_engine)):
    try:
        return AllocationResponse.from_allocation(engine.allocations.get(wallet_address, asset_id))
    except Exception as e:
        raise _to_http(e, "allocation lookup")


@router.post("/{wallet_address}/{asset_id}/layers", response_model=AllocationResponse, status_code=201,
             summary="Drop a strategy onto an asset")
def add_layer(wallet_address: str, asset_id: str, body: AddLayerRequest, engine: Engine = Depends(get_engine)):
    try:
        allocation = engine.allocations.add_layer(
            wallet_address,
            asset_id,
            body.strategy_id,
            Condition(body.condition),
            ecosystem=body.ecosystem,
            amount=body.amount,
            asset_symbol=body.asset_symbol,
        )
        return AllocationResponse.from_allocation(allocation)
    except Exception as e:
        raise _to_http(e, "add layer")


@router.patch("/{wallet_address}/{asset_id}/layers/{layer_id}", response_model=AllocationResponse,
              summary="Change a layer's weight and/or condition")
def update_layer(
    wallet_address: str,
    asset_id: str,
    layer_id: str,
    body: UpdateLayerRequest,
    engine: Engine = Depends(get_engine),
):
    try:
        condition = Condition(body.condition) if body.condition is not None else None
        allocation = engine.allocations.update_layer(
            wallet_address, asset_id, layer_id, weight=body.weight, condition=condition
        )
        return AllocationResponse.from_allocation(allocation)
    except Exception as e:
        raise _to_http(e, "update layer")


@router.delete("/{wallet_address}/{asset_id}/layers/{layer_id}", response_model=AllocationResponse,
               summary="Remove a layer; the rest are rescaled to 100")
def remove_layer(wallet_address: str, asset_id: str, layer_id: str, engine: Engine = Depends(get_engine)):
    try:
        return AllocationResponse.from_allocation(engine.allocations.remove_layer(wallet_address, asset_id, layer_id))
    except Exception as e:
        raise _to_http(e, "remove layer")


@router.delete("/{wallet_address}/{asset_id}", response_model=AllocationResponse, summary="Clear all layers")
def clear_allocation(wallet_address: str, asset_id: str, engine: Engine = Depends(get_engine)):
    try:
        return AllocationResponse.from_allocation(engine.allocations.clear(wallet_address, asset_id))
    except Exception as e:
        raise _to_http(e, "clear allocation")
