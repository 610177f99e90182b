from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from quantum_matrix.api.core.container import get_engine
from quantum_matrix.api.core.logging import logger
from quantum_matrix.api.models.sentiment_model import (
    CalibrationResponse,
    MacroSignalsResponse,
    SentimentHistoryResponse,
    SentimentResponse,
)
from quantum_matrix.core.calibration import calibration_report, recent_mistakes
from quantum_matrix.core.engine import Engine
from quantum_matrix.core.exceptions import MarketDataUnavailable
from quantum_matrix.core.schema import AnalysisContext, utcnow

router = APIRouter()


@router.get("/s3", response_model=SentimentResponse, summary="Current S³ market sentiment")
async def get_s3_sentiment(
    data_source: Optional[str] = Query(None, description="social | news | mixed"),
    time_horizon: Optional[str] = Query(None, description="short | medium | long"),
    asset_maturity: Optional[str] = Query(None, description="new | established"),
    volatility_regime: Optional[str] = Query(None, description="low | normal | high"),
    refresh: bool = Query(False, description="Skip the cached default result"),
    engine: Engine = Depends(get_engine),
):
    """
    Without any context parameter the shared, cached reading is returned.
    Any context parameter produces a fresh, context-weighted reading.
    """
    try:
        context = None
        if any(v is not None for v in (data_source, time_horizon, asset_maturity, volatility_regime)):
            context = AnalysisContext.from_partial(
                data_source=data_source,
                time_horizon=time_horizon,
                asset_maturity=asset_maturity,
                volatility_regime=volatility_regime,
            )
        record = await engine.orchestrator.synthesize(context, use_cache=not refresh)
        return SentimentResponse.from_record(record)

    except ValueError as ve:
        logger.warning(f"Invalid sentiment context: {ve}")
        raise HTTPException(status_code=400, detail=str(ve))

    except MarketDataUnavailable as e:
        logger.warning(f"Market data unavailable: {e}")
        raise HTTPException(status_code=503, detail="Market data unavailable, try again shortly")

    except Exception as e:
        logger.error(f"S³ sentiment failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal sentiment scoring error")


@router.get("/latest", response_model=SentimentResponse, summary="Most recently recorded sentiment")
def get_latest(engine: Engine = Depends(get_engine)):
    record = engine.repository.latest_sentiment()
    if record is None:
        raise HTTPException(status_code=404, detail="No sentiment recorded yet")
    return SentimentResponse.from_record(record)


@router.get("/history", response_model=SentimentHistoryResponse, summary="Recorded sentiment over the last N days")
def get_history(
    days: int = Query(7, ge=1, le=365),
    engine: Engine = Depends(get_engine),
):
    try:
        records = engine.repository.sentiment_history(utcnow() - timedelta(days=days))
        return SentimentHistoryResponse(
            days=days,
            count=len(records),
            records=[SentimentResponse.from_record(r) for r in records],
        )
    except Exception as e:
        logger.error(f"Sentiment history failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal sentiment history error")


@router.get("/macro", response_model=MacroSignalsResponse, summary="Macro-economic signal breakdown")
async def get_macro(engine: Engine = Depends(get_engine)):
    try:
        signals = await engine.macro.get_macro_signals()
        return MacroSignalsResponse(
            composite_score=signals.composite_score,
            interpretation=signals.interpretation,
            cpi_signal=signals.cpi_signal,
            rate_signal=signals.rate_signal,
            dxy_signal=signals.dxy_signal,
            data_freshness=signals.data_freshness,
            last_update=signals.last_update,
            cpi_yoy=signals.cpi.yoy_change if signals.cpi else None,
            fed_rate=signals.fed_rate.value if signals.fed_rate else None,
            dxy=signals.dxy.value if signals.dxy else None,
        )
    except Exception as e:
        logger.error(f"Macro signals failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal macro signal error")


@router.get("/calibration", response_model=CalibrationResponse, summary="Prediction accuracy over graded sentiment")
def get_calibration(
    limit: int = Query(500, ge=1, le=10000),
    engine: Engine = Depends(get_engine),
):
    try:
        records = engine.repository.evaluated_sentiment(limit)
        report = calibration_report(records, engine.config.feedback)
        return CalibrationResponse(**report, recent_mistakes=recent_mistakes(records))
    except Exception as e:
        logger.error(f"Calibration report failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal calibration error")


@router.get("/breakdown", summary="Per-extractor scores and fallbacks for the current inputs")
async def get_breakdown(engine: Engine = Depends(get_engine)):
    try:
        return await engine.orchestrator.debug_breakdown()
    except MarketDataUnavailable as e:
        logger.warning(f"Market data unavailable: {e}")
        raise HTTPException(status_code=503, detail="Market data unavailable, try again shortly")
