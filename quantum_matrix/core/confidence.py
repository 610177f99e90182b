from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from quantum_matrix.core.schema import Resolution, SignalComponents
from quantum_matrix.utils.config_loader import EngineConfig
from quantum_matrix.utils.sentiment_scaler import clamp

log = logging.getLogger(__name__)

TIE_BREAK_SOURCE = "Fear & Greed Index"


def estimate_confidence(components: SignalComponents, config: Optional[EngineConfig] = None) -> float:
    """
    Agreement across the five components, in [floor, 1.0].

    Uses the sample standard deviation (ddof=1) so a single strong outlier
    among five otherwise agreeing signals lands below the disagreement
    threshold.
    """
    cfg = config or EngineConfig()
    spread = float(np.std(np.asarray(components.values(), dtype=float), ddof=1))
    return clamp(1.0 - cfg.spread_penalty * spread, cfg.confidence_floor, 1.0)


def is_disagreement(confidence: float, config: Optional[EngineConfig] = None) -> bool:
    cfg = config or EngineConfig()
    return confidence < cfg.disagreement_threshold


def resolve_disagreement(
    raw_score: float,
    fear_greed_value: Optional[float],
    config: Optional[EngineConfig] = None,
) -> Tuple[float, Resolution]:
    """Nudge raw_score using the fear & greed reading as tie-breaker."""
    cfg = config or EngineConfig()
    signal = "neutral"
    nudge = 0.0

    if fear_greed_value is not None:
        if fear_greed_value >= cfg.tie_break_bullish_at:
            signal = "bullish"
            nudge = cfg.nudge
        elif fear_greed_value <= cfg.tie_break_bearish_at:
            signal = "bearish"
            nudge = -cfg.nudge

    log.info("Disagreement resolved via %s: %s (nudge %+.2f)", TIE_BREAK_SOURCE, signal, nudge)
    return raw_score + nudge, Resolution(source=TIE_BREAK_SOURCE, signal=signal, nudge=nudge)
