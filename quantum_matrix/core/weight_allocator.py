from __future__ import annotations

from typing import Dict, Optional

from quantum_matrix.core.schema import (
    SIGNAL_KEYS,
    AnalysisContext,
    AssetMaturity,
    SignalWeights,
    TimeHorizon,
)
from quantum_matrix.utils.config_loader import EngineConfig


class WeightAllocator:
    """
    Produces the five-signal weight vector for an analysis context.

    Order matters: the volatility regime fixes the macro share first, the
    remaining mass is split by the data-source ratio, then the horizon and
    maturity tilts are applied and everything is renormalized to 1.0.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()

    def allocate(self, context: Optional[AnalysisContext] = None) -> SignalWeights:
        ctx = context or AnalysisContext()
        cfg = self.config

        macro = float(cfg.macro_weights[ctx.volatility_regime.value])
        remaining = 1.0 - macro

        ratios = cfg.base_ratios.get(ctx.data_source.value) or cfg.base_ratios["mixed"]
        weights: Dict[str, float] = {k: float(ratios[k]) * remaining for k in SIGNAL_KEYS if k != "macro"}
        weights["macro"] = macro

        if ctx.time_horizon == TimeHorizon.SHORT:
            weights["lexicon"] += cfg.horizon_tilt
            weights["language_model"] -= cfg.horizon_tilt
        elif ctx.time_horizon == TimeHorizon.LONG:
            weights["language_model"] += cfg.horizon_tilt
            weights["lexicon"] -= cfg.horizon_tilt
            weights["macro"] += cfg.long_horizon_macro_tilt

        if ctx.asset_maturity == AssetMaturity.NEW:
            weights["lexicon"] += cfg.new_asset_tilt
            weights["social"] -= cfg.new_asset_tilt

        for k in weights:
            weights[k] = max(0.0, weights[k])

        total = sum(weights.values())
        return SignalWeights(**{k: weights[k] / total for k in SIGNAL_KEYS})
