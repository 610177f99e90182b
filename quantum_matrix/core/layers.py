"""
Layer weight normalizer.

Every function takes the current layer list and returns a new one; the input
is never modified. Whenever the result is non-empty its weights sum to 100.
"""
from __future__ import annotations

import math
from dataclasses import replace
from typing import List

from quantum_matrix.core.exceptions import LayerNotFound
from quantum_matrix.core.schema import Condition, StrategyLayer
from quantum_matrix.utils.sentiment_scaler import clamp

FULL_WEIGHT = 100.0
NEWCOMER_WEIGHT = 50.0
WEIGHT_TOLERANCE = 1e-6


def _find(layers: List[StrategyLayer], layer_id: str) -> StrategyLayer:
    for layer in layers:
        if layer.id == layer_id:
            return layer
    raise LayerNotFound(f"Layer {layer_id} not found")


def _spread(layers: List[StrategyLayer], total: float) -> List[StrategyLayer]:
    """Scale layers proportionally so they sum to total (equal split if they sum to zero)."""
    if not layers:
        return []
    current = sum(l.weight for l in layers)
    if current <= 0:
        share = total / len(layers)
        return [replace(l, weight=share) for l in layers]
    factor = total / current
    return [replace(l, weight=l.weight * factor) for l in layers]


def add_layer(
    layers: List[StrategyLayer],
    strategy_id: str,
    condition: Condition = Condition.ALWAYS,
) -> List[StrategyLayer]:
    if not layers:
        return [StrategyLayer(strategy_id=strategy_id, condition=condition, weight=FULL_WEIGHT)]

    scale = (FULL_WEIGHT - NEWCOMER_WEIGHT) / FULL_WEIGHT
    shrunk = [replace(l, weight=l.weight * scale) for l in normalize(layers)]
    return shrunk + [StrategyLayer(strategy_id=strategy_id, condition=condition, weight=NEWCOMER_WEIGHT)]


def update_weight(layers: List[StrategyLayer], layer_id: str, weight: float) -> List[StrategyLayer]:
    if not math.isfinite(weight):
        raise ValueError(f"Layer weight must be a finite number, got {weight!r}")
    target = _find(layers, layer_id)
    others = [l for l in layers if l.id != layer_id]

    # a lone layer has nowhere to give weight to
    if not others:
        return [replace(target, weight=FULL_WEIGHT)]

    new_weight = clamp(float(weight), 0.0, FULL_WEIGHT)
    redistributed = {l.id: l for l in _spread(others, FULL_WEIGHT - new_weight)}
    return [
        replace(l, weight=new_weight) if l.id == layer_id else redistributed[l.id]
        for l in layers
    ]


def update_condition(layers: List[StrategyLayer], layer_id: str, condition: Condition) -> List[StrategyLayer]:
    _find(layers, layer_id)
    return [replace(l, condition=condition) if l.id == layer_id else replace(l) for l in layers]


def remove_layer(layers: List[StrategyLayer], layer_id: str) -> List[StrategyLayer]:
    _find(layers, layer_id)
    remaining = [l for l in layers if l.id != layer_id]
    return _spread(remaining, FULL_WEIGHT)


def normalize(layers: List[StrategyLayer]) -> List[StrategyLayer]:
    """Rescale to 100 if the stored weights drifted; otherwise return copies unchanged."""
    if not layers:
        return []
    if abs(sum(l.weight for l in layers) - FULL_WEIGHT) <= WEIGHT_TOLERANCE:
        return [replace(l) for l in layers]
    return _spread(layers, FULL_WEIGHT)


def is_balanced(layers: List[StrategyLayer]) -> bool:
    return not layers or abs(sum(l.weight for l in layers) - FULL_WEIGHT) <= WEIGHT_TOLERANCE
