import math


def clamp(x: float, lo: float, hi: float) -> float:
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def index_to_signal(value: float, midpoint: float = 50.0) -> float:
    """Map a 0-100 reading onto [-1, 1] around its midpoint."""
    try:
        val = float(value)
    except Exception:
        return 0.0
    return clamp((val - midpoint) / midpoint, -1.0, 1.0)


def to_normalized_scale(score: float) -> int:
    # half-up rounding, round() would use banker's rounding at .5
    return int(math.floor((score + 1.0) * 50.0 + 0.5))
