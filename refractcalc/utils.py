import math
from typing import Iterable, Tuple

import numpy as np


def angle_0_to_180(angle: float) -> float:
    """Fold any angle into [0, 180)."""
    a = float(angle) % 180.0
    if a >= 180.0:
        a -= 180.0
    return a


def angle_0_to_360(angle: float) -> float:
    """Fold any angle into [0, 360)."""
    a = float(angle) % 360.0
    if a >= 360.0:
        a -= 360.0
    return a


def diff_180(a: float, b: float) -> float:
    """Circular distance between two meridians (period 180°)."""
    d = abs(angle_0_to_180(a) - angle_0_to_180(b))
    return min(d, 180.0 - d)


def diff_360(a: float, b: float) -> float:
    """Circular distance between two directions (period 360°)."""
    d = abs(angle_0_to_360(a) - angle_0_to_360(b))
    return min(d, 360.0 - d)


def circular_diff(a: float, b: float, period: int = 180) -> float:
    return diff_360(a, b) if period == 360 else diff_180(a, b)


def round_half_up(value: float) -> int:
    # Lens tables round .5 away from the negative side, not to even
    return int(math.floor(value + 0.5))


def round_to(value: float, step: float) -> float:
    """Snap a power to the nearest multiple of step."""
    return round_half_up(value / step) * step


def ceil_to(value: float, step: float) -> float:
    # 1e-6 guard: -2.0000001 / 0.25 must stay at -8
    return math.ceil(round(value / step, 6)) * step


def floor_to(value: float, step: float) -> float:
    return math.floor(round(value / step, 6)) * step


def avg_std(values: Iterable[float]) -> Tuple[float, float]:
    """Population mean and standard deviation. (nan, nan) when empty."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return float("nan"), float("nan")
    return float(arr.mean()), float(arr.std())


def fmt_power(value: float) -> str:
    return f"{value:+.2f}"
