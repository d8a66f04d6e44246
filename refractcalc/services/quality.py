"""
Fit quality

Residual statistics of a prescription against its measured meridians, and the
single quality-of-fit score that gates outlier removal and cylinder softening.
The score grows with the residual and with operator mistakes made during the
acquisition.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.utils import avg_std

# Added to the score for every misalignment recorded during the test.
USER_ERROR_PENALTY = 0.23
ONE_OUTLIER_PENALTY = 0.10
TWO_OUTLIERS_PENALTY = 0.35
TWO_OUTLIERS_PENALTY_ON_BAD_FIT = 0.10
# Below this a second outlier pushes the score into the warning zone.
TWO_OUTLIERS_WARNING_CUT = 0.60


def inliers(meridians: Iterable[MeasuredMeridian]) -> List[MeasuredMeridian]:
    return [m for m in meridians if not m.is_outlier]


def count_outliers(meridians: Iterable[MeasuredMeridian]) -> int:
    return sum(1 for m in meridians if m.is_outlier)


def squared_error(rx: AstigmaticPrescription, meridians: Iterable[MeasuredMeridian]) -> float:
    """Sum of squared residuals over non-outlier meridians."""
    return sum((rx.interpolate(m.angle) - m.power) ** 2 for m in meridians if not m.is_outlier)


def mean_squared_residual(rx: AstigmaticPrescription, meridians: Sequence[MeasuredMeridian]) -> float:
    good = inliers(meridians)
    if not good:
        return 0.0
    return squared_error(rx, good) / len(good)


def quality_of_fit(meridians: Sequence[MeasuredMeridian], fails: int,
                   rx: AstigmaticPrescription, outlier_penalty: bool = True) -> float:
    """
    Normalised quality-of-fit score; higher is worse.

    Args:
        meridians: measured meridians, outlier flags honoured
        fails: operator misalignments recorded for this eye
        rx: prescription the residuals are taken against
        outlier_penalty: add the penalty for already flagged outliers

    Returns:
        RMS residual (D) plus the failure and outlier penalties
    """
    fit = math.sqrt(mean_squared_residual(rx, meridians))

    if fails > 0:
        fit += USER_ERROR_PENALTY * fails

    if outlier_penalty:
        outliers = count_outliers(meridians)
        if outliers == 1:
            fit += ONE_OUTLIER_PENALTY
        elif outliers == 2:
            if fit < TWO_OUTLIERS_WARNING_CUT:
                fit += TWO_OUTLIERS_PENALTY
            else:
                fit += TWO_OUTLIERS_PENALTY_ON_BAD_FIT

    return fit


@dataclass
class AngleGoodness:
    angle: float
    abs_diff: float


@dataclass
class FittingStatistics:
    """Residual summary of a prescription against its meridians."""
    average_error: float = 0.0
    average_absolute_error: float = 0.0
    stddev: float = 0.0
    summed_difference: float = 0.0
    summed_squared_difference: float = 0.0
    summed_abs_difference: float = 0.0
    diffs: List[float] = field(default_factory=list)
    sorted_worst_cases: List[AngleGoodness] = field(default_factory=list)

    @classmethod
    def compute(cls, rx: AstigmaticPrescription, meridians: Sequence[MeasuredMeridian]) -> "FittingStatistics":
        stats = cls()
        good = inliers(meridians)
        for m in good:
            d = m.power - rx.interpolate(m.angle)
            stats.diffs.append(d)
            stats.summed_difference += d
            stats.summed_squared_difference += d * d
            stats.summed_abs_difference += abs(d)
            stats.sorted_worst_cases.append(AngleGoodness(m.angle, abs(d)))

        stats.sorted_worst_cases.sort(key=lambda g: g.abs_diff, reverse=True)

        if good:
            stats.average_error = stats.summed_difference / len(good)
            stats.average_absolute_error = stats.summed_abs_difference / len(good)
            _, stats.stddev = avg_std(abs(d) for d in stats.diffs)
        return stats

    @property
    def mean_squared_residual(self) -> float:
        if not self.diffs:
            return 0.0
        return self.summed_squared_difference / len(self.diffs)

    def worst_angle(self, i: int = 0) -> float:
        return self.sorted_worst_cases[i].angle

    def short_str(self) -> str:
        return f"{self.average_absolute_error:.3f}D +/- {self.stddev:.3f}"

    def __str__(self) -> str:
        diffs = "; ".join(f"{d:.3f}" for d in self.diffs)
        text = f"~ {self.short_str()} | {diffs}"
        if len(self.sorted_worst_cases) > 2:
            w0, w1 = self.sorted_worst_cases[0], self.sorted_worst_cases[1]
            text += f" Worsts: {w0.angle} ({w0.abs_diff:.3f}D), {w1.angle} ({w1.abs_diff:.3f}D)"
        return text
