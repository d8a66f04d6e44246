"""
Sinusoidal curve fitting

Fits Power(angle) = Sphere + Cylinder * sin²(Axis - angle) to the measured
meridians. In power-vector form the model is linear,

    Power(angle) = M + J0 * cos(2 * angle) + J45 * sin(2 * angle)

so the least-squares optimum is solved exactly with numpy instead of an
iterative solver. With fewer than three readings the fitter returns a
min/max estimate.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.services.power_vectors import from_power_vector
from refractcalc.services.quality import inliers, quality_of_fit
from refractcalc.utils import angle_0_to_180

logger = logging.getLogger(__name__)

MINIMUM_MERIDIANS_TO_FIT = 3
MINIMUM_GUESSED_CYLINDER = 0.001


@dataclass
class Outlier:
    """A refit of the data with one or two readings left out."""
    fitted: AstigmaticPrescription
    quality_of_fit: float
    removed: MeasuredMeridian
    removed_2nd: Optional[MeasuredMeridian] = None

    @property
    def is_pair(self) -> bool:
        return self.removed_2nd is not None

    def set_outliers(self) -> None:
        self.removed.is_outlier = True
        if self.removed_2nd is not None:
            self.removed_2nd.is_outlier = True

    def __str__(self) -> str:
        removed = f"{self.removed.angle:.0f}°"
        if self.removed_2nd is not None:
            removed += f" and {self.removed_2nd.angle:.0f}°"
        return f"without {removed}: fit {self.quality_of_fit:.2f} => {self.fitted}"


def guess_prescription(meridians: Sequence[MeasuredMeridian]) -> AstigmaticPrescription:
    """Min/max estimate: cylinder from the power spread, axis at the weakest meridian."""
    if not meridians:
        return AstigmaticPrescription()

    weakest = min(meridians, key=lambda m: m.power)
    strongest = max(meridians, key=lambda m: m.power)

    cyl = strongest.power - weakest.power
    avg = sum(m.power for m in meridians) / len(meridians)
    sph = avg - cyl / 2

    return AstigmaticPrescription(sph, cyl, weakest.angle)


def _least_squares(meridians: Sequence[MeasuredMeridian]) -> Optional[AstigmaticPrescription]:
    theta = 2.0 * np.radians([angle_0_to_180(m.angle) for m in meridians])
    powers = np.array([m.power for m in meridians], dtype=float)

    design = np.column_stack([np.ones_like(theta), np.cos(theta), np.sin(theta)])
    coef, _, rank, _ = np.linalg.lstsq(design, powers, rcond=None)

    # All readings on a single meridian (or its opposite) cannot fix an axis.
    if rank < 3:
        return None

    M, J0, J45 = (float(c) for c in coef)
    return from_power_vector(M, J0, J45)


def curve_fitting(meridians: Sequence[MeasuredMeridian]) -> AstigmaticPrescription:
    """Best astigmatic lens for the non-outlier readings."""
    data = inliers(meridians)
    guessed = guess_prescription(data)

    if len(data) < MINIMUM_MERIDIANS_TO_FIT or abs(guessed.cylinder) < MINIMUM_GUESSED_CYLINDER:
        logger.debug("Using min/max estimate for %d meridians: %s", len(data), guessed)
        return guessed

    fitted = _least_squares(data)
    if fitted is None:
        logger.debug("Degenerate meridian spread, using min/max estimate: %s", guessed)
        return guessed

    return fitted


def _option(remaining: List[MeasuredMeridian], fails: int, removed: MeasuredMeridian,
            removed_2nd: Optional[MeasuredMeridian] = None) -> Outlier:
    refit = curve_fitting(remaining)
    score = quality_of_fit(remaining, fails, refit, outlier_penalty=False)
    return Outlier(refit, score, removed, removed_2nd)


def compile_all_outlier_options(meridians: Sequence[MeasuredMeridian], fails: int) -> List[Outlier]:
    """Refits leaving out every single reading and every pair of readings."""
    data = list(meridians)
    options = []

    for i, m in enumerate(data):
        options.append(_option(data[:i] + data[i + 1:], fails, m))

        for k in range(i + 1, len(data)):
            remaining = [r for j, r in enumerate(data) if j != i and j != k]
            options.append(_option(remaining, fails, m, data[k]))

    return options
