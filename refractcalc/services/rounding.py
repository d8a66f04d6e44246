"""
Prescription rounding

Turns a continuous fit into a lens that exists: sphere and cylinder in steps of
0.25D (or 0.125D / 0.0625D) and axis in steps of 5° (3° / 1°). The step
combination with the lowest residual against the readings wins. Depending on
how good the fit is, the cylinder is then softened so that an uncertain
measurement never ends up as a strong astigmatic correction.
"""

import logging
from typing import List, Optional, Sequence

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.services.quality import quality_of_fit, squared_error
from refractcalc.services.rounding_policy import RoundingPolicy
from refractcalc.utils import ceil_to, round_to

logger = logging.getLogger(__name__)

LENS_STEP = 0.25

# Sphere candidates within this much of the lower one are rounded down
SPHERE_TIE_BIAS = 0.05

# Minimum cylinder considered by softening and sphere-equivalent compensation
SOFTEN_MIN_CYL = 0.249
# Rounded cylinders below this are dropped, axis included
ZERO_CYL_UNDER = 0.12

# Spherical equivalent drift tolerated before the sphere is nudged
SE_OVERCORRECTION_LIMIT = -0.20
SE_UNDERCORRECTION_LIMIT = 0.24

# Cylinder cut when rounding without astigmatism compensation
NO_COMPENSATION_CYL_CUT = 0.6


def average_power(meridians: Sequence[MeasuredMeridian]) -> float:
    """Mean power of the non-outlier readings, 0 without readings."""
    powers = [m.power for m in meridians if not m.is_outlier]
    if not powers:
        return 0.0
    return sum(powers) / len(powers)


def round_astigmatism(fitted: AstigmaticPrescription, meridians: Sequence[MeasuredMeridian],
                      step: float, axis_step: float) -> AstigmaticPrescription:
    """Best of the eight ceil/floor combinations of sphere, cylinder and axis."""
    axis_ceil = ceil_to(fitted.axis, axis_step)
    axis_floor = axis_ceil - axis_step

    cyl_ceil = ceil_to(fitted.cylinder, step)
    cyl_floor = cyl_ceil - step

    sph_ceil = ceil_to(fitted.sphere, step)
    sph_floor = sph_ceil - step

    options = []
    for axis in (axis_ceil, axis_floor):
        options.append(AstigmaticPrescription(sph_ceil, cyl_ceil, axis))
        options.append(AstigmaticPrescription(sph_floor, cyl_floor, axis))
        options.append(AstigmaticPrescription(sph_ceil, cyl_floor, axis))
        options.append(AstigmaticPrescription(sph_floor, cyl_ceil, axis))

    # centidiopter² resolution, so near-ties go to the earlier candidate
    errors = [int(squared_error(option, meridians) * 100) for option in options]
    return options[errors.index(min(errors))]


def round_sphere(fitted: AstigmaticPrescription, meridians: Sequence[MeasuredMeridian],
                 step: float) -> AstigmaticPrescription:
    """Best of ceil, ceil - step and ceil + step for the sphere alone.

    The lower candidate wins unless it is worse by more than SPHERE_TIE_BIAS.
    """
    ceil = ceil_to(fitted.sphere, step)
    axis = int(fitted.axis)

    p1 = AstigmaticPrescription(ceil, fitted.cylinder, axis)
    p2 = AstigmaticPrescription(ceil - step, fitted.cylinder, axis)
    p3 = AstigmaticPrescription(ceil + step, fitted.cylinder, axis)

    chosen, pivot = p1, squared_error(p1, meridians)

    p2_error = squared_error(p2, meridians)
    if p2_error - SPHERE_TIE_BIAS < pivot:
        chosen, pivot = p2, p2_error

    p3_error = squared_error(p3, meridians)
    if p3_error < pivot:
        chosen = p3

    return chosen


def soften(fitted: AstigmaticPrescription, rounded: AstigmaticPrescription,
           meridians: Sequence[MeasuredMeridian], fails: int,
           policy: RoundingPolicy = RoundingPolicy()) -> AstigmaticPrescription:
    """
    Reduce the rounded cylinder according to how trustworthy the fit is.

    Modifies and returns ``rounded``. The worse the quality of fit, the more
    cylinder is removed; the spherical equivalent is then brought back within
    a quarter diopter of the fitted one, preferring slight overcorrection.

    Args:
        fitted: continuous fit the readings were fitted to
        rounded: stepped prescription to soften
        meridians: readings, outlier flags honoured
        fails: operator misalignments recorded for this eye
        policy: quality cuts

    Returns:
        ``rounded``
    """
    quality = quality_of_fit(meridians, fails, fitted)

    # dead-on fits are left alone
    if quality > policy.soften_min_quality and abs(fitted.cylinder) > SOFTEN_MIN_CYL:
        rounded.set_cylinder(rounded.cylinder + 0.25)

        # hyperope whose correction range crosses zero
        crosses_zero = (fitted.sphere > 0 and abs(fitted.cylinder) > 0.50
                        and fitted.sphere + fitted.cylinder < 0.25)

        if crosses_zero or quality > policy.reduce_half_over:
            rounded.set_cylinder(round_to(rounded.cylinder / 2.0, LENS_STEP))
            rounded.set_sphere(rounded.sphere + round_to(rounded.cylinder / 2.0, LENS_STEP))
        elif quality > policy.reduce_050_over:
            if abs(rounded.cylinder) > 0.55:
                rounded.set_cylinder(rounded.cylinder + 0.50)
                rounded.set_sphere(rounded.sphere - 0.25)
            elif abs(rounded.cylinder) > 0.24:
                rounded.set_cylinder(rounded.cylinder + 0.25)
        elif quality > policy.reduce_025_over and abs(rounded.cylinder) > 0.26:
            rounded.set_cylinder(rounded.cylinder + 0.25)

        logger.debug("Softened cylinder with quality of fit %.2f: %s", quality, rounded)

    if abs(rounded.cylinder) > SOFTEN_MIN_CYL:
        drift = fitted.spherical_equivalent() - rounded.spherical_equivalent()
        if drift < SE_OVERCORRECTION_LIMIT:
            rounded.set_sphere(rounded.sphere - 0.25)
        if fitted.spherical_equivalent() - rounded.spherical_equivalent() > SE_UNDERCORRECTION_LIMIT:
            rounded.set_sphere(rounded.sphere + 0.25)

    if abs(rounded.cylinder) < ZERO_CYL_UNDER:
        rounded.set_axis(0)
        rounded.set_cylinder(0)

    return rounded


def fake_rounding(fitted: AstigmaticPrescription) -> AstigmaticPrescription:
    """Bias the continuous fit the way rounding does: stronger sphere, weaker cylinder."""
    cyl = fitted.cylinder + 0.25 if fitted.cylinder < -0.25 else 0.0
    return AstigmaticPrescription(fitted.sphere - 0.25, cyl, fitted.axis)


def soften_cylinder(fitted: Optional[AstigmaticPrescription], meridians: Sequence[MeasuredMeridian],
                    fails: int, policy: RoundingPolicy = RoundingPolicy()) -> Optional[AstigmaticPrescription]:
    """Softened but unrounded version of the fit."""
    if fitted is None:
        return None
    softened = soften(fitted, fake_rounding(fitted), meridians, fails, policy)
    return softened.put_in_negative_cylinder()


def round_prescription(fitted: Optional[AstigmaticPrescription], meridians: Sequence[MeasuredMeridian],
                       fails: int, details: Optional[List[str]] = None,
                       step: float = 0.25, axis_step: float = 5,
                       policy: RoundingPolicy = RoundingPolicy()) -> Optional[AstigmaticPrescription]:
    """
    Round and soften a continuous fit.

    Args:
        fitted: continuous fit, or None when no fit is available
        meridians: readings the fit came from
        fails: operator misalignments recorded for this eye
        details: optional list receiving a patient facing explanation
        step: sphere and cylinder step in diopters
        axis_step: axis step in degrees
        policy: rounding cuts

    Returns:
        Stepped prescription, or None if ``fitted`` is None
    """
    if fitted is None:
        return None

    text = f"Your best correction is {fitted}"

    if abs(fitted.cylinder) < policy.ignore_cyl_if_under:
        # not enough resolution to prescribe the cylinder
        rounded = round_sphere(AstigmaticPrescription(average_power(meridians), 0, 0), meridians, step)
        text += (", but since your astigmatism is very low, you may not need to wear it. "
                 f"Since lenses come in steps of 0.25D, the closest available option is {rounded}")
    else:
        rounded = round_astigmatism(fitted, meridians, step, axis_step)
        soften(fitted, rounded, meridians, fails, policy)
        text += f". Since lenses come in steps of 0.25D, the closest available option is {rounded}"

    if details is not None:
        details.append(text)
    return rounded


def round_25(fitted, meridians, fails, details=None, policy: RoundingPolicy = RoundingPolicy()):
    return round_prescription(fitted, meridians, fails, details, 0.25, 5, policy)


def round_125(fitted, meridians, fails, details=None, policy: RoundingPolicy = RoundingPolicy()):
    return round_prescription(fitted, meridians, fails, details, 0.125, 3, policy)


def round_0625(fitted, meridians, fails, details=None, policy: RoundingPolicy = RoundingPolicy()):
    return round_prescription(fitted, meridians, fails, details, 0.0625, 1, policy)


def round_without_astigmatism_compensation(fitted: Optional[AstigmaticPrescription],
                                           meridians: Sequence[MeasuredMeridian],
                                           details: Optional[List[str]] = None) -> Optional[AstigmaticPrescription]:
    """Plain 0.25D / 5° rounding with no cylinder softening."""
    if fitted is None:
        return None

    text = f"Rounding: Your best correction is {fitted}"

    if abs(fitted.cylinder) < NO_COMPENSATION_CYL_CUT:
        rounded = round_sphere(AstigmaticPrescription(average_power(meridians), 0, 0), meridians, LENS_STEP)
        text += (", but since your astigmatism is very low, you may not need to wear it. "
                 f"Since lenses come in steps of 0.25D, the closest available option is {rounded}")
    else:
        rounded = round_astigmatism(fitted, meridians, LENS_STEP, 5)
        text += f". Since lenses come in steps of 0.25D, the closest available option is {rounded}"

    if details is not None:
        details.append(text)
    return rounded
