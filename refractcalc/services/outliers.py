"""
Outlier removal

Leaves one or two readings out at a time, refits, and flags the reading(s)
whose removal changes the fit the most. Four rules are tried in order and the
first one that finds a candidate wins:

1. the point is pushing the cylinder up
2. the point is rotating the axis away from what every other subset agrees on
3. the point sits far from the curve fitted without it
4. the point is deforming the quality of the fit

Readings are only flagged, never deleted.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.services.fitting import Outlier, compile_all_outlier_options
from refractcalc.services.quality import quality_of_fit
from refractcalc.services.rounding_policy import OutlierPolicy
from refractcalc.utils import avg_std, diff_180

logger = logging.getLogger(__name__)

# Outlier removal needs more readings than this
MINIMUM_MERIDIANS_FOR_OUTLIERS = 7

# Removing the axis outlier must lower the cylinder by at least this much
AXIS_PUSH_MIN_CYL_GAIN = 0.12
# Far-from-curve removals may strengthen the cylinder by up to this much
FAR_FROM_CURVE_MAX_CYL_LOSS = 0.25
# Below this spread every option is considered equivalent
EQUIVALENT_OPTIONS_STD = 0.05


def clear_outliers(meridians: Sequence[MeasuredMeridian]) -> None:
    for m in meridians:
        m.is_outlier = False


def _miss(option: Outlier, removed: MeasuredMeridian) -> float:
    return abs(removed.power - option.fitted.interpolate(removed.angle))


def pushing_the_cylinder(options: List[Outlier], fitted: AstigmaticPrescription,
                         policy: OutlierPolicy) -> Optional[Outlier]:
    """Point whose removal lowers the cylinder significantly."""
    push = policy.biggest_push_small_cyls
    if abs(fitted.cylinder) > policy.large_cyl:
        push = policy.biggest_push_large_cyls

    found = None
    biggest = push
    for option in options:
        if option.is_pair:
            continue
        gain = option.fitted.cylinder - fitted.cylinder
        if gain > biggest:
            found, biggest = option, gain

    # two removals must do significantly better than the best single one
    for option in options:
        if not option.is_pair:
            continue
        gain = option.fitted.cylinder - fitted.cylinder
        if gain > biggest + policy.biggest_push_small_cyls:
            found, biggest = option, gain

    return found


def pushing_the_axis(options: List[Outlier], fitted: AstigmaticPrescription,
                     policy: OutlierPolicy) -> Optional[Outlier]:
    """Option whose axis disagrees with all the other options."""
    if len(options) < 2:
        return None

    axes = [o.fitted.axis for o in options]
    diffs = np.array([[diff_180(a, b) for b in axes] for a in axes])
    diffs[diffs > 179] = 0
    mean_diffs = diffs.sum(axis=1) / (len(options) - 1)

    avg, std = avg_std(mean_diffs)
    limit = policy.min_std_dev_multiplier_to_push_axis * std
    candidates = [i for i, d in enumerate(mean_diffs) if abs(d - avg) > limit]

    # several disagreeing subsets means the test should be repeated
    if len(candidates) != 1:
        return None

    candidate = options[candidates[0]]
    if candidate.fitted.cylinder < fitted.cylinder + AXIS_PUSH_MIN_CYL_GAIN:
        return None
    return candidate


def far_from_the_curve(options: List[Outlier], fitted: AstigmaticPrescription,
                       policy: OutlierPolicy) -> Optional[Outlier]:
    """Point that lands far away from the curve fitted without it."""
    singles = [o for o in options if not o.is_pair]
    if not singles:
        return None

    avg, std = avg_std(_miss(o, o.removed) for o in singles)
    if std < EQUIVALENT_OPTIONS_STD:
        return None

    limit = policy.min_std_dev_multiplier_to_push_axis * std
    found = None
    furthest = 0.0

    for option in singles:
        miss = _miss(option, option.removed)
        if miss > policy.min_miss_to_flag and abs(miss - avg) > limit and miss > furthest:
            found, furthest = option, miss

    # a pair only wins if the two points are, on average, even further out
    for option in options:
        if not option.is_pair:
            continue
        miss = (_miss(option, option.removed) + _miss(option, option.removed_2nd)) / 2
        if miss > policy.min_miss_to_flag and abs(miss - avg) > limit and miss > furthest:
            found, furthest = option, miss

    if found is not None and found.fitted.cylinder < fitted.cylinder - FAR_FROM_CURVE_MAX_CYL_LOSS:
        return None
    return found


def deforming_the_fit(options: List[Outlier], current_quality: float,
                      policy: OutlierPolicy) -> Optional[Outlier]:
    """Isolated point that makes the quality of fit bad."""
    min_gain = policy.min_deforming_fit_quality
    found = None
    best = current_quality
    single_scores = []

    for option in options:
        if option.is_pair:
            continue
        single_scores.append(option.quality_of_fit)
        if current_quality - option.quality_of_fit > min_gain and option.quality_of_fit < best:
            found, best = option, option.quality_of_fit

    for option in options:
        if not option.is_pair:
            continue
        if current_quality - option.quality_of_fit > min_gain * 1.5 and option.quality_of_fit < best - 0.2:
            found, best = option, option.quality_of_fit

    _, std = avg_std(single_scores)
    if not single_scores or std < EQUIVALENT_OPTIONS_STD:
        return None
    return found


def choose_outlier(options: List[Outlier], fitted: AstigmaticPrescription, current_quality: float,
                   policy: OutlierPolicy, debug: Optional[List[str]] = None) -> Optional[Outlier]:
    """Apply the four rules, in order, to a sorted option list."""
    searching = current_quality > policy.min_quality_to_search
    # axis only matters if the cylinder is high
    rules = [
        ("it was pushing the cylinder higher",
         lambda: pushing_the_cylinder(options, fitted, policy)),
        ("it was changing the axis away from the average of the other points",
         lambda: pushing_the_axis(options, fitted, policy) if searching and abs(fitted.cylinder) > 0.51 else None),
        ("it was far from the curve",
         lambda: far_from_the_curve(options, fitted, policy) if searching else None),
        ("it was deforming the fit quality",
         lambda: deforming_the_fit(options, current_quality, policy)),
    ]

    for reason, rule in rules:
        chosen = rule()
        if chosen is not None:
            break
    else:
        return None

    logger.debug("Outlier %s: %s", chosen, reason)
    if debug is not None:
        debug.append(f"Removing outlier because {reason}: {chosen}")
    return chosen


def remove_outliers(meridians: Sequence[MeasuredMeridian], fails: int, fitted: AstigmaticPrescription,
                    debug: Optional[List[str]] = None,
                    policy: OutlierPolicy = OutlierPolicy()) -> AstigmaticPrescription:
    """
    Flag outliers among the meridians and return the refit prescription.

    Args:
        meridians: all readings of the eye; their outlier flags are rewritten
        fails: operator misalignments recorded for this eye
        fitted: fit over all readings
        debug: optional list collecting human readable decisions
        policy: outlier thresholds

    Returns:
        The fit without the flagged readings, or ``fitted`` when nothing is removed
    """
    meridians = list(meridians)
    clear_outliers(meridians)

    if len(meridians) <= MINIMUM_MERIDIANS_FOR_OUTLIERS:
        return fitted

    current_quality = quality_of_fit(meridians, fails, fitted)
    if debug is not None:
        debug.append(f"Quality of Fit: {current_quality:.3f}")

    options = compile_all_outlier_options(meridians, fails)
    options.sort(key=lambda o: o.quality_of_fit)

    chosen = choose_outlier(options, fitted, current_quality, policy, debug)
    if chosen is None:
        return fitted

    chosen.set_outliers()
    return chosen.fitted
