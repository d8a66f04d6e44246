"""
Rounding and Outlier Policy System

Threshold sets for the cylinder softening and outlier removal heuristics. The
cuts were tuned against different fit-quality measures over time; the
historical sets are kept as presets so alternate thresholds can be compared
without touching the engines.
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class RoundingPolicy:
    """Cuts applied by the rounding engine to a fit-quality score."""

    # Below this cylinder the fit is rounded as a pure sphere
    ignore_cyl_if_under: float = 0.45

    # No softening at all under this score (dead-on fits)
    soften_min_quality: float = 0.60

    # The higher the score, the more cylinder is removed
    reduce_025_over: float = 0.62
    reduce_050_over: float = 0.90
    reduce_half_over: float = 1.25


@dataclass(frozen=True)
class OutlierPolicy:
    """Thresholds for the iterative outlier search."""

    biggest_push_small_cyls: float = 0.50
    biggest_push_large_cyls: float = 0.75
    # Cylinders above this use the large push limit
    large_cyl: float = 2.5
    min_std_dev_multiplier_to_push_axis: float = 1.8
    min_deforming_fit_quality: float = 0.15
    # Axis and far-from-curve searches only run on fits worse than this
    min_quality_to_search: float = 0.40
    min_miss_to_flag: float = 0.50


# === Policy Presets ===

ROUNDING_POLICIES: Dict[str, RoundingPolicy] = {
    "quality_of_fit": RoundingPolicy(),
    "absolute_errors": RoundingPolicy(
        reduce_025_over=0.15, reduce_050_over=0.30, reduce_half_over=0.50,
    ),
    "sum_of_errors": RoundingPolicy(
        ignore_cyl_if_under=0.15,
        reduce_025_over=0.50, reduce_050_over=1.00, reduce_half_over=1.75,
    ),
}

OUTLIER_POLICIES: Dict[str, OutlierPolicy] = {
    "standard": OutlierPolicy(),
    "strict": OutlierPolicy(
        biggest_push_small_cyls=0.40, biggest_push_large_cyls=0.50,
        min_std_dev_multiplier_to_push_axis=3.0, min_deforming_fit_quality=0.15,
    ),
    "lenient": OutlierPolicy(
        biggest_push_small_cyls=0.40, biggest_push_large_cyls=0.70,
        min_std_dev_multiplier_to_push_axis=2.5, min_deforming_fit_quality=0.42,
    ),
}


def get_rounding_policy(policy_key: str) -> RoundingPolicy:
    """Get a rounding policy by key, defaulting to quality_of_fit if not found."""
    return ROUNDING_POLICIES.get(policy_key, ROUNDING_POLICIES["quality_of_fit"])


def get_outlier_policy(policy_key: str) -> OutlierPolicy:
    """Get an outlier policy by key, defaulting to standard if not found."""
    return OUTLIER_POLICIES.get(policy_key, OUTLIER_POLICIES["standard"])


def get_available_policies() -> Dict[str, Dict[str, str]]:
    """Get available policy keys and descriptions."""
    return {
        "rounding": {
            "quality_of_fit": "Cuts on the quality-of-fit score (default)",
            "absolute_errors": "Cuts tuned for average absolute residuals",
            "sum_of_errors": "Cuts tuned for summed residuals, lower sphere-only cut",
        },
        "outliers": {
            "standard": "Default outlier search",
            "strict": "Smaller cylinder pushes, axis outliers need 3 std devs",
            "lenient": "Larger pushes tolerated, fit must improve by 0.42 to drop a point",
        },
    }


def create_custom_rounding_policy(**kwargs) -> RoundingPolicy:
    """Create a custom rounding policy from parameters, starting from the defaults."""
    return RoundingPolicy(**kwargs)
