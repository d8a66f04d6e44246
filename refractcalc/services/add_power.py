"""
Reading add suggestions

Add power from age alone, or from age and the distance the patient likes to
read at, using mean accommodation amplitudes by age.
"""

from typing import Tuple

from refractcalc.utils import round_to

# (age, add)
AVERAGE_ADD_PER_AGE: Tuple[Tuple[float, float], ...] = (
    (38.0, 0.00),
    (39.5, 0.00),
    (40.0, 0.50),
    (41.0, 0.50),
    (42.0, 0.75),
    (43.0, 1.00),
    (44.0, 1.25),
    (45.0, 1.25),
    (46.0, 1.50),
    (47.0, 1.50),
    (48.0, 1.75),
    (49.0, 1.75),
    (50.0, 2.00),
    (51.0, 2.00),
    (52.0, 2.00),
    (53.0, 2.00),
    (54.0, 2.25),
    (55.0, 2.25),
    (60.0, 2.50),
    (70.0, 2.75),
    (200.0, 3.00),
)

# (age, mean accommodation amplitude, comfort add)
MEAN_ACCOMMODATION_PER_AGE: Tuple[Tuple[float, float, float], ...] = (
    (10.0, 13.75, 0.00),
    (20.0, 11.00, 0.00),
    (30.0, 8.60, 0.00),
    (35.0, 8.60, 0.00),
    (40.0, 6.00, 0.75),
    (42.5, 5.00, 1.25),
    (45.0, 4.00, 1.50),
    (47.5, 3.00, 1.75),
    (50.0, 1.75, 0.50),
    (55.0, 1.40, 0.50),
    (60.0, 1.25, 0.75),
    (65.0, 1.10, 0.75),
    (70.0, 1.00, 0.50),
    (90.0, 0.50, 0.25),
    (150.0, 0.50, 0.25),
)

# Newborn values the interpolation starts from
_BIRTH = (0.0, 15.0, 0.0)

# Below this the patient can still read unaided, only the comfort add applies
MINIMUM_HELP = 0.25


def suggested_add_by_age(age: float) -> float:
    for bracket, add in AVERAGE_ADD_PER_AGE:
        if age < bracket:
            return add
    return 0.0


def _interpolate(age: float, column: int) -> float:
    previous = _BIRTH
    for row in MEAN_ACCOMMODATION_PER_AGE:
        if age <= row[0]:
            fraction = (age - previous[0]) / (row[0] - previous[0])
            return (row[column] - previous[column]) * fraction + previous[column]
        previous = row
    return 0.0


def accommodation_amplitude_by_age(age: float) -> float:
    """Mean accommodation amplitude in diopters, linearly interpolated."""
    return _interpolate(age, 1)


def comfort_add_by_age(age: float) -> float:
    return _interpolate(age, 2)


def want_to_read_at(age: float, distance_m: float) -> float:
    """
    Add power for reading at a preferred distance.

    Assumes the patient is already corrected for distance.

    Args:
        age: patient age in years
        distance_m: preferred reading distance in meters (typically 0.17 to 0.76)

    Returns:
        Add power rounded to 0.25D
    """
    if distance_m <= 0:
        raise ValueError("reading distance must be positive")

    needed = 1.0 / distance_m - accommodation_amplitude_by_age(age)
    comfort = comfort_add_by_age(age)

    if needed < MINIMUM_HELP:
        return round_to(comfort, 0.25)
    return round_to(needed + comfort, 0.25)
