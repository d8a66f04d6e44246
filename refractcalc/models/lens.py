"""
Lens value types

Single-meridian measurements and astigmatic prescriptions. Prescriptions are
always held in negative-cylinder notation with the axis in [0, 180).
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from refractcalc.utils import angle_0_to_180, angle_0_to_360, fmt_power

# Below these a patient will not notice the correction for distance view.
MINIMUM_NOTICEABLE_SPHERICAL_EQUIVALENT = 0.50
MINIMUM_NOTICEABLE_CYLINDER = 1.00

# Cylinders above this are flipped into negative notation.
POSITIVE_CYLINDER_TOLERANCE = 0.001


class InvalidMeasurementError(ValueError):
    """Raised when a NaN or infinite angle or power reaches the engine."""


class EyeglassUsage(str, Enum):
    NEAR = "near"
    FAR = "far"
    BOTH = "both"


def check_finite(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise InvalidMeasurementError(f"{name} is not a finite number: {value}")
    return value


def sinusoidal_power(sphere: float, cylinder: float, axis: float, angle: float) -> float:
    """Power(angle) = Sphere + Cylinder * sin²(Axis - angle)"""
    return sphere + cylinder * math.sin(math.radians(axis) - math.radians(angle)) ** 2


@dataclass
class MeasuredMeridian:
    """A single power reading at one meridian."""
    angle: float  # degrees
    power: float  # diopters
    is_outlier: bool = False

    def __post_init__(self):
        self.angle = check_finite("angle", self.angle)
        self.power = check_finite("power", self.power)

    def copy(self) -> "MeasuredMeridian":
        return MeasuredMeridian(self.angle, self.power, self.is_outlier)

    def normalized(self) -> "MeasuredMeridian":
        return MeasuredMeridian(angle_0_to_360(self.angle), self.power, self.is_outlier)


# Clinical classification
def small_spherical_equivalent(sphere: float, cylinder: float) -> bool:
    return abs(sphere + cylinder / 2.0) < MINIMUM_NOTICEABLE_SPHERICAL_EQUIVALENT


def small_cylinder(cylinder: float) -> bool:
    return abs(cylinder) < MINIMUM_NOTICEABLE_CYLINDER


def needs_glasses_for_distance(sphere: float, cylinder: float) -> bool:
    return not (small_spherical_equivalent(sphere, cylinder) and small_cylinder(cylinder))


def has_myopia(sphere: float, cylinder: float) -> bool:
    return needs_glasses_for_distance(sphere, cylinder) and sphere < 0


def has_hyperopia(sphere: float, cylinder: float) -> bool:
    return needs_glasses_for_distance(sphere, cylinder) and sphere > 0


def has_astigmatism(sphere: float, cylinder: float) -> bool:
    return needs_glasses_for_distance(sphere, cylinder) and abs(cylinder) >= 0.25


def correction_level(sphere: float, cylinder: float) -> Optional[str]:
    """Returns 'light', 'medium' or 'high', or None when no correction is needed."""
    if not needs_glasses_for_distance(sphere, cylinder):
        return None
    if abs(sphere) < 1.6:
        return "light"
    if abs(sphere) < 4.6:
        return "medium"
    return "high"


@dataclass
class AstigmaticPrescription:
    """Sphere/cylinder/axis prescription with an optional reading add."""
    sphere: float = 0.0     # diopters
    cylinder: float = 0.0   # diopters, <= 0 after normalisation
    axis: float = 0.0       # degrees [0, 180)
    add: float = 0.0        # diopters, reading add

    def __post_init__(self):
        self.sphere = float(self.sphere)
        self.cylinder = float(self.cylinder)
        self.axis = float(self.axis)
        self.add = max(0.0, float(self.add))
        self.put_in_negative_cylinder()

    def put_in_negative_cylinder(self) -> "AstigmaticPrescription":
        if self.cylinder > POSITIVE_CYLINDER_TOLERANCE:
            self.sphere = self.sphere + self.cylinder
            self.cylinder = -self.cylinder
            self.axis = self.axis + 90
        self.axis = angle_0_to_180(self.axis)
        return self

    def set_sphere(self, sphere: float) -> None:
        self.sphere = float(sphere)
        self.put_in_negative_cylinder()

    def set_cylinder(self, cylinder: float) -> None:
        self.cylinder = float(cylinder)
        self.put_in_negative_cylinder()

    def set_axis(self, axis: float) -> None:
        self.axis = float(axis)
        self.put_in_negative_cylinder()

    def set_add(self, add: float) -> None:
        self.add = max(0.0, float(add))

    def copy(self) -> "AstigmaticPrescription":
        return AstigmaticPrescription(self.sphere, self.cylinder, self.axis, self.add)

    def spherical_equivalent(self) -> float:
        return self.sphere + self.cylinder / 2.0

    def interpolate(self, angle: float) -> float:
        """Power of this lens along the given meridian."""
        return sinusoidal_power(self.sphere, self.cylinder, self.axis, angle)

    def is_myopia(self) -> bool:
        return has_myopia(self.sphere, self.cylinder)

    def is_hyperopia(self) -> bool:
        return has_hyperopia(self.sphere, self.cylinder)

    def is_astigmat(self) -> bool:
        return has_astigmatism(self.sphere, self.cylinder)

    def is_in_need_of_glasses(self) -> bool:
        return needs_glasses_for_distance(self.sphere, self.cylinder)

    def needs_reading_power(self) -> bool:
        return self.add > 0

    def format(self) -> str:
        return (f"{fmt_power(self.sphere)} {fmt_power(self.cylinder)} @ {self.axis:3.0f}° "
                f"({fmt_power(self.spherical_equivalent())})")

    def __str__(self) -> str:
        return self.format()
