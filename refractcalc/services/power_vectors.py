"""
Power vector analysis

Thibos power vectors (M, J0, J45) for sphero-cylindrical prescriptions. The
astigmatic lens model is linear in this space, which is what the curve fitter
relies on, and differences between two prescriptions are measured here as a
vector dioptric distance.
"""

import math
from typing import Tuple

from refractcalc.models.lens import AstigmaticPrescription


def to_vec(cylinder: float, axis_deg: float) -> Tuple[float, float]:
    """
    Convert a cylinder and axis to the (J0, J45) components.

    Args:
        cylinder: Cylinder in diopters (negative notation)
        axis_deg: Axis in degrees

    Returns:
        (J0, J45) power vector components
    """
    th = math.radians(2 * axis_deg % 360)
    return (-0.5 * cylinder * math.cos(th), -0.5 * cylinder * math.sin(th))


def from_vec(J0: float, J45: float) -> Tuple[float, float]:
    """
    Convert (J0, J45) back to a negative cylinder and its axis.

    Returns:
        (cylinder, axis_deg) with cylinder <= 0 and axis_deg in [0, 180)
    """
    cylinder = -2.0 * math.hypot(J0, J45)
    axis = (math.degrees(math.atan2(J45, J0)) / 2.0) % 180
    return cylinder, axis


def to_power_vector(rx: AstigmaticPrescription) -> Tuple[float, float, float]:
    J0, J45 = to_vec(rx.cylinder, rx.axis)
    return rx.spherical_equivalent(), J0, J45


def from_power_vector(M: float, J0: float, J45: float) -> AstigmaticPrescription:
    cylinder, axis = from_vec(J0, J45)
    return AstigmaticPrescription(M - cylinder / 2.0, cylinder, axis)


def vector_length(measured: AstigmaticPrescription, real: AstigmaticPrescription) -> float:
    m1, j01, j451 = to_power_vector(measured)
    m2, j02, j452 = to_power_vector(real)
    return math.sqrt((m1 - m2) ** 2 + (j01 - j02) ** 2 + (j451 - j452) ** 2)


def vector_dioptric_distance(measured: AstigmaticPrescription, real: AstigmaticPrescription) -> float:
    """Tolerance of a measured prescription to the real correction."""
    return math.sqrt(2.0) * vector_length(measured, real)


def signed_vector_dioptric_distance(measured: AstigmaticPrescription, real: AstigmaticPrescription) -> float:
    # positive when the measurement is more plus than the real correction
    sign = 1.0 if measured.spherical_equivalent() > real.spherical_equivalent() else -1.0
    return sign * vector_dioptric_distance(measured, real)
