"""
Acceptance of a new prescription

Adjusts the measured prescription to what the patient will accept given the
glasses they wear today, what they use them for and their age. Large changes
are spread over visits instead of prescribed at once, young myopes get a
small myopia-control offset and presbyopes get a reading add.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from refractcalc.models.lens import AstigmaticPrescription, EyeglassUsage
from refractcalc.utils import round_to

logger = logging.getLogger(__name__)

PRESBYOPIA_STANDARD_ADD: Tuple[Tuple[float, float], ...] = (
    (38, 0.00),
    (41, 0.50),
    (43, 1.00),
    (45, 1.25),
    (47, 1.50),
    (49, 1.75),
    (52, 2.00),
    (55, 2.25),
    (200, 2.50),
)


@dataclass(frozen=True)
class AcceptancePolicy:
    """Thresholds for the acceptance decision tree."""

    # Differences below these go unnoticed by the patient
    min_cyl_difference_to_challenge: float = 0.25
    min_sph_difference_to_challenge: float = 0.50

    # Changes above these are spread over visits
    cyl_adaptation_threshold: float = 1.0
    sph_adaptation_threshold: float = 1.5

    age_for_myopia_control: float = 20
    productive_ages: Tuple[float, float] = (20, 40)
    reading_add_from_age: float = 40

    adaptation_coefficient_non_productive: float = 0.33
    adaptation_coefficient_productive: float = 0.10

    presbyopia_add: Tuple[Tuple[float, float], ...] = PRESBYOPIA_STANDARD_ADD
    step: float = 0.25

    def is_in_productive_years(self, age: float) -> bool:
        low, high = self.productive_ages
        return low < age < high

    def standard_add(self, age: float) -> float:
        """Reading add of the first age bracket that covers ``age``."""
        for bracket, add in self.presbyopia_add:
            if age <= bracket:
                return add
        return 0.0


DEFAULT_ACCEPTANCE_POLICY = AcceptancePolicy()


def _with_sphere(rx: AstigmaticPrescription, sphere: float) -> AstigmaticPrescription:
    return AstigmaticPrescription(sphere, rx.cylinder, rx.axis)


def facilitate_sphere_adaptation(current: AstigmaticPrescription, new: AstigmaticPrescription, age: float,
                                 policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    """Move only part of the way from the current sphere to the new one."""
    diff = current.sphere - new.sphere
    if policy.is_in_productive_years(age):
        coefficient = policy.adaptation_coefficient_productive
    else:
        coefficient = policy.adaptation_coefficient_non_productive
    return _with_sphere(new, round_to(diff * coefficient + new.sphere, policy.step))


def facilitate_cylinder_adaptation(current: AstigmaticPrescription, new: AstigmaticPrescription,
                                   policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    diff = current.cylinder - new.cylinder
    cut = diff * policy.adaptation_coefficient_non_productive
    # whole steps only, truncated towards zero
    adjust_sphere = int((cut / 2.0) / policy.step) * policy.step
    return AstigmaticPrescription(new.sphere - adjust_sphere,
                                  round_to(cut + new.cylinder, policy.step),
                                  new.axis)


def myopia_control(new: AstigmaticPrescription, usage: EyeglassUsage) -> AstigmaticPrescription:
    if usage == EyeglassUsage.NEAR:
        return _with_sphere(new, new.sphere + 0.5)
    if usage == EyeglassUsage.BOTH:
        return _with_sphere(new, new.sphere + 0.25)
    return new.copy()


def reduce_near_point_for_hyperopia(new: AstigmaticPrescription, usage: EyeglassUsage, age: float,
                                    policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    if usage in (EyeglassUsage.NEAR, EyeglassUsage.BOTH):
        # presbyopes get their near correction from the reading add
        if age > policy.reading_add_from_age:
            return new.copy()
        return _with_sphere(new, new.sphere + 0.5)
    return new.copy()


def adjust_for_myopia(current: AstigmaticPrescription, new: AstigmaticPrescription,
                      usage: EyeglassUsage, age: float,
                      policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    diff = new.sphere - current.sphere

    if abs(diff) < policy.min_sph_difference_to_challenge:
        return new.copy()

    # undercorrecting
    if diff > 0:
        if abs(diff) < policy.sph_adaptation_threshold:
            return new.copy()
        return facilitate_sphere_adaptation(current, new, age, policy)

    if abs(diff) < policy.sph_adaptation_threshold:
        if age < policy.age_for_myopia_control:
            return myopia_control(new, usage)
        return new.copy()

    return facilitate_sphere_adaptation(current, new, age, policy)


def adjust_for_hyperopia(current: AstigmaticPrescription, new: AstigmaticPrescription,
                         usage: EyeglassUsage, age: float,
                         policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    diff = new.sphere - current.sphere

    if abs(diff) < policy.min_sph_difference_to_challenge:
        return new.copy()

    if diff > 0:
        if abs(diff) < policy.sph_adaptation_threshold:
            return new.copy()
        return facilitate_sphere_adaptation(current, new, age, policy)

    if abs(diff) < policy.sph_adaptation_threshold:
        return reduce_near_point_for_hyperopia(new, usage, age, policy)

    # a young hyperope reading up close cannot be undercorrected
    if usage == EyeglassUsage.NEAR and age < policy.age_for_myopia_control:
        return new.copy()

    return facilitate_sphere_adaptation(current, new, age, policy)


def adjust_cylinder(current: AstigmaticPrescription, new: AstigmaticPrescription,
                    policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    diff = new.cylinder - current.cylinder

    if abs(diff) < policy.min_cyl_difference_to_challenge or diff > 0:
        return new.copy()

    if abs(diff) < policy.cyl_adaptation_threshold:
        return AstigmaticPrescription(new.sphere, new.cylinder + policy.min_cyl_difference_to_challenge, new.axis)

    return facilitate_cylinder_adaptation(current, new, policy)


def reading_glasses(new: AstigmaticPrescription, usage: EyeglassUsage, age: float,
                    policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    """Add the age-standard reading power when the glasses are used up close."""
    if age < policy.reading_add_from_age or usage == EyeglassUsage.FAR:
        return new

    with_add = AstigmaticPrescription(new.sphere, new.cylinder, new.axis)
    with_add.set_add(policy.standard_add(age))
    return with_add


def accept(current: Optional[AstigmaticPrescription], using_glasses: bool, new: AstigmaticPrescription,
           usage: EyeglassUsage, age: float,
           policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY) -> AstigmaticPrescription:
    """
    Prescription the patient is expected to accept.

    Args:
        current: correction the patient wears today, None if unknown
        using_glasses: whether the patient wears glasses today
        new: freshly measured and rounded prescription
        usage: near, far or both
        age: patient age in years
        policy: thresholds of the decision tree

    Returns:
        A new prescription; the inputs are never modified
    """
    if current is None:
        current = AstigmaticPrescription()

    if not new.is_in_need_of_glasses():
        return AstigmaticPrescription()

    # glasses of unknown power: nothing to compare against
    if using_glasses and not current.is_in_need_of_glasses():
        return new.copy()

    accepted = new.copy()
    if new.is_myopia():
        accepted = adjust_for_myopia(current, new, usage, age, policy)
    elif new.is_hyperopia():
        accepted = adjust_for_hyperopia(current, new, usage, age, policy)

    if new.is_astigmat():
        accepted = adjust_cylinder(current, accepted, policy)

    accepted = reading_glasses(accepted, usage, age, policy)
    logger.debug("Accepted %s for current %s, usage %s, age %s", accepted, current, usage, age)
    return accepted
