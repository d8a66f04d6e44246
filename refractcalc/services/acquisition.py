"""
Single eye acquisition

Drives one eye's test. The operator aligns a pattern at a meridian and adjusts
the power until it looks sharp; every adjustment arrives as an (angle, power)
sample. Samples are grouped into angle buckets generated at half the device
angle step, a bucket change needs both the bucket and the raw angle to move
more than 5°, and the test is done when half of the buckets hold a reading.

Usage:
    builder = SingleEyeBuilder(DeviceCapabilities())
    builder.add_sensor_angle(raw_angle)   # or set_working_meridian(angle)
    builder.add_result(angle, power)      # for every power adjustment
    ...
    builder.update_fit_and_round()        # or update_fit_and_acceptance(...)
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from refractcalc.models.lens import AstigmaticPrescription, EyeglassUsage, MeasuredMeridian, check_finite
from refractcalc.models.prescription import ComputedPrescription
from refractcalc.services.acceptance import DEFAULT_ACCEPTANCE_POLICY, AcceptancePolicy, accept
from refractcalc.services.fitting import curve_fitting
from refractcalc.services.noise import AngleChangeDispatcher, NoiseRemovalStack, StdDevStack
from refractcalc.services.outliers import MINIMUM_MERIDIANS_FOR_OUTLIERS, clear_outliers, remove_outliers
from refractcalc.services.rounding import round_25, soften_cylinder
from refractcalc.services.rounding_policy import OutlierPolicy, RoundingPolicy
from refractcalc.utils import angle_0_to_180, angle_0_to_360, circular_diff

logger = logging.getLogger(__name__)

# Bucket and raw angle must both move more than this to switch buckets
BUCKET_CHANGE_HYSTERESIS = 5.0
# Raw movement needed before a new bucket is announced ahead of time
NEW_BUCKET_RAW_CHANGE = 9.0
# Starting power is inherited from readings closer than this
STARTING_POWER_NEIGHBOURHOOD = 50.0
# Sensor angles must agree within this spread before the meridian follows them
SENSOR_ANGLE_STD = 1.0

BucketListener = Callable[[float], None]


@dataclass(frozen=True)
class DeviceCapabilities:
    """What the measuring device can do."""
    angle_min: float = 0.0
    angle_max: float = 180.0
    angle_step: float = 10.0
    default_starting_power: float = 1.0
    # Meridians measured coarsely before the fine alignment starts
    rough_alignment_meridians: int = 3
    # 180 for symmetric patterns, 360 when both halves of a meridian differ
    angle_range: int = 180

    def check_angle_range(self, angle: float) -> float:
        if self.angle_range == 360:
            return angle_0_to_360(angle)
        return angle_0_to_180(angle)

    def possible_angles(self) -> List[float]:
        # twice as many buckets as steps so no boundary reading is lost
        half_step = self.angle_step / 2.0
        count = int(math.ceil((self.angle_max - self.angle_min) / half_step))
        return [self.check_angle_range(self.angle_min + i * half_step) for i in range(count)]


class SingleEyeBuilder:
    """Stateful controller for one eye's test."""

    def __init__(self, device: Optional[DeviceCapabilities] = None,
                 prescription: Optional[ComputedPrescription] = None,
                 rounding_policy: RoundingPolicy = RoundingPolicy(),
                 outlier_policy: OutlierPolicy = OutlierPolicy(),
                 acceptance_policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY,
                 session_id: str = "-"):
        self.device = device or DeviceCapabilities()
        self.prescription = prescription if prescription is not None else ComputedPrescription()
        self.rounding_policy = rounding_policy
        self.outlier_policy = outlier_policy
        self.acceptance_policy = acceptance_policy
        self.session_id = session_id

        self.possible_angles = self.device.possible_angles()
        self.current_bucket: Optional[float] = None
        self.test_finished = False

        self._last_valid: Optional[MeasuredMeridian] = None
        self._anchor_angle: Optional[float] = None
        self._listeners: List[BucketListener] = []
        self._lock = self.prescription.lock

        self.angle_stack = NoiseRemovalStack(SENSOR_ANGLE_STD)
        self.angle_spread = StdDevStack()
        self.angle_dispatcher = AngleChangeDispatcher(BUCKET_CHANGE_HYSTERESIS)
        self.angle_dispatcher.force_next_update = True
        self.angle_dispatcher.add_listener(self._on_sensor_angle)

    @property
    def _log_extra(self):
        return {"session_id": self.session_id}

    # Buckets

    def number_of_meridians_required_to_complete(self) -> int:
        return len(self.possible_angles) // 2

    def find_closest_possible_angle(self, angle: float) -> float:
        angle = self.device.check_angle_range(angle)
        return min(self.possible_angles, key=lambda a: circular_diff(a, angle, self.device.angle_range))

    def _bucket_distance(self, a: float, b: float) -> float:
        return circular_diff(a, b, self.device.angle_range)

    def will_it_be_a_new_bucket(self, angle: float) -> bool:
        """Whether moving to ``angle`` would be taken as a new meridian."""
        with self._lock:
            new_bucket = self.find_closest_possible_angle(angle)
            if self.current_bucket is None:
                return True
            change_buckets = self._bucket_distance(new_bucket, self.current_bucket) > BUCKET_CHANGE_HYSTERESIS
            if self._last_valid is None:
                return change_buckets
            big_change = circular_diff(self._last_valid.angle, angle, 360) > NEW_BUCKET_RAW_CHANGE
            return change_buckets and big_change

    def _is_real_change(self, angle: float, new_bucket: float) -> bool:
        change_buckets = self._bucket_distance(new_bucket, self.current_bucket) > BUCKET_CHANGE_HYSTERESIS
        big_change = circular_diff(self._anchor_angle, angle, 360) > BUCKET_CHANGE_HYSTERESIS
        return change_buckets and big_change

    def _enter_bucket(self, angle: float, bucket: float) -> None:
        # nothing is assigned until the new reading is built
        anchor = self.device.check_angle_range(angle)
        last_valid = self._last_valid
        if not self.test_finished:
            last_valid = self.prescription.test_results.get(bucket)
            if last_valid is None:
                last_valid = MeasuredMeridian(anchor, self.starting_power(angle))

        self.current_bucket = bucket
        self._anchor_angle = anchor
        self._last_valid = last_valid

    def set_working_meridian(self, angle: float) -> bool:
        """
        Point the test at a meridian.

        The active bucket only changes when both the closest bucket and the
        raw angle moved more than 5°; anything smaller is jitter around the
        current meridian.

        Returns:
            True when the active bucket changed
        """
        angle = check_finite("angle", angle)
        with self._lock:
            new_bucket = self.find_closest_possible_angle(angle)
            first = self.current_bucket is None

            if not first and not self._is_real_change(angle, new_bucket):
                return False

            self._enter_bucket(angle, new_bucket)
            just_finished = not first and not self.test_finished and self.check_if_done()
            bucket = self.current_bucket

        logger.debug("Working meridian %.1f° (bucket %.1f°)", angle, bucket, extra=self._log_extra)
        self._notify(bucket)

        if just_finished:
            logger.info("Test finished with %d meridians", self.prescription.num_angles_tested,
                        extra=self._log_extra)
            self.update_fit_and_round()
        return True

    def add_result(self, angle: float, power: float) -> bool:
        """
        Feed one (angle, power) sample.

        Returns:
            False when the sample was rejected as a misalignment or arrived
            after the test finished
        """
        angle = check_finite("angle", angle)
        power = check_finite("power", power)

        with self._lock:
            if self.current_bucket is not None:
                new_bucket = self.find_closest_possible_angle(angle)
                far_bucket = self._bucket_distance(new_bucket, self.current_bucket) > BUCKET_CHANGE_HYSTERESIS
                if far_bucket and not self._is_real_change(angle, new_bucket):
                    self.prescription.add_fail()
                    logger.warning("Ignoring sample at %.1f°: bucket %.1f° is not a real change from %.1f°",
                                   angle, new_bucket, self.current_bucket, extra=self._log_extra)
                    return False

        self.set_working_meridian(angle)

        with self._lock:
            if self.test_finished:
                return False
            self._last_valid = MeasuredMeridian(self.device.check_angle_range(angle), power)
            self.prescription.add_to_bucket(self.current_bucket, self._last_valid)
        return True

    # alias kept for callers that think in test results
    new_test_result = add_result

    def add_sensor_angle(self, angle: float) -> bool:
        """
        Feed one raw reading of the device angle sensor.

        Readings are smoothed until the last few agree, and the working
        meridian only follows the smoothed angle once it moved a full
        hysteresis step.

        Returns:
            True when the active bucket changed
        """
        self.angle_stack.add(angle)
        self.angle_spread.add(angle)
        if not self.angle_stack.is_ready():
            return False

        before = self.current_bucket
        self.angle_dispatcher.new_value(self.angle_stack.average())
        return self.current_bucket != before

    @property
    def sensor_angle_spread(self) -> float:
        """Standard deviation of the latest sensor angles, NaN until there are any."""
        return self.angle_spread.value()

    def _on_sensor_angle(self, previous: float, angle: float, steps: int) -> None:
        self.set_working_meridian(angle)

    def check_if_done(self) -> bool:
        with self._lock:
            if self.prescription.num_angles_tested >= self.number_of_meridians_required_to_complete():
                self.test_finished = True
            return self.test_finished

    def is_test_done(self) -> bool:
        return self.test_finished

    def is_doing_rough_alignment_first(self) -> bool:
        return self.prescription.num_angles_tested < self.device.rough_alignment_meridians

    def starting_power(self, angle: float) -> float:
        """Power of the closest nearby reading, or the device default."""
        closest = self.prescription.test_results.closest(angle, 180)
        if closest is not None and circular_diff(closest.angle, angle, 360) < STARTING_POWER_NEIGHBOURHOOD:
            return closest.power
        return self.device.default_starting_power

    @property
    def current_power(self) -> float:
        return self._last_valid.power if self._last_valid is not None else math.nan

    @property
    def working_meridian(self) -> float:
        return self._last_valid.angle if self._last_valid is not None else math.nan

    def save_current_result(self) -> None:
        with self._lock:
            if self._last_valid is not None:
                self.prescription.save_result(self._last_valid)

    def add_fail(self) -> None:
        self.prescription.add_fail()

    def clear_captured_data(self) -> None:
        with self._lock:
            self.prescription.clear_results()
            self.test_finished = False
        self.angle_stack.reset()
        self.angle_dispatcher.reset()
        self.angle_dispatcher.force_next_update = True

    # Listeners

    def add_bucket_listener(self, listener: BucketListener) -> None:
        self._listeners.append(listener)

    def remove_bucket_listener(self, listener: BucketListener) -> None:
        self._listeners.remove(listener)

    def _notify(self, bucket: float) -> None:
        for listener in list(self._listeners):
            listener(bucket)

    # Pipeline

    def fit(self) -> AstigmaticPrescription:
        return curve_fitting(self.prescription.all_results())

    def remove_outliers(self, fitted: AstigmaticPrescription, debug: Optional[List[str]] = None) -> AstigmaticPrescription:
        if self.prescription.num_angles_tested <= MINIMUM_MERIDIANS_FOR_OUTLIERS:
            if debug is not None:
                debug.append("Skipping outliers removal due to having less than 8 angles.")
            return fitted

        return remove_outliers(self.prescription.all_results(), self.prescription.fails,
                               fitted, debug, self.outlier_policy)

    def update_fit_and_round(self, debug: Optional[List[str]] = None) -> ComputedPrescription:
        """
        Fit, remove outliers, soften and round the readings collected so far.

        Snapshots are written to the owned ComputedPrescription, which is
        returned.
        """
        with self._lock:
            meridians = self.prescription.all_results()
            fails = self.prescription.fails
            clear_outliers(meridians)

            fitted = curve_fitting(meridians)
            self.prescription.set_snapshots(fitted=fitted)
            if debug is not None:
                debug.append(f"Fitted: {fitted}")

            no_outliers = self.remove_outliers(fitted, debug)
            softened = soften_cylinder(no_outliers, meridians, fails, self.rounding_policy)
            if debug is not None:
                debug.append(f"NoOutliers: {no_outliers}")

            rounded = round_25(no_outliers, meridians, fails, None, self.rounding_policy)
            if debug is not None:
                debug.append(f"Rounded: {rounded}")

            self.prescription.set_snapshots(fitted=no_outliers, softened_cylinder=softened, rounded=rounded)

        logger.info("Fitted %s, rounded %s from %d readings", no_outliers, rounded, len(meridians),
                    extra=self._log_extra)
        return self.prescription

    def update_fit_and_acceptance(self, current_rx: Optional[AstigmaticPrescription], using_glasses: bool,
                                  usage: EyeglassUsage, age: float) -> ComputedPrescription:
        """Run the pipeline, then adjust the fit to what the patient will accept."""
        self.update_fit_and_round()

        current = current_rx.copy() if current_rx is not None else None
        with self._lock:
            accepted = accept(current, using_glasses, self.prescription.fitted, usage, age,
                              self.acceptance_policy)
            self.prescription.set_snapshots(accepted=accepted)
        return self.prescription
