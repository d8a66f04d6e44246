"""
Single eye acquisition tests: bucketing, hysteresis, completion and the
fit/round/accept pipeline.
"""

import math

import pytest

from refractcalc.models.lens import AstigmaticPrescription, EyeglassUsage, InvalidMeasurementError
from refractcalc.services.acquisition import DeviceCapabilities, SingleEyeBuilder

TRUTH = AstigmaticPrescription(-2, -1, 30)


def test_possible_angles_are_half_steps():
    device = DeviceCapabilities(angle_step=20)

    angles = device.possible_angles()

    assert len(angles) == 18
    assert angles[:3] == [0, 10, 20]
    assert angles[-1] == 170


def test_full_circle_device():
    device = DeviceCapabilities(angle_max=360, angle_step=20, angle_range=360)

    assert len(device.possible_angles()) == 36
    assert device.check_angle_range(370) == pytest.approx(10)


class TestBuckets:

    def setup_method(self):
        self.builder = SingleEyeBuilder(DeviceCapabilities(angle_step=20))

    def test_meridians_required(self):
        assert self.builder.number_of_meridians_required_to_complete() == 9

    def test_closest_bucket_wraps_around(self):
        assert self.builder.find_closest_possible_angle(178) == 0
        assert self.builder.find_closest_possible_angle(183) == 0
        assert self.builder.find_closest_possible_angle(24) == 20

    def test_first_sample_opens_a_bucket(self):
        assert self.builder.will_it_be_a_new_bucket(30)
        assert self.builder.add_result(4.9, -2)
        assert self.builder.current_bucket == 0

    def test_jitter_is_a_fail(self):
        self.builder.add_result(4.9, -2)

        assert not self.builder.add_result(5.1, -2)
        assert self.builder.prescription.fails == 1
        assert self.builder.current_bucket == 0

        assert self.builder.add_result(12, -2)
        assert self.builder.current_bucket == 10

    def test_will_it_be_a_new_bucket(self):
        self.builder.add_result(0, -2)

        assert self.builder.will_it_be_a_new_bucket(30)
        assert not self.builder.will_it_be_a_new_bucket(8)

    def test_small_moves_stay_in_the_bucket(self):
        buckets = []
        self.builder.add_bucket_listener(buckets.append)

        self.builder.add_result(0, -2)
        self.builder.add_result(2, -2.25)
        self.builder.add_result(30, -2.5)

        assert buckets == [0, 30]
        assert self.builder.prescription.num_angles_tested == 2
        assert self.builder.prescription.test_results.get(0).power == -2.25
        assert len(self.builder.prescription.test_results.history(0)) == 2

    def test_removed_listener_is_not_notified(self):
        buckets = []
        self.builder.add_bucket_listener(buckets.append)
        self.builder.remove_bucket_listener(buckets.append)

        self.builder.add_result(0, -2)

        assert buckets == []


class TestStartingPower:

    def setup_method(self):
        self.builder = SingleEyeBuilder(DeviceCapabilities(angle_step=20))

    def test_nothing_set(self):
        assert math.isnan(self.builder.current_power)
        assert math.isnan(self.builder.working_meridian)

    def test_inherits_from_nearby_reading(self):
        self.builder.add_result(0, -2.5)

        assert self.builder.set_working_meridian(30)
        assert self.builder.current_power == -2.5

        assert self.builder.set_working_meridian(120)
        assert self.builder.current_power == 1.0

    def test_jitter_does_not_move_the_meridian(self):
        self.builder.set_working_meridian(40)
        assert not self.builder.set_working_meridian(42)
        assert self.builder.current_bucket == 40

    def test_returning_to_a_bucket_resumes_its_reading(self):
        self.builder.add_result(0, -2.5)
        self.builder.add_result(60, -3)
        self.builder.set_working_meridian(0)

        assert self.builder.current_power == -2.5


class TestCompletion:

    def setup_method(self):
        self.builder = SingleEyeBuilder(DeviceCapabilities(angle_step=20))

    def feed(self, angles):
        return [self.builder.add_result(a, TRUTH.interpolate(a)) for a in angles]

    def test_rough_alignment(self):
        assert self.builder.is_doing_rough_alignment_first()
        self.feed([0, 20, 40])
        assert not self.builder.is_doing_rough_alignment_first()

    def test_done_after_half_of_the_buckets(self):
        assert all(self.feed(range(0, 90, 10)))
        assert not self.builder.is_test_done()

        assert not self.builder.add_result(90, -2)

        assert self.builder.is_test_done()
        assert self.builder.prescription.num_angles_tested == 9
        rounded = self.builder.prescription.rounded
        assert (rounded.sphere, rounded.cylinder, rounded.axis) == pytest.approx((-2, -1, 30))

    def test_clear_restarts_the_test(self):
        self.feed(range(0, 100, 10))
        self.builder.clear_captured_data()

        assert not self.builder.is_test_done()
        assert self.builder.prescription.num_angles_tested == 0

    def test_save_current_result(self):
        self.feed([0])
        self.builder.save_current_result()

        assert len(self.builder.prescription.raw_results) == 1
        assert len(self.builder.prescription.all_results()) == 2

    def test_nan_is_rejected(self):
        with pytest.raises(InvalidMeasurementError):
            self.builder.add_result(10, float("nan"))
        with pytest.raises(InvalidMeasurementError):
            self.builder.set_working_meridian(float("nan"))

    def test_infinite_input_leaves_the_test_running(self):
        self.builder.add_result(0, -2)

        with pytest.raises(InvalidMeasurementError):
            self.builder.add_result(10, math.inf)
        with pytest.raises(InvalidMeasurementError):
            self.builder.add_result(math.inf, -1)
        with pytest.raises(InvalidMeasurementError):
            self.builder.set_working_meridian(-math.inf)

        assert self.builder.add_result(60, -2)
        assert self.builder.current_bucket == 60
        assert self.builder.prescription.fails == 0

    def test_bad_starting_power_does_not_open_the_bucket(self):
        builder = SingleEyeBuilder(DeviceCapabilities(angle_step=20, default_starting_power=math.inf))

        with pytest.raises(InvalidMeasurementError):
            builder.set_working_meridian(30)

        assert builder.current_bucket is None
        assert math.isnan(builder.working_meridian)


class TestPipeline:

    def setup_method(self):
        self.builder = SingleEyeBuilder()
        for a in range(0, 180, 20):
            self.builder.add_result(a, TRUTH.interpolate(a))

    def test_fit_and_round(self):
        debug = []
        cp = self.builder.update_fit_and_round(debug)

        assert cp.fitted.cylinder == pytest.approx(-1, abs=1e-6)
        assert (cp.rounded.sphere, cp.rounded.cylinder, cp.rounded.axis) == pytest.approx((-2, -1, 30))
        assert cp.softened_cylinder.cylinder == pytest.approx(-0.75)
        assert debug[0].startswith("Fitted:")
        assert debug[-1].startswith("Rounded:")

    def test_two_meridians_skip_outlier_removal(self):
        builder = SingleEyeBuilder()
        builder.add_result(0, -1)
        builder.add_result(90, -2)
        debug = []

        cp = builder.update_fit_and_round(debug)

        assert "Skipping outliers removal due to having less than 8 angles." in debug
        assert (cp.fitted.sphere, cp.fitted.cylinder, cp.fitted.axis) == pytest.approx((-1, -1, 0))

    def test_acceptance(self):
        cp = self.builder.update_fit_and_acceptance(AstigmaticPrescription(-1, -1, 30), False,
                                                    EyeglassUsage.NEAR, 45)

        assert cp.accepted.add == pytest.approx(1.25)
        assert cp.accepted.sphere == pytest.approx(-2, abs=1e-6)
        assert cp.fitted.add == 0


class TestSensorAngle:

    def setup_method(self):
        self.builder = SingleEyeBuilder(DeviceCapabilities(angle_step=20))

    def feed(self, angles):
        return [self.builder.add_sensor_angle(a) for a in angles]

    def test_meridian_follows_once_readings_settle(self):
        assert self.feed([40, 40, 40]) == [False, False, True]
        assert self.builder.current_bucket == 40
        assert self.builder.sensor_angle_spread == pytest.approx(0)

    def test_small_drift_is_smoothed_out(self):
        self.feed([40, 40, 40])

        assert not self.builder.add_sensor_angle(41)
        assert self.builder.current_bucket == 40

    def test_large_move_waits_for_agreement(self):
        self.feed([40, 40, 40])

        assert self.feed([60, 60, 60]) == [False, False, True]
        assert self.builder.current_bucket == 60
        assert self.builder.prescription.fails == 0

    def test_spread_before_any_reading(self):
        assert math.isnan(self.builder.sensor_angle_spread)

    def test_invalid_sensor_angle(self):
        with pytest.raises(InvalidMeasurementError):
            self.builder.add_sensor_angle(math.inf)
        assert self.builder.angle_stack.values == []

    def test_clear_restarts_the_filters(self):
        self.feed([40, 40, 40])
        self.builder.clear_captured_data()

        assert self.feed([100, 100, 100]) == [False, False, True]
        assert self.builder.current_bucket == 100
