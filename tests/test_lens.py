"""
Lens value type tests: negative cylinder notation, axis folding and the
clinical classification.
"""

import math

import pytest

from refractcalc.models.lens import (
    AstigmaticPrescription, InvalidMeasurementError, MeasuredMeridian, correction_level,
)


def test_positive_cylinder_is_transposed():
    rx = AstigmaticPrescription(0.0, 1.0, 30)

    assert rx.sphere == pytest.approx(1.0)
    assert rx.cylinder == pytest.approx(-1.0)
    assert rx.axis == pytest.approx(120)


def test_transposition_is_idempotent():
    rx = AstigmaticPrescription(-1.25, 2.0, 170)
    once = (rx.sphere, rx.cylinder, rx.axis)

    rx.put_in_negative_cylinder()
    rx.put_in_negative_cylinder()

    assert (rx.sphere, rx.cylinder, rx.axis) == once
    assert 0 <= rx.axis < 180


@pytest.mark.parametrize("axis,expected", [(190, 10), (-10, 170), (180, 0), (360, 0), (540.5, 0.5)])
def test_axis_is_folded(axis, expected):
    assert AstigmaticPrescription(-1, -0.5, axis).axis == pytest.approx(expected)


def test_setters_keep_negative_cylinder():
    rx = AstigmaticPrescription(-2, -1, 90)
    rx.set_cylinder(0.5)

    assert rx.cylinder == pytest.approx(-0.5)
    assert rx.sphere == pytest.approx(-1.5)
    assert rx.axis == pytest.approx(0)


def test_interpolate_follows_the_meridian_formula():
    rx = AstigmaticPrescription(-2, -1, 30)

    assert rx.interpolate(30) == pytest.approx(-2)
    assert rx.interpolate(120) == pytest.approx(-3)
    assert rx.interpolate(75) == pytest.approx(-2.5)


def test_spherical_equivalent():
    assert AstigmaticPrescription(-2, -1, 90).spherical_equivalent() == pytest.approx(-2.5)


def test_format():
    assert AstigmaticPrescription(-2, -1, 90).format() == "-2.00 -1.00 @  90° (-2.50)"
    assert str(AstigmaticPrescription(1.1, 0, 5)) == "+1.10 +0.00 @   5° (+1.10)"


def test_nan_meridian_is_rejected():
    with pytest.raises(InvalidMeasurementError):
        MeasuredMeridian(math.nan, 1.0)
    with pytest.raises(ValueError):
        MeasuredMeridian(10.0, float("nan"))


@pytest.mark.parametrize("angle,power", [(math.inf, 1.0), (10.0, -math.inf)])
def test_infinite_meridian_is_rejected(angle, power):
    with pytest.raises(InvalidMeasurementError):
        MeasuredMeridian(angle, power)


def test_negative_add_is_clamped():
    assert AstigmaticPrescription(-1, 0, 0, -1).add == 0


def test_meridian_normalised_to_full_circle():
    assert MeasuredMeridian(-10, 1).normalized().angle == pytest.approx(350)
    assert MeasuredMeridian(370, 1).normalized().angle == pytest.approx(10)


class TestClassification:

    def test_low_prescription_needs_no_glasses(self):
        rx = AstigmaticPrescription(-0.25, -0.25, 0)
        assert not rx.is_in_need_of_glasses()
        assert not rx.is_myopia()

    def test_myopia(self):
        rx = AstigmaticPrescription(-2, -0.5, 0)
        assert rx.is_myopia()
        assert not rx.is_hyperopia()

    def test_hyperopia(self):
        assert AstigmaticPrescription(2, 0, 0).is_hyperopia()

    def test_astigmatism(self):
        rx = AstigmaticPrescription(0, -1.5, 0)
        assert rx.is_in_need_of_glasses()
        assert rx.is_astigmat()

    @pytest.mark.parametrize("sphere,level", [(-0.25, None), (-1.0, "light"), (-3.0, "medium"), (-5.0, "high")])
    def test_correction_level(self, sphere, level):
        assert correction_level(sphere, 0) == level

    def test_reading_add(self):
        rx = AstigmaticPrescription(1, 0, 0)
        assert not rx.needs_reading_power()
        rx.set_add(-1)
        assert rx.add == 0
        rx.set_add(1.25)
        assert rx.needs_reading_power()
