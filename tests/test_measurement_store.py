"""
Angle-bucketed store and per-eye aggregate tests.
"""

import threading

import pytest

from refractcalc.models.lens import MeasuredMeridian
from refractcalc.models.prescription import MAX_HISTORY_SIZE, ComputedPrescription, MeridianStore, to_key


def test_key_quantisation():
    assert to_key(29.999999) == 3000
    assert to_key(30.004) == 3000
    assert to_key(30.006) == 3001


def test_put_overwrites_and_keeps_history():
    store = MeridianStore()
    store.put(10, MeasuredMeridian(10, -1.0))
    previous = store.put(10, MeasuredMeridian(10.001, -1.5))

    assert previous.power == -1.0
    assert store.get(10).power == -1.5
    assert [m.power for m in store.history(10)] == [-1.0, -1.5]
    assert len(store) == 1


def test_history_is_bounded_and_drops_oldest():
    store = MeridianStore()
    for i in range(30):
        store.put(10, MeasuredMeridian(10, float(i)))

    history = store.history(10)
    assert len(history) == MAX_HISTORY_SIZE
    assert history[0].power == 5.0
    assert history[-1].power == 29.0
    assert store.get(10).power == 29.0


def test_closest_uses_circular_distance():
    store = MeridianStore()
    store.put(5, MeasuredMeridian(5, -1))
    store.put(90, MeasuredMeridian(90, -2))

    assert store.closest(178, 180).angle == 5

    full = MeridianStore()
    full.put(10, MeasuredMeridian(10, -1))
    full.put(200, MeasuredMeridian(200, -2))

    assert full.closest(355, 360).angle == 10


def test_closest_on_empty_store():
    assert MeridianStore().closest(10) is None


def test_items_are_copies():
    store = MeridianStore()
    store.put(10, MeasuredMeridian(10, -1))

    angle, meridian = store.items()[0]
    meridian.power = 99

    assert angle == 10
    assert store.get(10).power == -1


def test_concurrent_inserts():
    store = MeridianStore()

    def insert(offset):
        for i in range(300):
            store.put(offset + i % 10, MeasuredMeridian(offset, float(i)))

    threads = [threading.Thread(target=insert, args=(o,)) for o in (0, 20, 40, 60)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 40
    assert all(len(store.history(a)) == MAX_HISTORY_SIZE for a in store.keys())


class TestComputedPrescription:

    def setup_method(self):
        self.cp = ComputedPrescription()

    def test_all_results_unions_buckets_and_raw(self):
        self.cp.add_to_bucket(10, MeasuredMeridian(10, -1))
        self.cp.add_to_bucket(10, MeasuredMeridian(12, -1.25))
        self.cp.save_result(MeasuredMeridian(12, -1.25))

        results = self.cp.all_results()

        assert len(results) == 2
        assert self.cp.num_angles_tested == 1
        assert [m.power for m in results] == [-1.25, -1.25]

    def test_angles_are_normalised(self):
        self.cp.add_to_bucket(0, MeasuredMeridian(-10, 1))
        assert self.cp.all_results()[0].angle == pytest.approx(350)

    def test_fails(self):
        self.cp.add_fail()
        self.cp.add_fail()
        assert self.cp.fails == 2

    def test_clear(self):
        self.cp.add_to_bucket(10, MeasuredMeridian(10, -1))
        self.cp.save_result(MeasuredMeridian(10, -1))
        self.cp.add_fail()

        self.cp.clear()

        assert self.cp.all_results() == []
        assert self.cp.fails == 0

    def test_snapshots_are_independent(self):
        from refractcalc.models.lens import AstigmaticPrescription

        self.cp.set_snapshots(fitted=AstigmaticPrescription(-1, -1, 10), rounded=AstigmaticPrescription(-1.25, -0.75, 10))

        assert self.cp.fitted.sphere == -1
        assert self.cp.rounded.sphere == -1.25
        assert self.cp.accepted.sphere == 0
        assert str(self.cp) == "-1.25 -0.75 @ 10"
