"""
Per-eye measurement storage

MeridianStore buckets readings by quantised angle and keeps a bounded history
per bucket. ComputedPrescription is the per-eye aggregate: bucketed store, raw
reading sequence, failure counter and the pipeline snapshots.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.utils import angle_0_to_360, circular_diff

ANGLE_MULTIPLIER = 100
MAX_HISTORY_SIZE = 25


def to_key(angle: float) -> int:
    # 0.01° resolution; rounding absorbs float jitter like 29.999999
    return int(round(float(angle) * ANGLE_MULTIPLIER))


def to_angle(key: int) -> float:
    return key / ANGLE_MULTIPLIER


class MeridianStore:
    """Angle-bucketed readings with per-bucket history.

    Every public method takes the store lock. Readers get copies.
    """

    def __init__(self, max_history: int = MAX_HISTORY_SIZE, lock: Optional[threading.RLock] = None):
        self.max_history = max_history
        self._lock = lock or threading.RLock()
        self._data: Dict[int, MeasuredMeridian] = {}
        self._history: Dict[int, Deque[MeasuredMeridian]] = {}

    def put(self, angle: float, meridian: MeasuredMeridian) -> Optional[MeasuredMeridian]:
        """Overwrite the bucket value and append it to the bucket history."""
        key = to_key(angle)
        with self._lock:
            history = self._history.get(key)
            if history is None:
                history = self._history[key] = deque(maxlen=self.max_history)
            history.append(meridian)
            previous = self._data.get(key)
            self._data[key] = meridian
            return previous

    def get(self, angle: float) -> Optional[MeasuredMeridian]:
        with self._lock:
            return self._data.get(to_key(angle))

    def closest_key(self, angle: float, period: int = 180) -> Optional[int]:
        with self._lock:
            best_key = None
            best_diff = float("inf")
            for key in self._data:
                diff = circular_diff(to_angle(key), angle, period)
                if diff < best_diff:
                    best_key, best_diff = key, diff
            return best_key

    def closest(self, angle: float, period: int = 180) -> Optional[MeasuredMeridian]:
        with self._lock:
            key = self.closest_key(angle, period)
            return None if key is None else self._data[key]

    def history(self, angle: float) -> List[MeasuredMeridian]:
        with self._lock:
            return list(self._history.get(to_key(angle), ()))

    def histories(self) -> Dict[int, List[MeasuredMeridian]]:
        with self._lock:
            return {key: [m.copy() for m in values] for key, values in self._history.items()}

    def keys(self) -> List[float]:
        with self._lock:
            return [to_angle(k) for k in self._data]

    def items(self) -> List[tuple]:
        with self._lock:
            return [(to_angle(k), v.copy()) for k, v in self._data.items()]

    def values(self) -> List[MeasuredMeridian]:
        with self._lock:
            return list(self._data.values())

    def restore(self, key: int, current: MeasuredMeridian, history: List[MeasuredMeridian]) -> None:
        """Load one bucket as persisted, history order preserved."""
        with self._lock:
            self._data[key] = current
            self._history[key] = deque(history, maxlen=self.max_history)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._history.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class ComputedPrescription:
    """Result of one eye's test."""

    def __init__(self):
        self._lock = threading.RLock()
        self.test_results = MeridianStore(lock=self._lock)
        self.raw_results: List[MeasuredMeridian] = []
        self._fails = 0
        self.fitted = AstigmaticPrescription()
        self.softened_cylinder = AstigmaticPrescription()
        self.rounded = AstigmaticPrescription()
        self.accepted = AstigmaticPrescription()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def clear(self) -> None:
        with self._lock:
            self.test_results.clear()
            self.raw_results = []
            self._fails = 0
            self.fitted = AstigmaticPrescription()
            self.softened_cylinder = AstigmaticPrescription()
            self.rounded = AstigmaticPrescription()
            self.accepted = AstigmaticPrescription()

    def clear_results(self) -> None:
        with self._lock:
            self.test_results.clear()
            self.raw_results = []

    def save_result(self, meridian: MeasuredMeridian) -> None:
        """Append to the raw time-ordered sequence."""
        with self._lock:
            self.raw_results.append(meridian.normalized())

    def add_to_bucket(self, bucket_angle: float, meridian: MeasuredMeridian) -> None:
        meridian = meridian.normalized()
        with self._lock:
            self.test_results.put(bucket_angle, meridian)

    def all_results(self) -> List[MeasuredMeridian]:
        """Bucket values plus the raw sequence.

        The list is a snapshot taken under the lock; the meridians themselves
        are shared so outlier flags set by a fitting pass stay on the stored
        readings.
        """
        with self._lock:
            powers = self.test_results.values()
            powers.extend(self.raw_results)
            return powers

    def add_fail(self) -> None:
        with self._lock:
            self._fails += 1

    @property
    def fails(self) -> int:
        return self._fails

    @fails.setter
    def fails(self, value: int) -> None:
        with self._lock:
            self._fails = int(value)

    @property
    def num_angles_tested(self) -> int:
        return len(self.test_results)

    def set_snapshots(self, fitted=None, softened_cylinder=None, rounded=None, accepted=None) -> None:
        with self._lock:
            if fitted is not None:
                self.fitted = fitted
            if softened_cylinder is not None:
                self.softened_cylinder = softened_cylinder
            if rounded is not None:
                self.rounded = rounded
            if accepted is not None:
                self.accepted = accepted

    def __str__(self) -> str:
        r = self.rounded
        if r is None:
            return "-"
        return f"{r.sphere:.2f} {r.cylinder:.2f} @ {int(r.axis)}"
