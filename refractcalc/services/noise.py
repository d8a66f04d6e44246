"""
Input noise filtering

Sensors deliver angle and power readings many times per second. These small
filters sit between the sensors and the acquisition controller: a stability
stack that only moves its value once recent readings agree, a spread monitor,
and dispatchers that notify listeners only on step-sized changes. NaN input is
rejected here so it never reaches the fitting thresholds.
"""

import math
import threading
from collections import deque
from typing import Callable, List

from refractcalc.models.lens import check_finite
from refractcalc.utils import avg_std, diff_180

DEFAULT_STACK_SIZE = 3

# (from, to, steps changed)
ChangeListener = Callable[[float, float, int], None]


class NoiseRemovalStack:
    """Moving average that only updates while the last readings agree."""

    def __init__(self, required_std_to_update: float, stack_size: int = DEFAULT_STACK_SIZE):
        self.stack_size = stack_size
        self.required_std_to_update = required_std_to_update
        self._values = deque(maxlen=stack_size)
        self._stable_value = math.nan
        self._lock = threading.Lock()

    def add(self, value: float) -> None:
        value = check_finite("value", value)
        with self._lock:
            self._values.appendleft(value)

    @property
    def values(self) -> List[float]:
        with self._lock:
            return list(self._values)

    def average(self) -> float:
        """Stable value, or the last stable one while readings disagree."""
        with self._lock:
            if not self._values:
                return math.nan
            avg, std = avg_std(self._values)
            if std <= self.required_std_to_update:
                self._stable_value = avg
            return self._stable_value

    def is_ready(self) -> bool:
        return len(self._values) == self.stack_size and not math.isnan(self.average())

    def reset(self) -> None:
        with self._lock:
            self._values.clear()
            self._stable_value = math.nan


class StdDevStack:
    """Spread of the last readings."""

    def __init__(self, stack_size: int = DEFAULT_STACK_SIZE):
        self.stack_size = stack_size
        self._values = deque(maxlen=stack_size)
        self._lock = threading.Lock()

    def add(self, value: float) -> None:
        value = check_finite("value", value)
        with self._lock:
            self._values.appendleft(value)

    def is_ready(self) -> bool:
        return len(self._values) == self.stack_size

    def value(self) -> float:
        with self._lock:
            if not self._values:
                return math.nan
            return avg_std(self._values)[1]


class NumberChangeDispatcher:
    """Notifies listeners when the value moves more than one step from the last dispatch."""

    def __init__(self, step_size: float):
        self.step_size = step_size
        self.value = math.nan
        self.last_dispatched = math.nan
        self.force_next_update = False
        self._listeners: List[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        self._listeners.remove(listener)

    def difference(self) -> float:
        return abs(self.value - self.last_dispatched)

    def steps_changed(self) -> int:
        return int(self.difference() / self.step_size)

    def new_value(self, value: float) -> None:
        self.value = check_finite("value", value)

        # the first value initialises without a notification
        if math.isnan(self.last_dispatched):
            self.last_dispatched = self.value

        if self.difference() > self.step_size or self.force_next_update:
            self.refresh_listeners()
            self.last_dispatched = self.value
            self.force_next_update = False

    def refresh_listeners(self) -> None:
        for listener in list(self._listeners):
            listener(self.last_dispatched, self.value, self.steps_changed())

    def reset(self) -> None:
        self.value = math.nan
        self.last_dispatched = math.nan


class AngleChangeDispatcher(NumberChangeDispatcher):
    """Step dispatcher for meridians, where 179° and 1° are 2° apart."""

    def difference(self) -> float:
        return diff_180(self.value, self.last_dispatched)

    def steps_changed(self) -> int:
        diff = self.difference()
        if self.value < self.last_dispatched:
            diff = -diff
        # crossed the 0/180 seam
        if abs(self.value - self.last_dispatched) > 90:
            diff = -diff
        return int(diff / self.step_size)
