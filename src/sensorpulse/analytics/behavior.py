"""Behavioural indicators folded from a window of mixed sensor samples.

Accelerometer magnitudes here are gravity-removed user acceleration (m/s²),
so a still device reads close to zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from sensorpulse.samples import SensorKind, SensorSample

# ---------------------------------------------------------------------------
# Thresholds (accelerometer magnitude, m/s²)
# ---------------------------------------------------------------------------

STATIONARY_MAX = 2.0  # below this → stationary
ACTIVE_MIN = 5.0  # above this → active
RUNNING_MIN = 8.0  # above this → running rather than walking
HIGH_ACTIVITY = 15.0
MODERATE_ACTIVITY = 5.0

DRIVING_SPEED = 15.0
LOW_BATTERY_PCT = 20.0
OUTDOOR_LUX = 1000.0


class ActivityLevel(str, Enum):
    """Coarse activity level of a window."""

    UNKNOWN = "unknown"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


def activity_level(avg_movement: float) -> ActivityLevel:
    if avg_movement > HIGH_ACTIVITY:
        return ActivityLevel.HIGH
    if avg_movement > MODERATE_ACTIVITY:
        return ActivityLevel.MODERATE
    return ActivityLevel.LOW


def classify_movement(magnitude: float) -> str:
    """Name the activity a single magnitude (or a mean) corresponds to."""
    if magnitude < STATIONARY_MAX:
        return "stationary"
    if magnitude < RUNNING_MIN:
        return "walking"
    return "running"


# ---------------------------------------------------------------------------
# Behaviour accumulator
# ---------------------------------------------------------------------------


@dataclass
class BehaviorPattern:
    """Working state folded sample by sample, finalised once per pass.

    Minutes are counted per wall-clock minute: a minute is stationary when its
    mean magnitude is below 2 and active when it is above 5.
    """

    avg_movement: float = 0.0
    active_minutes: int = 0
    stationary_minutes: int = 0
    movement_variability: float = 0.0
    stress_indicators: set[str] = field(default_factory=set)
    dominant_activity: str = "unknown"

    _movement_sum: float = field(default=0.0, repr=False)
    _movement_count: int = field(default=0, repr=False)
    _minutes: dict[int, list[float]] = field(default_factory=dict, repr=False)
    _max_speed: float = field(default=0.0, repr=False)
    _near_seen: bool = field(default=False, repr=False)
    _min_battery: float | None = field(default=None, repr=False)

    def update_movement(self, magnitude: float, timestamp: float) -> None:
        self._movement_sum += magnitude
        self._movement_count += 1
        self.avg_movement = self._movement_sum / self._movement_count
        self._minutes.setdefault(int(timestamp // 60), []).append(magnitude)

    def update_location(self, speed: float | None) -> None:
        if speed is not None:
            self._max_speed = max(self._max_speed, speed)

    def update_proximity(self, is_near: bool) -> None:
        self._near_seen = self._near_seen or is_near

    def update_battery(self, level: float) -> None:
        if self._min_battery is None or level < self._min_battery:
            self._min_battery = level

    def fold(self, sample: SensorSample) -> None:
        kind = sample.sensor_kind
        if kind == SensorKind.ACCELEROMETER:
            self.update_movement(sample.scalar_value, sample.timestamp)
        elif kind == SensorKind.LOCATION:
            self.update_location(sample.raw.speed)
        elif kind == SensorKind.PROXIMITY:
            self.update_proximity(sample.raw.is_near)
        elif kind == SensorKind.BATTERY:
            self.update_battery(sample.scalar_value)

    def finalize(self) -> "BehaviorPattern":
        self.active_minutes = 0
        self.stationary_minutes = 0
        for values in self._minutes.values():
            minute_mean = sum(values) / len(values)
            if minute_mean < STATIONARY_MAX:
                self.stationary_minutes += 1
            elif minute_mean > ACTIVE_MIN:
                self.active_minutes += 1

        if self.active_minutes > 0 and self.stationary_minutes > 0:
            self.movement_variability = (
                self.active_minutes / (self.active_minutes + self.stationary_minutes) * 100.0
            )
        else:
            self.movement_variability = 0.0

        if self._near_seen and self.stationary_minutes > 30:
            self.stress_indicators.add("prolonged_desk_work")
        if self._min_battery is not None and self._min_battery < LOW_BATTERY_PCT and self.active_minutes < 60:
            self.stress_indicators.add("low_energy_correlation")

        if self._max_speed > DRIVING_SPEED:
            self.dominant_activity = "driving"
        elif self._movement_count:
            self.dominant_activity = classify_movement(self.avg_movement)
        return self


def analyze_behavior(samples: Iterable[SensorSample]) -> BehaviorPattern:
    pattern = BehaviorPattern()
    for sample in samples:
        pattern.fold(sample)
    return pattern.finalize()


# ---------------------------------------------------------------------------
# Health and environment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthIndicators:
    average_activity: float
    max_activity: float
    inactivity_percentage: float
    is_posture_concern: bool
    activity_level: ActivityLevel

    @classmethod
    def no_data(cls) -> "HealthIndicators":
        return cls(0.0, 0.0, 0.0, False, ActivityLevel.UNKNOWN)


def analyze_health(samples: Sequence[SensorSample]) -> HealthIndicators:
    movements = [s.scalar_value for s in samples if s.sensor_kind == SensorKind.ACCELEROMETER]
    if not movements:
        return HealthIndicators.no_data()

    arr = np.asarray(movements, dtype=np.float64)
    avg = float(np.mean(arr))
    inactivity = float(np.sum(arr < STATIONARY_MAX)) / len(arr) * 100.0
    return HealthIndicators(
        average_activity=avg,
        max_activity=float(np.max(arr)),
        inactivity_percentage=inactivity,
        is_posture_concern=inactivity > 70.0,
        activity_level=activity_level(avg),
    )


@dataclass(frozen=True)
class EnvironmentalFactors:
    average_light_level: float
    light_readings: int
    is_likely_indoors: bool
    light_condition: str


def describe_light(lux: float) -> str:
    if lux < 10:
        return "very dark"
    if lux < 200:
        return "dim"
    if lux < 1000:
        return "moderate light"
    return "well lit"


def analyze_environment(samples: Sequence[SensorSample]) -> EnvironmentalFactors:
    lux = [s.scalar_value for s in samples if s.sensor_kind == SensorKind.LIGHT]
    avg = sum(lux) / len(lux) if lux else 0.0
    return EnvironmentalFactors(
        average_light_level=avg,
        light_readings=len(lux),
        is_likely_indoors=all(v <= OUTDOOR_LUX for v in lux),
        light_condition=describe_light(avg),
    )
