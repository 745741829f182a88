"""Recent-versus-historical pattern comparison.

Every deviation score is a relative difference in ``[0, 1]`` between two
comparable windows of the :class:`TimeSeriesStore`: this week against the
week before, nights against nights, and hour-of-day profiles against each
other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Sequence

import numpy as np

from sensorpulse.analytics.timeseries import TimeSeriesStore
from sensorpulse.samples import SensorKind

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6  # inclusive
DAY_HOURS = range(7, 22)
DAY_PARTS = {
    "morning routine": range(7, 12),
    "afternoon routine": range(12, 18),
    "evening routine": range(18, 22),
}

ACTIVITY_THRESHOLD = 0.3
SLEEP_THRESHOLD = 0.2
ROUTINE_THRESHOLD = 0.25

ACTIVITY_WEIGHT = 0.4
SLEEP_WEIGHT = 0.3
ROUTINE_WEIGHT = 0.3


def relative_deviation(recent: float, previous: float) -> float:
    """``|recent - previous| / max(recent, previous)``; 0 when both are 0."""
    denom = max(abs(recent), abs(previous))
    if denom == 0.0:
        return 0.0
    return min(1.0, abs(recent - previous) / denom)


def hours_of(timestamps: np.ndarray, tz: tzinfo) -> np.ndarray:
    """Local hour-of-day for each epoch timestamp."""
    return np.fromiter(
        (datetime.fromtimestamp(float(t), tz).hour for t in timestamps),
        dtype=np.int64,
        count=len(timestamps),
    )


def _mean(values: Sequence[float] | np.ndarray) -> float | None:
    return float(np.mean(values)) if len(values) else None


@dataclass
class StressAssessment:
    """Aggregated stress risk and the components that drove it."""

    risk_level: float
    indicators: list[str] = field(default_factory=list)
    deviations: dict[str, float] = field(default_factory=dict)


class PatternAnalyzer:
    """Deviation scores computed from a time-series store.

    Args:
        store: The engine's long-horizon store (read through copies only).
        tz: Time zone used for hour-of-day bucketing.
        kind: Sensor kind the activity comparisons run on.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        tz: tzinfo,
        kind: SensorKind = SensorKind.ACCELEROMETER,
    ) -> None:
        self.store = store
        self.tz = tz
        self.kind = kind

    # -- window helpers -----------------------------------------------------

    def _week_points(self, now: float, offset: timedelta) -> tuple[np.ndarray, np.ndarray]:
        return self.store.slice_points(self.kind, WEEK, now, offset)

    def _night_values(self, ts: np.ndarray, vals: np.ndarray) -> np.ndarray:
        if len(ts) == 0:
            return vals
        hours = hours_of(ts, self.tz)
        mask = (hours >= NIGHT_START_HOUR) | (hours <= NIGHT_END_HOUR)
        return vals[mask]

    def hourly_profile_of(self, ts: np.ndarray, vals: np.ndarray) -> dict[int, float]:
        if len(ts) == 0:
            return {}
        hours = hours_of(ts, self.tz)
        return {int(h): float(np.mean(vals[hours == h])) for h in np.unique(hours)}

    # -- deviations ---------------------------------------------------------

    def activity_deviation(self, now: float) -> float:
        """This week's average movement against last week's."""
        recent = self.store.slice(self.kind, WEEK, now)
        previous = self.store.slice(self.kind, WEEK, now, offset=WEEK)
        recent_avg, previous_avg = _mean(recent), _mean(previous)
        if recent_avg is None or previous_avg is None:
            return 0.0
        return relative_deviation(recent_avg, previous_avg)

    def sleep_deviation(self, now: float) -> float:
        """Night-time movement this week against last week."""
        recent = self._night_values(*self._week_points(now, timedelta(0)))
        previous = self._night_values(*self._week_points(now, WEEK))
        recent_avg, previous_avg = _mean(recent), _mean(previous)
        if recent_avg is None or previous_avg is None:
            return 0.0
        return relative_deviation(recent_avg, previous_avg)

    def routine_deviation(self, now: float) -> float:
        """Mean per-hour deviation between the two weeks' daytime profiles."""
        recent = self.hourly_profile_of(*self._week_points(now, timedelta(0)))
        previous = self.hourly_profile_of(*self._week_points(now, WEEK))
        shared = [h for h in DAY_HOURS if h in recent and h in previous]
        if not shared:
            return 0.0
        return float(np.mean([relative_deviation(recent[h], previous[h]) for h in shared]))

    def day_part_deviations(self, now: float) -> dict[str, float]:
        """Routine deviation split into morning, afternoon and evening."""
        recent = self.hourly_profile_of(*self._week_points(now, timedelta(0)))
        previous = self.hourly_profile_of(*self._week_points(now, WEEK))
        result: dict[str, float] = {}
        for part, hours in DAY_PARTS.items():
            shared = [h for h in hours if h in recent and h in previous]
            if shared:
                result[part] = float(np.mean([relative_deviation(recent[h], previous[h]) for h in shared]))
        return result

    def stress_risk(self, now: float) -> StressAssessment:
        activity = self.activity_deviation(now)
        sleep = self.sleep_deviation(now)
        routine = self.routine_deviation(now)

        indicators: list[str] = []
        if activity > ACTIVITY_THRESHOLD:
            indicators.append("irregular activity patterns")
        if sleep > SLEEP_THRESHOLD:
            indicators.append("changed sleep patterns")
        if routine > ROUTINE_THRESHOLD:
            indicators.append("routine inconsistency")

        risk = ACTIVITY_WEIGHT * activity + SLEEP_WEIGHT * sleep + ROUTINE_WEIGHT * routine
        assessment = StressAssessment(
            risk_level=min(1.0, max(0.0, risk)),
            indicators=indicators,
            deviations={"activity": activity, "sleep": sleep, "routine": routine},
        )
        logger.debug("Stress assessment: %s", assessment)
        return assessment

    # -- profiles -----------------------------------------------------------

    def hourly_profile(self, kind: SensorKind | None = None) -> dict[int, float]:
        """Mean value per local hour-of-day over the whole store."""
        ts, vals = self.store.points(kind or self.kind)
        return self.hourly_profile_of(ts, vals)

    def sleep_quality(self) -> float:
        """Lower night-time movement means better sleep; 0.5 without data."""
        ts, vals = self.store.points(self.kind)
        night = self._night_values(ts, vals)
        if len(night) == 0:
            return 0.5
        return max(0.0, min(1.0, (10.0 - float(np.mean(night))) / 10.0))

    def recent_activity(self, now: float, period: timedelta = timedelta(hours=2)) -> float:
        values = self.store.slice(self.kind, period, now)
        return float(np.mean(values)) if values else 0.0

    def daily_means(self, now: float, days: int = 14, night_only: bool = False) -> list[tuple[int, float]]:
        """``(day_index, mean)`` for each of the last *days* local days with data.

        Day 0 is the oldest day in range.
        """
        ts, vals = self.store.slice_points(self.kind, timedelta(days=days), now + 1e-6)
        if len(ts) == 0:
            return []
        if night_only:
            hours = hours_of(ts, self.tz)
            mask = (hours >= NIGHT_START_HOUR) | (hours <= NIGHT_END_HOUR)
            ts, vals = ts[mask], vals[mask]
        by_day: dict[int, list[float]] = {}
        for t, v in zip(ts, vals):
            ordinal = datetime.fromtimestamp(float(t), self.tz).date().toordinal()
            by_day.setdefault(ordinal, []).append(float(v))
        if not by_day:
            return []
        first = min(by_day)
        return [(day - first, float(np.mean(by_day[day]))) for day in sorted(by_day)]
