"""Long-horizon bounded history per sensor kind.

Holds parallel ``(timestamp, value)`` series for days of data so the pattern
analyzer can compare hour-of-day profiles and this week against last week.
Bounded two ways: FIFO by count on every record, and by age on each cleanup
pass.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import timedelta

import numpy as np

from sensorpulse.samples import SensorKind


def _seconds(value: timedelta | float) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


class _Series:
    __slots__ = ("timestamps", "values", "lock", "cleanup_lock")

    def __init__(self) -> None:
        self.timestamps: deque[float] = deque()
        self.values: deque[float] = deque()
        self.lock = threading.Lock()
        self.cleanup_lock = threading.Lock()


class TimeSeriesStore:
    """Bounded ``(timestamp, value)`` history keyed by sensor kind.

    Args:
        max_points: Per-kind cap; the oldest point is dropped first.
        max_age: Default retention used by :meth:`cleanup`.
    """

    def __init__(self, max_points: int = 1000, max_age: timedelta = timedelta(days=30)) -> None:
        if max_points < 1:
            raise ValueError("max_points must be >= 1")
        self.max_points = max_points
        self.max_age = max_age
        self._series: dict[SensorKind, _Series] = {}
        self._lock = threading.Lock()

    def _get(self, kind: SensorKind, create: bool = False) -> _Series | None:
        with self._lock:
            series = self._series.get(kind)
            if series is None and create:
                series = _Series()
                self._series[kind] = series
            return series

    def kinds(self) -> list[SensorKind]:
        with self._lock:
            return list(self._series)

    def count(self, kind: SensorKind) -> int:
        series = self._get(kind)
        return len(series.values) if series is not None else 0

    def __len__(self) -> int:
        return sum(self.count(k) for k in self.kinds())

    def record(self, kind: SensorKind, value: float, timestamp: float) -> None:
        """Append a point, dropping the oldest once ``max_points`` is exceeded."""
        series = self._get(kind, create=True)
        with series.lock:
            series.timestamps.append(float(timestamp))
            series.values.append(float(value))
            while len(series.values) > self.max_points:
                series.timestamps.popleft()
                series.values.popleft()

    def cleanup(self, now: float, max_age: timedelta | float | None = None) -> int:
        """Remove every point with ``timestamp < now - max_age``.

        Cleanup of one kind never runs concurrently with itself; a second
        caller for the same kind skips it.  Returns the number of points
        removed.
        """
        cutoff = now - _seconds(max_age if max_age is not None else self.max_age)
        removed = 0
        for kind in self.kinds():
            series = self._get(kind)
            if series is None or not series.cleanup_lock.acquire(blocking=False):
                continue
            try:
                with series.lock:
                    keep = [(t, v) for t, v in zip(series.timestamps, series.values) if t >= cutoff]
                    removed += len(series.values) - len(keep)
                    series.timestamps = deque(t for t, _ in keep)
                    series.values = deque(v for _, v in keep)
            finally:
                series.cleanup_lock.release()
        return removed

    def points(self, kind: SensorKind) -> tuple[np.ndarray, np.ndarray]:
        """Copies of the ``(timestamps, values)`` arrays; empty for unknown kinds."""
        series = self._get(kind)
        if series is None:
            return np.empty(0), np.empty(0)
        with series.lock:
            return (
                np.fromiter(series.timestamps, dtype=np.float64, count=len(series.timestamps)),
                np.fromiter(series.values, dtype=np.float64, count=len(series.values)),
            )

    def slice(
        self,
        kind: SensorKind,
        period: timedelta | float,
        now: float,
        offset: timedelta | float = 0.0,
    ) -> list[float]:
        """Values with timestamp in ``[now - offset - period, now - offset)``."""
        end = now - _seconds(offset)
        start = end - _seconds(period)
        ts, vals = self.points(kind)
        if len(ts) == 0:
            return []
        mask = (ts >= start) & (ts < end)
        return vals[mask].tolist()

    def slice_points(
        self,
        kind: SensorKind,
        period: timedelta | float,
        now: float,
        offset: timedelta | float = 0.0,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Like :meth:`slice` but keeps the timestamps."""
        end = now - _seconds(offset)
        start = end - _seconds(period)
        ts, vals = self.points(kind)
        mask = (ts >= start) & (ts < end)
        return ts[mask], vals[mask]
