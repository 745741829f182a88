"""Time-bounded sliding windows of recent samples, one per sensor kind."""

from __future__ import annotations

import threading
from collections import deque
from datetime import timedelta
from typing import Callable

from sensorpulse.samples import SensorKind, SensorSample


class WindowBuffer:
    """Ordered samples for one sensor kind, bounded by age.

    Every retained sample satisfies ``now - timestamp <= horizon``.  Late
    (out-of-order) samples are accepted as-is; a sample already older than
    the cutoff goes away on the next push or snapshot.
    """

    def __init__(self, kind: SensorKind, horizon: timedelta) -> None:
        self.kind = kind
        self.horizon = horizon.total_seconds()
        self._samples: deque[SensorSample] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._samples)

    def _evict(self, now: float) -> int:
        cutoff = now - self.horizon
        before = len(self._samples)
        # Arrival order is only best-effort sorted, so filter instead of popleft.
        if any(s.timestamp < cutoff for s in self._samples):
            self._samples = deque(s for s in self._samples if s.timestamp >= cutoff)
        return before - len(self._samples)

    def push(self, sample: SensorSample, now: float) -> None:
        """Append *sample* and evict everything older than the horizon."""
        with self._lock:
            self._samples.append(sample)
            self._evict(now)

    def evict(self, now: float) -> int:
        """Evict expired samples; returns how many were removed."""
        with self._lock:
            return self._evict(now)

    def snapshot(self, now: float) -> tuple[SensorSample, ...]:
        """Immutable copy of the retained samples, after eviction."""
        with self._lock:
            self._evict(now)
            return tuple(self._samples)

    def __repr__(self) -> str:
        return f"WindowBuffer({self.kind.value}, {len(self)} samples, horizon={self.horizon:.0f}s)"


class WindowSet:
    """Lazily-created :class:`WindowBuffer` per sensor kind."""

    def __init__(self, horizon_for: Callable[[SensorKind], timedelta]) -> None:
        self._horizon_for = horizon_for
        self._buffers: dict[SensorKind, WindowBuffer] = {}
        self._lock = threading.Lock()

    def buffer(self, kind: SensorKind) -> WindowBuffer:
        with self._lock:
            buf = self._buffers.get(kind)
            if buf is None:
                buf = WindowBuffer(kind, self._horizon_for(kind))
                self._buffers[kind] = buf
            return buf

    def push(self, sample: SensorSample, now: float) -> None:
        self.buffer(sample.sensor_kind).push(sample, now)

    def kinds(self) -> list[SensorKind]:
        with self._lock:
            return list(self._buffers)

    def snapshot(self, kind: SensorKind, now: float) -> tuple[SensorSample, ...]:
        with self._lock:
            buf = self._buffers.get(kind)
        return buf.snapshot(now) if buf is not None else ()

    def snapshot_all(self, now: float) -> dict[SensorKind, tuple[SensorSample, ...]]:
        return {kind: self.snapshot(kind, now) for kind in self.kinds()}

    def evict_all(self, now: float) -> int:
        with self._lock:
            buffers = list(self._buffers.values())
        return sum(buf.evict(now) for buf in buffers)
