"""Tests for sensorpulse.analytics.window -- horizon eviction and snapshots."""

import threading
from datetime import timedelta

from sensorpulse.analytics.window import WindowBuffer, WindowSet
from sensorpulse.samples import SensorKind

from tests.conftest import T0, make_accel, make_light


class TestWindowBuffer:
    def test_sample_past_horizon_is_evicted(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=5))
        old = make_accel(1.0, T0 - 6)
        new = make_accel(2.0, T0)
        buf.push(old, T0 - 6)
        buf.push(new, T0)
        assert buf.snapshot(T0) == (new,)

    def test_sample_at_horizon_is_kept(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=5))
        edge = make_accel(1.0, T0 - 5)
        buf.push(edge, T0 - 5)
        assert buf.snapshot(T0) == (edge,)

    def test_snapshot_evicts_without_push(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=5))
        buf.push(make_accel(1.0, T0), T0)
        assert buf.snapshot(T0 + 10) == ()

    def test_late_sample_is_accepted(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=60))
        buf.push(make_accel(1.0, T0), T0)
        late = make_accel(2.0, T0 - 10)
        buf.push(late, T0)
        assert late in buf.snapshot(T0)

    def test_snapshot_is_immutable_copy(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=60))
        buf.push(make_accel(1.0, T0), T0)
        snap = buf.snapshot(T0)
        buf.push(make_accel(2.0, T0 + 1), T0 + 1)
        assert isinstance(snap, tuple)
        assert len(snap) == 1
        assert len(buf) == 2

    def test_evict_returns_count(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(seconds=5))
        for i in range(3):
            buf.push(make_accel(1.0, T0 + i), T0 + i)
        assert buf.evict(T0 + 7) == 2
        assert len(buf) == 1

    def test_concurrent_pushes(self):
        buf = WindowBuffer(SensorKind.ACCELEROMETER, timedelta(hours=1))

        def worker(offset: int) -> None:
            for i in range(250):
                buf.push(make_accel(1.0, T0 + offset), T0 + offset)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(buf.snapshot(T0 + 10)) == 1000


class TestWindowSet:
    def test_buffers_created_lazily_with_kind_horizon(self):
        horizons = {SensorKind.LIGHT: timedelta(minutes=30)}
        windows = WindowSet(lambda kind: horizons.get(kind, timedelta(minutes=5)))
        assert windows.kinds() == []

        windows.push(make_light(100.0, T0), T0)
        windows.push(make_accel(1.0, T0), T0)
        assert set(windows.kinds()) == {SensorKind.LIGHT, SensorKind.ACCELEROMETER}
        assert windows.buffer(SensorKind.LIGHT).horizon == 1800.0
        assert windows.buffer(SensorKind.ACCELEROMETER).horizon == 300.0

    def test_unknown_kind_snapshot_is_empty(self):
        windows = WindowSet(lambda kind: timedelta(minutes=5))
        assert windows.snapshot(SensorKind.GYROSCOPE, T0) == ()

    def test_snapshot_all_uses_each_horizon(self):
        horizons = {SensorKind.LIGHT: timedelta(minutes=30)}
        windows = WindowSet(lambda kind: horizons.get(kind, timedelta(minutes=5)))
        windows.push(make_light(100.0, T0), T0)
        windows.push(make_accel(1.0, T0), T0)

        snaps = windows.snapshot_all(T0 + 600)
        assert len(snaps[SensorKind.LIGHT]) == 1
        assert snaps[SensorKind.ACCELEROMETER] == ()
