"""Shared fixtures and helpers for the sensorpulse test suite."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from sensorpulse.config import EngineConfig
from sensorpulse.samples import (
    BatteryReading,
    LightReading,
    LocationFix,
    ProximityReading,
    SensorKind,
    SensorSample,
    Vector3,
)

# Monday 2026-03-02 00:00:00 UTC
T0 = 1772409600.0
MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------


def make_accel(magnitude: float, ts: float = T0, clock_anomaly: bool = False) -> SensorSample:
    """Accelerometer sample whose magnitude is exactly *magnitude*."""
    return SensorSample.from_payload(
        SensorKind.ACCELEROMETER, Vector3(magnitude, 0.0, 0.0), ts, clock_anomaly=clock_anomaly
    )


def make_light(lux: float, ts: float = T0) -> SensorSample:
    return SensorSample.from_payload(SensorKind.LIGHT, LightReading(lux), ts)


def make_location(speed: float | None, ts: float = T0) -> SensorSample:
    return SensorSample.from_payload(
        SensorKind.LOCATION, LocationFix(latitude=-23.55, longitude=-46.63, speed=speed), ts
    )


def make_battery(level: float, ts: float = T0) -> SensorSample:
    return SensorSample.from_payload(SensorKind.BATTERY, BatteryReading(level), ts)


def make_proximity(is_near: bool, ts: float = T0) -> SensorSample:
    return SensorSample.from_payload(SensorKind.PROXIMITY, ProximityReading(is_near), ts)


def accel_series(
    magnitudes: list[float],
    start: float = T0,
    step: float = MINUTE,
) -> list[SensorSample]:
    """Accelerometer samples spaced *step* seconds apart."""
    return [make_accel(m, start + i * step) for i, m in enumerate(magnitudes)]


def stationary_minutes(minutes: int, start: float = T0, per_minute: int = 10) -> list[SensorSample]:
    """*minutes* of magnitude-1.0 samples, *per_minute* in each minute."""
    step = MINUTE / per_minute
    return accel_series([1.0] * (minutes * per_minute), start, step)


def fill_store(store, start: float, days: int, value: float, step: float = HOUR) -> None:
    """Record a constant accelerometer value every *step* seconds."""
    t = start
    end = start + days * DAY
    while t < end:
        store.record(SensorKind.ACCELEROMETER, value, t)
        t += step


# ---------------------------------------------------------------------------
# Raw record / JSONL helpers
# ---------------------------------------------------------------------------


def raw_accel(ts: float, x: float = 0.0, y: float = 0.0, z: float = 0.0) -> dict:
    return {"sensor_kind": "accelerometer", "timestamp": ts, "x": x, "y": y, "z": z}


def write_jsonl(path: Path, entries: list[dict]) -> Path:
    """Write a list of dicts as JSONL to the given path."""
    with open(path, "w") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
    return path


class FakeClock:
    """Settable clock for engine tests."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def small_config() -> EngineConfig:
    """Engine config with a low on-arrival threshold."""
    return EngineConfig(
        min_data_points=5,
        min_energy_points=5,
        analysis_interval=timedelta(minutes=15),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
