"""Sensor sample model: kinds, payload variants and the scalar projection.

Every sample carries its raw payload plus one ``scalar_value``, the
kind-specific number all window statistics are computed on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union


class SensorKind(str, Enum):
    """Supported device sensors."""

    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"
    MAGNETOMETER = "magnetometer"
    LOCATION = "location"
    BATTERY = "battery"
    LIGHT = "light"
    PROXIMITY = "proximity"


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Vector3:
    """A three-axis reading (accelerometer m/s², gyroscope rad/s, magnetometer µT)."""

    x: float
    y: float
    z: float

    @property
    def magnitude(self) -> float:
        return math.hypot(self.x, self.y, self.z)

    def __repr__(self) -> str:
        return f"Vector3(x={self.x:.3f}, y={self.y:.3f}, z={self.z:.3f}, mag={self.magnitude:.3f})"


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    altitude: float = 0.0
    accuracy: float = 0.0
    speed: float | None = None  # m/s


@dataclass(frozen=True)
class BatteryReading:
    level: float  # percent
    state: str = "unknown"
    is_charging: bool = False


@dataclass(frozen=True)
class LightReading:
    lux: float

    @property
    def condition(self) -> str:
        if self.lux < 10:
            return "Dark"
        if self.lux < 200:
            return "Dim"
        if self.lux < 400:
            return "Normal"
        if self.lux < 1000:
            return "Bright"
        return "Very Bright"


@dataclass(frozen=True)
class ProximityReading:
    is_near: bool
    distance: float | None = None


Payload = Union[Vector3, LocationFix, BatteryReading, LightReading, ProximityReading]

PAYLOAD_TYPES: dict[SensorKind, type] = {
    SensorKind.ACCELEROMETER: Vector3,
    SensorKind.GYROSCOPE: Vector3,
    SensorKind.MAGNETOMETER: Vector3,
    SensorKind.LOCATION: LocationFix,
    SensorKind.BATTERY: BatteryReading,
    SensorKind.LIGHT: LightReading,
    SensorKind.PROXIMITY: ProximityReading,
}


def project_scalar(kind: SensorKind, payload: Payload) -> float:
    """Project a payload onto the scalar used by window statistics.

    Raises:
        TypeError: if the payload type does not match the sensor kind.
    """
    expected = PAYLOAD_TYPES[kind]
    if not isinstance(payload, expected):
        raise TypeError(f"{kind.value} expects {expected.__name__}, got {type(payload).__name__}")

    if kind in (SensorKind.ACCELEROMETER, SensorKind.GYROSCOPE, SensorKind.MAGNETOMETER):
        return payload.magnitude
    if kind == SensorKind.LOCATION:
        return float(payload.speed) if payload.speed is not None else 0.0
    if kind == SensorKind.BATTERY:
        return float(payload.level)
    if kind == SensorKind.LIGHT:
        return float(payload.lux)
    if kind == SensorKind.PROXIMITY:
        return 1.0 if payload.is_near else 0.0
    raise TypeError(f"unhandled sensor kind: {kind!r}")


# ---------------------------------------------------------------------------
# Sample
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SensorSample:
    """One normalised sensor reading.  Immutable once created."""

    sensor_kind: SensorKind
    timestamp: float  # epoch seconds
    scalar_value: float
    raw: Payload
    clock_anomaly: bool = False

    @classmethod
    def from_payload(
        cls,
        kind: SensorKind,
        payload: Payload,
        timestamp: float,
        clock_anomaly: bool = False,
    ) -> "SensorSample":
        return cls(
            sensor_kind=kind,
            timestamp=float(timestamp),
            scalar_value=project_scalar(kind, payload),
            raw=payload,
            clock_anomaly=clock_anomaly,
        )

    def __repr__(self) -> str:
        flag = ", clock_anomaly" if self.clock_anomaly else ""
        return f"SensorSample({self.sensor_kind.value}@{self.timestamp:.1f}={self.scalar_value:.3f}{flag})"
