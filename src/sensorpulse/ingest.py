"""Normalise raw sensor events into :class:`SensorSample` objects.

Raw events arrive as dicts (decoded JSON from a device bridge or a replay
log) or as already-built samples.  Each sensor kind has a small decoder that
pulls its payload out of the dict; camelCase keys from mobile clients are
accepted alongside snake_case ones.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from sensorpulse.errors import InvalidSampleError
from sensorpulse.samples import (
    BatteryReading,
    LightReading,
    LocationFix,
    Payload,
    ProximityReading,
    SensorKind,
    SensorSample,
    Vector3,
)

logger = logging.getLogger(__name__)


def _field(raw: dict, *names: str, default: Any = None, required: bool = True) -> Any:
    """Return the first present key among *names*."""
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    if required:
        raise InvalidSampleError(f"missing field {names[0]!r}")
    return default


def _number(raw: dict, *names: str, default: float | None = None, required: bool = True) -> float | None:
    value = _field(raw, *names, default=default, required=required)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidSampleError(f"field {names[0]!r} is not numeric: {value!r}") from None
    except OverflowError:
        raise InvalidSampleError(f"field {names[0]!r} is out of range") from None


# ---------------------------------------------------------------------------
# Per-kind decoders
# ---------------------------------------------------------------------------


class VectorDecoder:
    @staticmethod
    def decode(raw: dict) -> Vector3:
        return Vector3(x=_number(raw, "x"), y=_number(raw, "y"), z=_number(raw, "z"))


class LocationDecoder:
    @staticmethod
    def decode(raw: dict) -> LocationFix:
        return LocationFix(
            latitude=_number(raw, "latitude", "lat"),
            longitude=_number(raw, "longitude", "lng", "lon"),
            altitude=_number(raw, "altitude", default=0.0, required=False),
            accuracy=_number(raw, "accuracy", default=0.0, required=False),
            speed=_number(raw, "speed", required=False),
        )


class BatteryDecoder:
    @staticmethod
    def decode(raw: dict) -> BatteryReading:
        return BatteryReading(
            level=_number(raw, "level", "battery_level", "batteryLevel"),
            state=str(_field(raw, "state", "battery_state", "batteryState", default="unknown", required=False)),
            is_charging=bool(_field(raw, "is_charging", "isCharging", default=False, required=False)),
        )


class LightDecoder:
    @staticmethod
    def decode(raw: dict) -> LightReading:
        return LightReading(lux=_number(raw, "lux", "lux_value", "luxValue"))


class ProximityDecoder:
    @staticmethod
    def decode(raw: dict) -> ProximityReading:
        return ProximityReading(
            is_near=bool(_field(raw, "is_near", "isNear")),
            distance=_number(raw, "distance", required=False),
        )


DECODERS = {
    SensorKind.ACCELEROMETER: VectorDecoder,
    SensorKind.GYROSCOPE: VectorDecoder,
    SensorKind.MAGNETOMETER: VectorDecoder,
    SensorKind.LOCATION: LocationDecoder,
    SensorKind.BATTERY: BatteryDecoder,
    SensorKind.LIGHT: LightDecoder,
    SensorKind.PROXIMITY: ProximityDecoder,
}


def parse_kind(value: Any) -> SensorKind:
    if isinstance(value, SensorKind):
        return value
    try:
        return SensorKind(str(value).lower())
    except ValueError:
        raise InvalidSampleError(f"unsupported sensor kind: {value!r}") from None


def parse_timestamp(value: Any) -> float:
    """Accept epoch seconds, epoch milliseconds, ISO-8601 strings or datetimes."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidSampleError(f"unparseable timestamp: {value!r}") from None
        return parse_timestamp(parsed)
    try:
        ts = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidSampleError(f"unparseable timestamp: {value!r}") from None
    if not math.isfinite(ts):
        raise InvalidSampleError(f"non-finite timestamp: {value!r}")
    # Millisecond epochs (mobile clients) are ~1000x larger than second epochs.
    if ts > 1e11:
        ts /= 1000.0
    return ts


# ---------------------------------------------------------------------------
# Ingestor
# ---------------------------------------------------------------------------


class SampleIngestor:
    """Turn raw events into validated samples.

    Args:
        clock_skew_tolerance: How far in the future a timestamp may be before
            the sample is flagged as a clock anomaly.
        max_age: How far in the past a timestamp may be before it is flagged.
    """

    def __init__(
        self,
        clock_skew_tolerance: timedelta = timedelta(minutes=5),
        max_age: timedelta = timedelta(days=30),
    ) -> None:
        self.clock_skew_tolerance = clock_skew_tolerance.total_seconds()
        self.max_age = max_age.total_seconds()
        self.accepted = 0
        self.dropped = 0

    def is_clock_anomaly(self, timestamp: float, now: float) -> bool:
        return timestamp > now + self.clock_skew_tolerance or timestamp < now - self.max_age

    def normalize(self, raw: SensorSample | dict, now: float) -> SensorSample:
        """Build a sample from *raw*.

        Raises:
            InvalidSampleError: unsupported kind, missing fields or a
                non-finite scalar value.
        """
        if isinstance(raw, SensorSample):
            try:
                sample = SensorSample.from_payload(raw.sensor_kind, raw.raw, raw.timestamp)
            except TypeError as e:
                raise InvalidSampleError(str(e)) from None
        elif isinstance(raw, dict):
            kind = parse_kind(_field(raw, "sensor_kind", "sensor", "sensorType", "type"))
            payload: Payload = DECODERS[kind].decode(raw)
            ts_value = _field(raw, "timestamp", "ts", default=now, required=False)
            sample = SensorSample.from_payload(kind, payload, parse_timestamp(ts_value))
        else:
            raise InvalidSampleError(f"unsupported sample type: {type(raw).__name__}")

        if not math.isfinite(sample.scalar_value):
            raise InvalidSampleError(
                f"non-finite {sample.sensor_kind.value} value: {sample.scalar_value!r}"
            )
        # Window variance squares the value
        if not math.isfinite(sample.scalar_value * sample.scalar_value):
            raise InvalidSampleError(
                f"{sample.sensor_kind.value} value out of range: {sample.scalar_value!r}"
            )
        if not math.isfinite(sample.timestamp):
            raise InvalidSampleError(f"non-finite timestamp: {sample.timestamp!r}")

        if self.is_clock_anomaly(sample.timestamp, now):
            logger.warning(
                "Clock anomaly: %s sample at %.1f is %.0fs from now",
                sample.sensor_kind.value,
                sample.timestamp,
                sample.timestamp - now,
            )
            sample = SensorSample(
                sensor_kind=sample.sensor_kind,
                timestamp=sample.timestamp,
                scalar_value=sample.scalar_value,
                raw=sample.raw,
                clock_anomaly=True,
            )
        return sample

    def try_normalize(self, raw: SensorSample | dict, now: float) -> SensorSample | None:
        """Like :meth:`normalize` but drops invalid samples with a warning."""
        try:
            sample = self.normalize(raw, now)
        except InvalidSampleError as e:
            self.dropped += 1
            logger.warning("Dropping invalid sample: %s", e)
            return None
        self.accepted += 1
        return sample
