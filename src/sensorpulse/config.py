"""Configuration dataclasses for the sensorpulse engine.

Every recognised knob lives here so the engine can be built from one object
by the application's composition root (and by tests with small values).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

from sensorpulse.errors import ConfigError
from sensorpulse.samples import SensorKind


def _default_horizons() -> dict[SensorKind, timedelta]:
    # Slow sensors report every few seconds, so they get a longer window.
    return {
        SensorKind.ACCELEROMETER: timedelta(minutes=5),
        SensorKind.GYROSCOPE: timedelta(minutes=5),
        SensorKind.MAGNETOMETER: timedelta(minutes=5),
        SensorKind.LOCATION: timedelta(minutes=30),
        SensorKind.BATTERY: timedelta(hours=1),
        SensorKind.LIGHT: timedelta(minutes=30),
        SensorKind.PROXIMITY: timedelta(minutes=30),
    }


def _default_thresholds() -> dict[str, float]:
    return {
        "energy_level": 0.0,
        "stress_risk": 0.4,
        "optimal_timing": 0.5,
        "health_trend": 0.5,
        "routine_disruption": 0.6,
    }


@dataclass
class LLMConfig:
    """OpenAI-compatible chat-completions backend settings.

    Generation controls are passed through untouched.
    """

    base_url: str = "https://integrate.api.nvidia.com"
    api_key: str = ""
    model: str = "meta/llama-3.1-8b-instruct"
    temperature: float = 0.7
    top_p: float = 0.8
    max_tokens: int = 4096
    timeout: float = 60.0

    @property
    def url(self) -> str:
        return self.base_url.rstrip("/") + "/v1/chat/completions"

    @classmethod
    def from_env(cls) -> "LLMConfig":
        return cls(
            base_url=os.environ.get("SENSORPULSE_LLM_URL", cls.base_url),
            api_key=os.environ.get("SENSORPULSE_LLM_API_KEY", ""),
            model=os.environ.get("SENSORPULSE_LLM_MODEL", cls.model),
        )


@dataclass
class EngineConfig:
    """Analysis engine settings."""

    horizons: dict[SensorKind, timedelta] = field(default_factory=_default_horizons)
    default_horizon: timedelta = timedelta(minutes=5)
    analysis_interval: timedelta = timedelta(minutes=15)
    min_data_points: int = 50
    max_points: int = 1000
    max_age: timedelta = timedelta(days=30)
    min_energy_points: int = 50
    energy_lookahead: timedelta = timedelta(hours=2)
    clock_skew_tolerance: timedelta = timedelta(minutes=5)
    timezone: str = "UTC"
    sink_timeout: float = 5.0
    enrichment_timeout: float = 90.0
    insight_horizon: timedelta = timedelta(hours=3)
    subscriber_queue_size: int = 1000
    thresholds: dict[str, float] = field(default_factory=_default_thresholds)

    def horizon_for(self, kind: SensorKind) -> timedelta:
        return self.horizons.get(kind, self.default_horizon)

    def threshold(self, kind: str) -> float:
        return self.thresholds.get(kind, 0.0)

    def validate(self) -> None:
        """Raise ConfigError for settings the engine cannot run with."""
        for kind, horizon in self.horizons.items():
            if horizon.total_seconds() <= 0:
                raise ConfigError(f"horizon for {kind} must be positive, got {horizon}")
        if self.default_horizon.total_seconds() <= 0:
            raise ConfigError("default_horizon must be positive")
        if self.analysis_interval.total_seconds() <= 0:
            raise ConfigError("analysis_interval must be positive")
        if self.insight_horizon.total_seconds() <= 0:
            raise ConfigError("insight_horizon must be positive")
        if self.max_age.total_seconds() <= 0:
            raise ConfigError("max_age must be positive")
        if self.max_points < 1:
            raise ConfigError(f"max_points must be >= 1, got {self.max_points}")
        if self.min_data_points < 1:
            raise ConfigError(f"min_data_points must be >= 1, got {self.min_data_points}")
        if self.subscriber_queue_size < 1:
            raise ConfigError(f"subscriber_queue_size must be >= 1, got {self.subscriber_queue_size}")
        if self.sink_timeout <= 0 or self.enrichment_timeout <= 0:
            raise ConfigError("backend timeouts must be positive")
        for kind, value in self.thresholds.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"threshold for {kind} must be within [0, 1], got {value}")
