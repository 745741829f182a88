"""Error taxonomy for the sensorpulse engine.

Only :class:`ConfigError` is fatal (raised at construction time).  Everything
else is contained where it happens: invalid samples are dropped, backend
failures are logged, and insufficient data is a normal ``None`` result.
"""

from __future__ import annotations


class SensorPulseError(Exception):
    """Base class for all sensorpulse errors."""


class ConfigError(SensorPulseError, ValueError):
    """Invalid engine configuration (zero/negative horizon, interval, bound)."""


class InvalidSampleError(SensorPulseError, ValueError):
    """A raw sample could not be normalised.

    Raised for unsupported sensor kinds, missing payload fields and
    non-finite scalar values.
    """


class BackendError(SensorPulseError):
    """An external collaborator (LLM or persistence) failed or timed out."""

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"{backend}: {message}")
        self.backend = backend
