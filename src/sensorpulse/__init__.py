"""sensorpulse: streaming sensor analytics and predictive insights."""

from sensorpulse.config import EngineConfig, LLMConfig
from sensorpulse.engine import InsightEngine, PassResult
from sensorpulse.errors import BackendError, ConfigError, InvalidSampleError, SensorPulseError
from sensorpulse.samples import SensorKind, SensorSample

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "ConfigError",
    "EngineConfig",
    "InsightEngine",
    "InvalidSampleError",
    "LLMConfig",
    "PassResult",
    "SensorKind",
    "SensorPulseError",
    "SensorSample",
]
