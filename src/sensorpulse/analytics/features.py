"""Window statistics and epoch windowing.

This is the shared foundation for the analytics modules.  It provides:
  - Per-window scalar summaries (mean, min, max, variance, std, skewness)
  - First-half / second-half trend classification
  - Fixed-duration epoch windowing used for minute accounting
  - The per-sensor text block sent as LLM context
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

import numpy as np
from scipy import stats

from sensorpulse.samples import SensorKind, SensorSample

# Relative change (percent) below which a window counts as stable
STABLE_BAND_PCT = 5.0


class TrendDirection(str, Enum):
    STABLE = "stable"
    INCREASING = "increasing"
    DECREASING = "decreasing"


@dataclass(frozen=True)
class Trend:
    direction: TrendDirection
    percent_change: float

    def __str__(self) -> str:
        if self.direction == TrendDirection.STABLE:
            return "stable"
        return f"{self.direction.value} ({self.percent_change:.1f}%)"


@dataclass(frozen=True)
class FeatureSet:
    """Scalar summary of one window snapshot."""

    mean: float
    min: float
    max: float
    variance: float
    std_dev: float
    skewness: float | None  # only when sample_count > 2
    trend: Trend
    sample_count: int

    def to_dict(self) -> dict:
        d = asdict(self)
        d["trend"] = {
            "direction": self.trend.direction.value,
            "percent_change": self.trend.percent_change,
        }
        return d


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------


def compute_trend(values: Sequence[float]) -> Trend:
    """Compare the means of the two halves of *values*.

    The first half takes the extra element when the length is odd.  A zero
    first-half mean is treated as stable.
    """
    n = len(values)
    if n < 2:
        return Trend(TrendDirection.STABLE, 0.0)

    arr = np.asarray(values, dtype=np.float64)
    mid = (n + 1) // 2
    mean1 = float(np.mean(arr[:mid]))
    mean2 = float(np.mean(arr[mid:]))

    if mean1 == 0.0:
        return Trend(TrendDirection.STABLE, 0.0)

    pct = abs((mean2 - mean1) / mean1) * 100.0
    if pct < STABLE_BAND_PCT:
        return Trend(TrendDirection.STABLE, pct)
    if mean2 > mean1:
        return Trend(TrendDirection.INCREASING, pct)
    return Trend(TrendDirection.DECREASING, pct)


# ---------------------------------------------------------------------------
# Feature extraction
# ---------------------------------------------------------------------------


def extract_features(values: Sequence[float]) -> FeatureSet | None:
    """Summarise a window of scalar values.

    Returns None for an empty sequence.
    """
    if len(values) == 0:
        return None

    arr = np.asarray(values, dtype=np.float64)
    lo = float(np.min(arr))
    hi = float(np.max(arr))
    # Summation error can push the mean of a flat window just past its bounds.
    mean = min(max(float(np.mean(arr)), lo), hi)
    variance = float(np.mean((arr - mean) ** 2))
    std = float(np.sqrt(variance))

    skewness: float | None = None
    if len(arr) > 2:
        # Population skewness; a flat window has none to speak of.
        skewness = float(stats.skew(arr, bias=True)) if std > 0 else 0.0

    return FeatureSet(
        mean=mean,
        min=lo,
        max=hi,
        variance=variance,
        std_dev=std,
        skewness=skewness,
        trend=compute_trend(arr),
        sample_count=len(arr),
    )


def sample_values(samples: Iterable[SensorSample], include_anomalies: bool = False) -> list[float]:
    """Scalar values of *samples*, skipping clock anomalies by default."""
    return [s.scalar_value for s in samples if include_anomalies or not s.clock_anomaly]


def extract_window_features(
    snapshots: Mapping[SensorKind, Sequence[SensorSample]],
) -> dict[SensorKind, FeatureSet]:
    """Feature sets for every sensor kind that has usable samples."""
    result: dict[SensorKind, FeatureSet] = {}
    for kind, samples in snapshots.items():
        fs = extract_features(sample_values(samples))
        if fs is not None:
            result[kind] = fs
    return result


# ---------------------------------------------------------------------------
# Epoch windowing
# ---------------------------------------------------------------------------


def epoch_windows(
    timestamps: Sequence[float],
    values: Sequence,
    epoch_sec: float = 60.0,
) -> list[tuple[float, list]]:
    """Slice a time-series into fixed-width epochs.

    Args:
        timestamps: Timestamps (seconds); need not be sorted.
        values: Corresponding values (same length as *timestamps*).
        epoch_sec: Duration of each epoch window in seconds.

    Returns:
        List of ``(epoch_start_time, [values_in_epoch])`` tuples in time
        order.  Epochs with no values are omitted.
    """
    if len(timestamps) == 0:
        return []
    if len(timestamps) != len(values):
        raise ValueError("timestamps and values must have the same length")

    ts = np.asarray(timestamps, dtype=np.float64)
    t_start = float(np.min(ts))
    buckets = np.floor((ts - t_start) / epoch_sec).astype(np.int64)

    epochs: dict[int, list] = {}
    for i, b in enumerate(buckets):
        epochs.setdefault(int(b), []).append(values[i])

    return [(t_start + b * epoch_sec, epochs[b]) for b in sorted(epochs)]


# ---------------------------------------------------------------------------
# LLM context text
# ---------------------------------------------------------------------------


def describe_features(kind: SensorKind | str, fs: FeatureSet) -> str:
    """Render a feature set as the per-sensor block of the LLM context."""
    name = kind.value if isinstance(kind, SensorKind) else str(kind)
    lines = [
        f"Sensor {name}:",
        f"- Mean: {fs.mean:.2f}",
        f"- Max: {fs.max:.2f}",
        f"- Min: {fs.min:.2f}",
        f"- Std dev: {fs.std_dev:.2f}",
        f"- Trend: {fs.trend}",
        f"- Samples: {fs.sample_count}",
    ]
    return "\n".join(lines)
