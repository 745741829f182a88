"""Daily summary aggregator.

Folds one day of samples into a single DailySummary that is
JSON-serializable: minutes per activity, posture and environment scores,
and the human-readable encouragement built on top of them.
"""

from __future__ import annotations

import json
import random
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Sequence

from sensorpulse.analytics.behavior import classify_movement
from sensorpulse.analytics.features import epoch_windows
from sensorpulse.samples import SensorKind, SensorSample

# Accelerometer band counted as "good posture" (neither slumped still nor jolting)
POSTURE_BAND = (1.0, 8.0)
DEFAULT_SCORE = 5

GREETINGS = [
    "What an interesting day you had!",
    "Let's see how your day of self-care went:",
    "Here's a friendly little summary of your day:",
    "Your body has stories to tell about today:",
]


def _round_half_up(x: float) -> int:
    return int(x + 0.5)


@dataclass
class DailySummary:
    """A single day's activity and environment report."""

    date: str  # ISO date string, e.g. "2026-02-13"

    # Activity (minutes, one per epoch)
    walking_min: int = 0
    running_min: int = 0
    stationary_min: int = 0

    # Scores, 0-10
    posture_score: int = DEFAULT_SCORE
    environment_score: int = DEFAULT_SCORE
    overall_score: int = DEFAULT_SCORE

    # Narrative
    greeting: str = ""
    posture_note: str = ""
    environment_note: str = ""
    encouragement: str = ""
    improvements: list[str] = field(default_factory=list)
    celebrations: list[str] = field(default_factory=list)

    @property
    def activity_minutes(self) -> dict[str, int]:
        return {
            "walking": self.walking_min,
            "running": self.running_min,
            "stationary": self.stationary_min,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (JSON-friendly)."""
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def __repr__(self) -> str:
        return (
            f"DailySummary({self.date}: "
            f"walk={self.walking_min}min, "
            f"run={self.running_min}min, "
            f"posture={self.posture_score}/10, "
            f"overall={self.overall_score}/10)"
        )


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def activity_minutes(samples: Sequence[SensorSample], epoch_sec: float = 60.0) -> dict[str, int]:
    """Classify each one-minute epoch of accelerometer data by its mean magnitude."""
    accel = [s for s in samples if s.sensor_kind == SensorKind.ACCELEROMETER]
    minutes = {"walking": 0, "running": 0, "stationary": 0}
    epochs = epoch_windows([s.timestamp for s in accel], [s.scalar_value for s in accel], epoch_sec)
    for _, values in epochs:
        minutes[classify_movement(sum(values) / len(values))] += 1
    return minutes


def posture_score(samples: Sequence[SensorSample]) -> int:
    mags = [s.scalar_value for s in samples if s.sensor_kind == SensorKind.ACCELEROMETER]
    if not mags:
        return DEFAULT_SCORE
    lo, hi = POSTURE_BAND
    good = sum(1 for m in mags if lo < m < hi)
    return _round_half_up(good / len(mags) * 10)


def environment_score(samples: Sequence[SensorSample]) -> int:
    lux = [s.scalar_value for s in samples if s.sensor_kind == SensorKind.LIGHT]
    if not lux:
        return DEFAULT_SCORE
    avg = sum(lux) / len(lux)
    if avg > 200:
        return 8
    if avg > 100:
        return 6
    return 4


# ---------------------------------------------------------------------------
# Narrative
# ---------------------------------------------------------------------------


def _posture_note(score: int) -> str:
    if score >= 8:
        return "Your posture was excellent today! Your body thanks you."
    if score >= 6:
        return "Good posture most of the time. Keep it up!"
    if score >= 4:
        return "Your posture could improve. How about paying a bit more attention to it?"
    return "Shall we take better care of posture tomorrow? Small adjustments make a difference!"


def _environment_note(score: int) -> str:
    if score >= 8:
        return "A great environment for productivity and well-being!"
    if score >= 6:
        return "A good environment most of the time."
    return "How about looking for a bit more natural light tomorrow?"


def _encouragement(score: int) -> str:
    if score >= 8:
        return "A fantastic day of self-care! You're an inspiration!"
    if score >= 6:
        return "A good day of looking after your health. Keep going!"
    return "Tomorrow is a new chance to take even better care of yourself!"


def build_daily_summary(
    day: date | str,
    samples: Sequence[SensorSample],
    rng: random.Random | None = None,
) -> DailySummary:
    """Build a daily summary from one day of samples.

    Args:
        day: The date for this summary.
        samples: Every sample recorded that day (any sensor kind).
        rng: Source for the greeting choice; seed it for stable output.

    Returns:
        A populated DailySummary.
    """
    rng = rng or random.Random()
    date_str = day if isinstance(day, str) else day.isoformat()
    usable = [s for s in samples if not s.clock_anomaly]

    minutes = activity_minutes(usable)
    posture = posture_score(usable)
    environment = environment_score(usable)
    overall = _round_half_up((posture + environment) / 2)

    summary = DailySummary(
        date=date_str,
        walking_min=minutes["walking"],
        running_min=minutes["running"],
        stationary_min=minutes["stationary"],
        posture_score=posture,
        environment_score=environment,
        overall_score=overall,
        greeting=rng.choice(GREETINGS),
        posture_note=_posture_note(posture),
        environment_note=_environment_note(environment),
        encouragement=_encouragement(overall),
    )

    if posture < 6:
        summary.improvements.append("Set reminders to stretch every hour")
    if environment < 6:
        summary.improvements.append("Look for more natural light during the day")
    if summary.walking_min < 30:
        summary.improvements.append("Add a short walk to your routine")

    if overall >= 7:
        summary.celebrations.append("An excellent day of self-care!")
    if posture >= 8:
        summary.celebrations.append("Royal posture today!")

    return summary


def summaries_by_day(
    samples: Sequence[SensorSample],
    tz: tzinfo = timezone.utc,
    rng: random.Random | None = None,
) -> list[DailySummary]:
    """One summary per local calendar day present in *samples*, oldest first."""
    rng = rng or random.Random()
    by_day: dict[date, list[SensorSample]] = {}
    for sample in samples:
        day = datetime.fromtimestamp(sample.timestamp, tz).date()
        by_day.setdefault(day, []).append(sample)
    return [build_daily_summary(day, by_day[day], rng) for day in sorted(by_day)]
