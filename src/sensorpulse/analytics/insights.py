"""Present-tense insights composed from a window of samples.

:meth:`InsightComposer.compose` evaluates a fixed, priority-ordered rule list
and the first rule that matches wins:

  1. posture / inactivity concern
  2. low light with prolonged stillness
  3. encouragement for high activity
  4. stress relief when stress indicators are present
  5. general wellness (default)

Message variety comes from an injected ``random.Random`` so a seeded
composer is deterministic.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from sensorpulse.analytics.behavior import (
    ActivityLevel,
    BehaviorPattern,
    EnvironmentalFactors,
    HealthIndicators,
    analyze_behavior,
    analyze_environment,
    analyze_health,
)
from sensorpulse.samples import SensorSample

logger = logging.getLogger(__name__)

POSTURE_INACTIVITY_PCT = 70.0
POSTURE_STATIONARY_MIN = 30
LOW_LIGHT_LUX = 50.0
LOW_LIGHT_STATIONARY_MIN = 20
EXTENDED_INACTIVITY_MIN = 120
IRREGULAR_VARIABILITY = 50.0


class InsightKind(str, Enum):
    POSTURE = "posture"
    ENVIRONMENTAL = "environmental"
    ENCOURAGEMENT = "encouragement"
    STRESS = "stress"
    WELLNESS = "wellness"
    SUPPORT = "support"
    CONCERN = "concern"
    CELEBRATION = "celebration"


class InsightPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class Insight:
    kind: InsightKind
    message: str
    priority: InsightPriority
    action_suggestion: str
    rationale: str
    created_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "priority": self.priority.value,
            "action_suggestion": self.action_suggestion,
            "rationale": self.rationale,
            "created_at": datetime.fromtimestamp(self.created_at, timezone.utc).isoformat(),
            "metadata": dict(self.metadata),
        }

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def __repr__(self) -> str:
        return f"Insight({self.kind.value}, {self.priority.value})"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

POSTURE_MESSAGES = [
    "You've been sitting for {minutes} minutes. Your back would appreciate a quick stretch!",
    "How about a short walk? Your muscles have been asking for movement for {minutes} minutes.",
    "Your body is asking for an active break. {minutes} minutes of sitting is quite a lot!",
    "Time to look after your posture! A 2-minute break can make a real difference after {minutes} minutes still.",
]

ENCOURAGEMENT_MESSAGES = [
    "Amazing! You've stayed active for {minutes} minutes. Keep it up, you're on the right track!",
    "Great energy! {minutes} active minutes show you're taking good care of your health.",
    "Well done on {minutes} active minutes! Your future self will thank you for it.",
]

WELLNESS_MESSAGES = [
    "You're having a balanced day! Keep listening to your body.",
    "Your sensors show a healthy pattern. Small daily habits make all the difference!",
    "Good to see you looking after your health. Every movement counts toward your well-being.",
]


def gentle_insight(message: str, now: float) -> Insight:
    return Insight(
        kind=InsightKind.WELLNESS,
        message=message,
        priority=InsightPriority.LOW,
        action_suggestion="Keep being kind to yourself",
        rationale="Emotional self-care is fundamental to well-being",
        created_at=now,
    )


def support_insight(message: str, now: float) -> Insight:
    return Insight(
        kind=InsightKind.SUPPORT,
        message=message,
        priority=InsightPriority.LOW,
        action_suggestion="Take a moment for yourself",
        rationale="Emotional support improves resilience and mental well-being",
        created_at=now,
    )


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class InsightComposer:
    """Turns a window of samples into one prioritised insight.

    Args:
        rng: Source of template choice.  Pass a seeded ``random.Random`` for
            reproducible output.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def compose(self, samples: Sequence[SensorSample], now: float) -> Insight:
        """Select the first matching rule; never raises."""
        usable = [s for s in samples if not s.clock_anomaly]
        if not usable:
            return gentle_insight("Waiting to get to know your patterns better. Take care of yourself today!", now)
        try:
            behavior = analyze_behavior(usable)
            health = analyze_health(usable)
            environment = analyze_environment(usable)
            return self._select(behavior, health, environment, now)
        except Exception as e:
            logger.error("Insight composition failed: %s", e)
            return support_insight("I'm here to support your well-being, whatever your day looks like.", now)

    def _select(
        self,
        behavior: BehaviorPattern,
        health: HealthIndicators,
        environment: EnvironmentalFactors,
        now: float,
    ) -> Insight:
        if (
            health.inactivity_percentage > POSTURE_INACTIVITY_PCT
            and behavior.stationary_minutes > POSTURE_STATIONARY_MIN
        ):
            return self._posture(behavior.stationary_minutes, now)

        if (
            environment.light_readings > 0
            and environment.average_light_level < LOW_LIGHT_LUX
            and behavior.stationary_minutes > LOW_LIGHT_STATIONARY_MIN
        ):
            return self._low_light(environment.average_light_level, now)

        if health.activity_level == ActivityLevel.HIGH and behavior.active_minutes > 0:
            return self._encouragement(behavior.active_minutes, now)

        if behavior.stress_indicators:
            return self._stress(sorted(behavior.stress_indicators), now)

        return self._wellness(now)

    def _posture(self, minutes: int, now: float) -> Insight:
        return Insight(
            kind=InsightKind.POSTURE,
            message=self.rng.choice(POSTURE_MESSAGES).format(minutes=minutes),
            priority=InsightPriority.MEDIUM,
            action_suggestion="Stand up and do 5 simple stretches",
            rationale="Improves circulation and reduces muscle tension",
            created_at=now,
            metadata={"stationary_minutes": minutes},
        )

    def _low_light(self, lux: float, now: float) -> Insight:
        return Insight(
            kind=InsightKind.ENVIRONMENTAL,
            message=(
                f"Low light levels ({int(lux)} lux) suggest you'd benefit from some natural light. "
                "Your mood and energy will thank you!"
            ),
            priority=InsightPriority.LOW,
            action_suggestion="Open the curtains or take a walk outside",
            rationale="Natural light helps regulate circadian rhythm and improves mood",
            created_at=now,
            metadata={"average_lux": lux},
        )

    def _encouragement(self, minutes: int, now: float) -> Insight:
        return Insight(
            kind=InsightKind.ENCOURAGEMENT,
            message=self.rng.choice(ENCOURAGEMENT_MESSAGES).format(minutes=minutes),
            priority=InsightPriority.LOW,
            action_suggestion="Keep up this healthy rhythm",
            rationale="Regular activity strengthens the heart and improves mood",
            created_at=now,
            metadata={"active_minutes": minutes},
        )

    def _stress(self, indicators: list[str], now: float) -> Insight:
        return Insight(
            kind=InsightKind.STRESS,
            message="Your movement patterns suggest you might be feeling tense. How about a breathing break?",
            priority=InsightPriority.MEDIUM,
            action_suggestion="Try 3 deep breaths: in for 4, hold for 4, out for 6",
            rationale="Mindful breathing lowers cortisol and activates the parasympathetic nervous system",
            created_at=now,
            metadata={"stress_indicators": indicators},
        )

    def _wellness(self, now: float) -> Insight:
        return Insight(
            kind=InsightKind.WELLNESS,
            message=self.rng.choice(WELLNESS_MESSAGES),
            priority=InsightPriority.LOW,
            action_suggestion="Keep doing what you're doing!",
            rationale="Consistent habits contribute to longevity and quality of life",
            created_at=now,
        )

    # -- anomalies ----------------------------------------------------------

    def detect_unusual_patterns(self, samples: Sequence[SensorSample], now: float) -> Insight | None:
        """Concern insight for extended inactivity or irregular movement.

        Returns None when the window shows neither.
        """
        usable = [s for s in samples if not s.clock_anomaly]
        if not usable:
            return None
        behavior = analyze_behavior(usable)

        anomalies: list[str] = []
        if behavior.stationary_minutes > EXTENDED_INACTIVITY_MIN:
            anomalies.append("extended_inactivity")
        if behavior.movement_variability > IRREGULAR_VARIABILITY:
            anomalies.append("irregular_movement")
        if not anomalies:
            return None

        if "extended_inactivity" in anomalies:
            message = (
                "I've noticed a longer stretch of inactivity than usual. Is everything okay? "
                "Sometimes our bodies need an extra nudge."
            )
            action = "If you can, try moving for a few minutes"
        else:
            message = "Your movement patterns look a little different today. Maybe it's time for a mindful pause?"
            action = "Do a quick body check: how are you feeling?"

        return Insight(
            kind=InsightKind.CONCERN,
            message=message,
            priority=InsightPriority.HIGH if len(anomalies) >= 2 else InsightPriority.MEDIUM,
            action_suggestion=action,
            rationale="Paying attention to changes in your body helps with prevention and self-care",
            created_at=now,
            metadata={"anomalies": anomalies},
        )
