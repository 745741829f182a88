"""Rule-based prediction synthesis.

Each ``predict_*`` method turns pattern-analyzer output into a
:class:`Prediction` candidate and emits it only when it clears the
kind-specific gate in ``EngineConfig.thresholds``.  The formulas are
hand-tuned heuristics, not fitted models.  Missing data is never an error:
the method returns ``None`` (or an empty list) and the pass moves on.

Lifecycle of a prediction: candidate -> emitted -> expired -> purged.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Callable

import numpy as np
from scipy import stats

from sensorpulse.analytics.patterns import DAY_HOURS, ROUTINE_THRESHOLD, PatternAnalyzer
from sensorpulse.config import EngineConfig

logger = logging.getLogger(__name__)


class PredictionKind(str, Enum):
    ENERGY_LEVEL = "energy_level"
    STRESS_RISK = "stress_risk"
    OPTIMAL_TIMING = "optimal_timing"
    HEALTH_TREND = "health_trend"
    ROUTINE_DISRUPTION = "routine_disruption"


class PredictionState(str, Enum):
    CANDIDATE = "candidate"
    EMITTED = "emitted"
    EXPIRED = "expired"
    PURGED = "purged"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


@dataclass(frozen=True)
class Prediction:
    """A time-bounded, confidence-scored forward-looking statement."""

    id: str
    created_at: float
    kind: PredictionKind
    title: str
    description: str
    confidence: float
    valid_until: float
    parameters: dict[str, Any] = field(default_factory=dict)
    suggestions: list[str] = field(default_factory=list)

    def is_active(self, now: float) -> bool:
        return self.valid_until > now

    def copy(self) -> "Prediction":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        d["created_at"] = _iso(self.created_at)
        d["valid_until"] = _iso(self.valid_until)
        return d

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def __repr__(self) -> str:
        return f"Prediction({self.kind.value}, conf={self.confidence:.2f}, id={self.id})"


def format_time(ts: float, tz: tzinfo) -> str:
    """12-hour clock, e.g. ``"2:05 PM"``."""
    dt = datetime.fromtimestamp(ts, tz)
    period = "AM" if dt.hour < 12 else "PM"
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {period}"


# ---------------------------------------------------------------------------
# Scoring formulas
# ---------------------------------------------------------------------------


def energy_score(
    time_of_day: float,
    is_weekday: bool,
    sleep_quality: float,
    recent_activity: float,
    hourly_profile: dict[int, float] | None = None,
) -> float:
    """Heuristic energy level in ``[0, 1]`` for a target time of day."""
    score = 0.5
    if 9 <= time_of_day <= 11:
        score += 0.2
    if 14 <= time_of_day <= 16:
        score -= 0.2
    if 19 <= time_of_day <= 21:
        score += 0.1
    if is_weekday:
        score += 0.1
    score += (sleep_quality - 0.5) * 0.4
    score += (recent_activity / 20.0) * 0.2

    hour = int(time_of_day)
    if hourly_profile and hour in hourly_profile:
        # Same-hour historical movement, normalised to roughly [0, 1]
        score = (score + hourly_profile[hour] / 15.0) / 2.0

    return max(0.0, min(1.0, score))


def energy_confidence(profile_hours: int, sleep_quality: float) -> float:
    confidence = 0.6 + profile_hours * 0.02
    if sleep_quality > 0.7:
        confidence += 0.1
    return min(0.95, confidence)


def trend_fit(points: list[tuple[int, float]]) -> tuple[float, float] | None:
    """Fit a line through ``(day, mean)`` points.

    Returns ``(relative_change, r_squared)`` where *relative_change* is the
    fitted change across the span divided by the mean, or None when the fit
    is meaningless (fewer than 4 days, flat series, zero mean).
    """
    if len(points) < 4:
        return None
    x = np.array([p[0] for p in points], dtype=np.float64)
    y = np.array([p[1] for p in points], dtype=np.float64)
    mean = float(np.mean(y))
    if np.ptp(y) == 0 or np.ptp(x) == 0 or mean == 0:
        return None
    fit = stats.linregress(x, y)
    change = float(fit.slope) * float(np.ptp(x)) / mean
    return change, float(fit.rvalue) ** 2


# Minimum fitted relative change across the span for a trend to count
MIN_TREND_CHANGE = 0.1


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class PredictionSynthesizer:
    """Builds and gates predictions from a :class:`PatternAnalyzer`."""

    def __init__(self, analyzer: PatternAnalyzer, config: EngineConfig, tz: tzinfo) -> None:
        self.analyzer = analyzer
        self.config = config
        self.tz = tz
        self._seq = itertools.count(1)
        self.rejected: dict[str, int] = {}

    def _new_id(self, prefix: str, now: float) -> str:
        return f"{prefix}_{int(now * 1000)}_{next(self._seq)}"

    def _gate(self, prediction: Prediction, score: float) -> Prediction | None:
        """Emit a candidate only if *score* clears its kind's threshold."""
        threshold = self.config.threshold(prediction.kind.value)
        if score < threshold:
            self.rejected[prediction.kind.value] = self.rejected.get(prediction.kind.value, 0) + 1
            logger.debug(
                "Rejected %s candidate: score %.2f < threshold %.2f",
                prediction.kind.value, score, threshold,
            )
            return None
        return prediction

    # -- energy -------------------------------------------------------------

    def predict_energy(self, now: float) -> Prediction | None:
        store = self.analyzer.store
        if store.count(self.analyzer.kind) < self.config.min_energy_points:
            return None

        profile = self.analyzer.hourly_profile()
        sleep_quality = self.analyzer.sleep_quality()
        recent = self.analyzer.recent_activity(now)

        target = now + self.config.energy_lookahead.total_seconds()
        target_dt = datetime.fromtimestamp(target, self.tz)
        time_of_day = target_dt.hour + target_dt.minute / 60.0
        energy = energy_score(
            time_of_day,
            is_weekday=target_dt.weekday() < 5,
            sleep_quality=sleep_quality,
            recent_activity=recent,
            hourly_profile=profile,
        )
        confidence = energy_confidence(len(profile), sleep_quality)
        when = format_time(target, self.tz)

        if energy < 0.3:
            description = (
                f"You might experience an energy dip around {when}. "
                "Your activity patterns and sleep data suggest this timing for lower energy."
            )
            suggestions = [
                "Consider a 10-minute walk or light stretching 30 minutes before",
                "A healthy snack or green tea might help maintain energy levels",
                "Schedule lighter tasks during this period if possible",
            ]
        elif energy > 0.7:
            description = (
                f"Your energy should be naturally higher around {when}. "
                "This could be a great window for more demanding activities."
            )
            suggestions = [
                "This might be ideal timing for exercise or creative work",
                "Consider tackling challenging tasks during this energy peak",
                "Take advantage of this natural rhythm for productivity",
            ]
        else:
            description = f"Your energy levels should be steady around {when}, based on your patterns."
            suggestions = [
                "A good time for moderate activities and tasks",
                "Maintain your current rhythm to sustain this balanced energy",
            ]

        prediction = Prediction(
            id=self._new_id("energy", now),
            created_at=now,
            kind=PredictionKind.ENERGY_LEVEL,
            title="Energy Level Prediction",
            description=description,
            confidence=confidence,
            valid_until=target + 3600.0,
            parameters={
                "predicted_energy": energy,
                "target_time": _iso(target),
                "sleep_quality": sleep_quality,
                "recent_activity": recent,
            },
            suggestions=suggestions,
        )
        return self._gate(prediction, confidence)

    # -- stress -------------------------------------------------------------

    def predict_stress(self, now: float) -> Prediction | None:
        assessment = self.analyzer.stress_risk(now)
        risk = assessment.risk_level
        indicators = assessment.indicators

        if risk > 0.7:
            description = (
                "Several changes in your patterns align with stressful periods. "
                f"{', '.join(indicators)} are showing variations from your usual rhythm."
            )
            suggestions = [
                "Consider taking a few minutes for deep breathing or meditation",
                "A short walk outside might help reset your nervous system",
                "Remember that it's okay to slow down when life feels intense",
                "Perhaps reach out to someone you trust if you need support",
            ]
        else:
            lead = indicators[0].capitalize() if indicators else "Your routine"
            description = (
                "Some minor pattern changes suggest you might be experiencing mild stress. "
                f"{lead} is slightly different from your usual pattern."
            )
            suggestions = [
                "A moment of mindfulness might be helpful right now",
                "Consider what might be contributing to these changes",
                "Small adjustments to your routine could help maintain balance",
            ]

        prediction = Prediction(
            id=self._new_id("stress", now),
            created_at=now,
            kind=PredictionKind.STRESS_RISK,
            title="Stress Risk Detection",
            description=description,
            confidence=min(risk + 0.1, 0.95),
            valid_until=now + 6 * 3600.0,
            parameters={
                "risk_level": risk,
                "indicators": list(indicators),
                "pattern_deviations": dict(assessment.deviations),
            },
            suggestions=suggestions,
        )
        return self._gate(prediction, risk)

    # -- timing -------------------------------------------------------------

    def _next_occurrence(self, hour: int, now: float) -> float:
        dt = datetime.fromtimestamp(now, self.tz)
        candidate = dt.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate.timestamp() <= now:
            candidate += timedelta(days=1)
        return candidate.timestamp()

    def suggest_optimal_timing(self, now: float) -> list[Prediction]:
        profile = self.analyzer.hourly_profile()
        daytime = {h: v for h, v in profile.items() if h in DAY_HOURS}
        if len(daytime) < 3:
            return []
        busiest = max(daytime, key=daytime.get)
        quietest = min(daytime, key=daytime.get)
        if daytime[busiest] == daytime[quietest]:
            return []

        results: list[Prediction] = []
        walk_at = self._next_occurrence(busiest, now)
        walking = Prediction(
            id=self._new_id("walking_timing", now),
            created_at=now,
            kind=PredictionKind.OPTIMAL_TIMING,
            title="Optimal Walking Time",
            description=(
                f"Based on your patterns, {format_time(walk_at, self.tz)} tends to be when you "
                "naturally feel most inclined to move. Your body seems to align with this timing."
            ),
            confidence=0.75,
            valid_until=walk_at + 2 * 3600.0,
            parameters={"optimal_time": _iso(walk_at), "activity_type": "walking", "hour": busiest},
            suggestions=[
                "Consider planning your daily walk around this time",
                "Your energy and movement patterns align well with this timing",
            ],
        )
        rest_at = self._next_occurrence(quietest, now)
        rest = Prediction(
            id=self._new_id("rest_timing", now),
            created_at=now,
            kind=PredictionKind.OPTIMAL_TIMING,
            title="Natural Rest Period",
            description=(
                f"Your patterns suggest {format_time(rest_at, self.tz)} is when you naturally "
                "tend to slow down. Honoring this rhythm could enhance your well-being."
            ),
            confidence=0.70,
            valid_until=rest_at + 3600.0,
            parameters={"optimal_time": _iso(rest_at), "activity_type": "rest", "hour": quietest},
            suggestions=[
                "This might be a good time for quiet activities or reflection",
                "Consider avoiding demanding tasks during this natural lull",
            ],
        )
        for prediction in (walking, rest):
            if self._gate(prediction, prediction.confidence) is not None:
                results.append(prediction)
        return results

    # -- health trend -------------------------------------------------------

    def predict_health_trend(self, now: float) -> Prediction | None:
        signals: list[tuple[str, str, float]] = []  # (indicator, direction, strength)

        activity_fit = trend_fit(self.analyzer.daily_means(now, days=14))
        if activity_fit is not None and abs(activity_fit[0]) >= MIN_TREND_CHANGE:
            change, r2 = activity_fit
            signals.append(("activity levels", "positive" if change > 0 else "concerning", r2))

        sleep_fit = trend_fit(self.analyzer.daily_means(now, days=14, night_only=True))
        if sleep_fit is not None and abs(sleep_fit[0]) >= MIN_TREND_CHANGE:
            change, r2 = sleep_fit
            # Less night-time movement is the good direction
            signals.append(("sleep consistency", "positive" if change < 0 else "concerning", r2))

        if not signals:
            return None

        directions = {d for _, d, _ in signals}
        trend = directions.pop() if len(directions) == 1 else "mixed"
        strength = min(0.95, float(np.mean([s for _, _, s in signals])))
        indicators = [name for name, _, _ in signals]

        if trend == "positive":
            description = (
                f"Your patterns suggest positive health trends! {' and '.join(indicators)} "
                "are showing encouraging improvements over recent weeks."
            )
            suggestions = [
                "Keep maintaining the habits that are working well for you",
                "These positive changes seem to be building momentum",
                "Consider what you've been doing differently that might be contributing",
            ]
        elif trend == "concerning":
            description = (
                f"There are some changes in {' and '.join(indicators)} that might be worth attention. "
                "Small shifts in patterns can sometimes indicate changes in well-being."
            )
            suggestions = [
                "Consider if any recent changes in routine might be contributing",
                "It might be worth paying attention to sleep, activity, or stress levels",
                "Sometimes our bodies signal for adjustments through subtle pattern changes",
            ]
        else:
            description = (
                "Your health indicators show mixed signals. Some patterns are improving "
                "while others show minor variations."
            )
            suggestions = [
                "Continue monitoring how you feel alongside these pattern changes",
                "Small adjustments to routine might help optimize the positive trends",
            ]

        prediction = Prediction(
            id=self._new_id("health_trend", now),
            created_at=now,
            kind=PredictionKind.HEALTH_TREND,
            title="Health Trend Analysis",
            description=description,
            confidence=strength,
            valid_until=now + 7 * 86400.0,
            parameters={
                "trend_direction": trend,
                "strength": strength,
                "indicators": indicators,
                "time_span": "2 weeks",
            },
            suggestions=suggestions,
        )
        return self._gate(prediction, strength)

    # -- routine disruption -------------------------------------------------

    def disruption_probability(self, now: float) -> float:
        routine = self.analyzer.routine_deviation(now)
        daily = [m for _, m in self.analyzer.daily_means(now, days=14)]
        cv = 0.0
        if len(daily) >= 3 and np.mean(daily) > 0:
            cv = min(1.0, float(np.std(daily) / np.mean(daily)))
        return max(0.0, min(1.0, 0.6 * routine + 0.4 * cv))

    def forecast_routine_disruption(self, now: float) -> Prediction | None:
        probability = self.disruption_probability(now)
        parts = self.analyzer.day_part_deviations(now)
        likely = [part for part, dev in parts.items() if dev > ROUTINE_THRESHOLD] or ["daily rhythm"]
        tomorrow = now + 86400.0

        prediction = Prediction(
            id=self._new_id("routine_disruption", now),
            created_at=now,
            kind=PredictionKind.ROUTINE_DISRUPTION,
            title="Routine Disruption Forecast",
            description=(
                "Tomorrow might bring some changes to your usual patterns. "
                f"{' and '.join(likely).capitalize()} could be different from your typical routine."
            ),
            confidence=probability,
            valid_until=tomorrow + 12 * 3600.0,
            parameters={
                "disruption_probability": probability,
                "likely_disruptions": likely,
                "forecast_date": _iso(tomorrow),
            },
            suggestions=[
                "Consider preparing for a more flexible day than usual",
                "Having backup plans might help maintain balance",
                "Remember that disruptions can sometimes bring positive surprises",
            ],
        )
        return self._gate(prediction, probability)

    # -- passes -------------------------------------------------------------

    def _safe(self, name: str, fn: Callable[[float], Any], now: float) -> list[Prediction]:
        try:
            result = fn(now)
        except Exception as e:
            logger.error("Prediction %s failed: %s", name, e)
            return []
        if result is None:
            return []
        return list(result) if isinstance(result, list) else [result]

    def realtime(self, now: float) -> list[Prediction]:
        """Short-horizon predictions run on every on-arrival pass."""
        return (
            self._safe("energy", self.predict_energy, now)
            + self._safe("stress", self.predict_stress, now)
        )

    def periodic(self, now: float) -> list[Prediction]:
        """Long-horizon predictions run by the background pass."""
        return (
            self._safe("timing", self.suggest_optimal_timing, now)
            + self._safe("health_trend", self.predict_health_trend, now)
            + self._safe("routine_disruption", self.forecast_routine_disruption, now)
        )


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class PredictionBook:
    """In-memory list of emitted predictions with an expiry sweep.

    Purged ids are remembered (up to *history_limit*) so their final state
    can still be queried.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        self._predictions: dict[str, Prediction] = {}
        self._states: OrderedDict[str, PredictionState] = OrderedDict()
        self.history_limit = history_limit

    def __len__(self) -> int:
        return len(self._predictions)

    def add(self, prediction: Prediction) -> None:
        self._predictions[prediction.id] = prediction
        self._states[prediction.id] = PredictionState.EMITTED

    def state(self, prediction_id: str) -> PredictionState | None:
        return self._states.get(prediction_id)

    def active(self, now: float) -> list[Prediction]:
        """Copies of every prediction with ``valid_until > now``."""
        return [p.copy() for p in self._predictions.values() if p.is_active(now)]

    def sweep(self, now: float) -> int:
        """Purge expired predictions; returns how many were removed."""
        expired = [pid for pid, p in self._predictions.items() if not p.is_active(now)]
        for pid in expired:
            self._states[pid] = PredictionState.EXPIRED
            del self._predictions[pid]
            self._states[pid] = PredictionState.PURGED
            self._states.move_to_end(pid)
        while len(self._states) > self.history_limit + len(self._predictions):
            oldest = next(iter(self._states))
            if oldest in self._predictions:
                break
            self._states.popitem(last=False)
        if expired:
            logger.debug("Purged %d expired prediction(s)", len(expired))
        return len(expired)
