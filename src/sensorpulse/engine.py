"""The insight engine: ingestion, scheduling and fan-out.

One :class:`InsightEngine` owns every buffer and store it analyses.  Two
cadences drive analysis:

  - an on-arrival pass, scheduled once ``min_data_points`` new samples have
    been ingested (at most one in flight at a time), and
  - a periodic background pass every ``analysis_interval`` for long-horizon
    predictions, cleanup and LLM enrichment.

Analysis runs in a worker thread on immutable snapshots; only ingestion and
the cleanup sweep mutate state.  Results are broadcast in synthesis order and
handed to the configured sinks.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sensorpulse.analytics.features import FeatureSet, describe_features, extract_window_features
from sensorpulse.analytics.insights import Insight, InsightComposer, support_insight
from sensorpulse.analytics.patterns import PatternAnalyzer
from sensorpulse.analytics.predictions import Prediction, PredictionBook, PredictionSynthesizer
from sensorpulse.analytics.timeseries import TimeSeriesStore
from sensorpulse.analytics.window import WindowSet
from sensorpulse.broadcast import Broadcaster, Subscription
from sensorpulse.config import EngineConfig
from sensorpulse.errors import BackendError, ConfigError, SensorPulseError
from sensorpulse.ingest import SampleIngestor
from sensorpulse.llm import LLMClient
from sensorpulse.samples import SensorKind, SensorSample
from sensorpulse.sinks import RecordSink

logger = logging.getLogger(__name__)


@dataclass
class PassResult:
    """Everything one analysis pass produced, in emission order."""

    kind: str  # "realtime" or "periodic"
    timestamp: float
    features: dict[SensorKind, FeatureSet] = field(default_factory=dict)
    predictions: list[Prediction] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    enrichment: dict[str, Any] | None = None


def _flatten(snapshots: dict[SensorKind, tuple[SensorSample, ...]]) -> list[SensorSample]:
    samples = [s for snap in snapshots.values() for s in snap]
    samples.sort(key=lambda s: s.timestamp)
    return samples


class InsightEngine:
    """Streaming analysis engine.

    Args:
        config: Engine settings; validated here (raises ``ConfigError``).
        clock: Returns "now" as epoch seconds.  Replays pass a clock that
            follows the log.
        rng: Random source for insight template choice.
        llm: Optional enrichment backend.
        sinks: Persistence collaborators receiving every emitted record.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        llm: LLMClient | None = None,
        sinks: Iterable[RecordSink] = (),
    ) -> None:
        self.config = config or EngineConfig()
        self.config.validate()
        try:
            self.tz = ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"unknown timezone {self.config.timezone!r}") from e

        self._clock = clock
        self.rng = rng or random.Random()
        self.llm = llm
        self.sinks: list[RecordSink] = list(sinks)

        self.ingestor = SampleIngestor(self.config.clock_skew_tolerance, self.config.max_age)
        self.windows = WindowSet(self.config.horizon_for)
        self.activity = WindowSet(lambda _kind: self.config.insight_horizon)
        self.store = TimeSeriesStore(self.config.max_points, self.config.max_age)
        self.analyzer = PatternAnalyzer(self.store, self.tz)
        self.synthesizer = PredictionSynthesizer(self.analyzer, self.config, self.tz)
        self.composer = InsightComposer(self.rng)
        self.book = PredictionBook()

        self._predictions: Broadcaster[Prediction] = Broadcaster("predictions", self.config.subscriber_queue_size)
        self._insights: Broadcaster[Insight] = Broadcaster("insights", self.config.subscriber_queue_size)
        self._enrichments: Broadcaster[dict] = Broadcaster("enrichments", self.config.subscriber_queue_size)

        self._periodic_task: asyncio.Task | None = None
        self._realtime_task: asyncio.Task | None = None
        self._passes: set[asyncio.Task] = set()
        self._pending = 0
        self._running = False
        self._closed = False
        self._started_at: float | None = None
        self._latest_features: dict[SensorKind, FeatureSet] = {}
        self._stats = {
            "realtime_passes": 0,
            "periodic_passes": 0,
            "failed_passes": 0,
            "sink_failures": 0,
            "llm_failures": 0,
        }

    def now(self) -> float:
        return self._clock()

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Schedule the periodic background pass."""
        if self._closed:
            raise SensorPulseError("engine has been shut down")
        if self._running:
            return
        self._running = True
        self._started_at = self.now()
        self._periodic_task = asyncio.create_task(self._periodic_loop())
        logger.info(
            "Insight engine started (interval: %s, min_data_points: %d)",
            self.config.analysis_interval,
            self.config.min_data_points,
        )

    async def _periodic_loop(self) -> None:
        interval = self.config.analysis_interval.total_seconds()
        while self._running:
            await asyncio.sleep(interval)
            if not self._running:
                break
            task = self._spawn_pass(self._periodic_pass())
            try:
                # Shielded so shutdown lets an in-flight pass finish
                await asyncio.shield(task)
            except Exception as e:
                logger.error("Periodic pass error: %s", e)

    def _spawn_pass(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    async def shutdown(self) -> None:
        """Stop scheduling, finish in-flight passes, close channels.  Idempotent."""
        if self._closed:
            return
        logger.info("Shutting down insight engine...")
        self._closed = True
        self._running = False

        if self._periodic_task is not None and not self._periodic_task.done():
            self._periodic_task.cancel()
            await asyncio.gather(self._periodic_task, return_exceptions=True)

        if self._passes:
            await asyncio.gather(*list(self._passes), return_exceptions=True)

        self._predictions.close()
        self._insights.close()
        self._enrichments.close()

        if self.llm is not None:
            await self.llm.close()
        logger.info("Insight engine shutdown complete")

    @property
    def closed(self) -> bool:
        return self._closed

    # -- ingestion ----------------------------------------------------------

    def ingest(self, raw: SensorSample | dict) -> SensorSample | None:
        """Normalise and buffer one sample.

        Invalid samples are dropped with a warning.  Returns the stored
        sample, or None when it was dropped or the engine is shut down.
        """
        if self._closed:
            logger.debug("Ignoring sample after shutdown")
            return None
        now = self.now()
        sample = self.ingestor.try_normalize(raw, now)
        if sample is None:
            return None

        self.windows.push(sample, now)
        self.activity.push(sample, now)
        if not sample.clock_anomaly:
            self.store.record(sample.sensor_kind, sample.scalar_value, sample.timestamp)

        self._pending += 1
        self._maybe_schedule_realtime()
        return sample

    def _maybe_schedule_realtime(self) -> None:
        if self._pending < self.config.min_data_points or self._closed:
            return
        if self._realtime_task is not None and not self._realtime_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: the caller drives passes explicitly
        self._pending = 0
        self._realtime_task = self._spawn_pass(self._realtime_pass())

    async def process(self, samples: Iterable[SensorSample | dict]) -> list[SensorSample]:
        """Ingest a batch and wait for the on-arrival passes it triggers."""
        accepted = [s for s in (self.ingest(raw) for raw in samples) if s is not None]
        while self._realtime_task is not None and not self._realtime_task.done():
            await self._realtime_task
            self._maybe_schedule_realtime()
        return accepted

    # -- analysis passes ----------------------------------------------------

    def _analyze_realtime(
        self,
        snapshots: dict[SensorKind, tuple[SensorSample, ...]],
        activity: list[SensorSample],
        now: float,
    ) -> PassResult:
        result = PassResult("realtime", now)
        result.features = extract_window_features(snapshots)
        result.predictions = self.synthesizer.realtime(now)
        result.insights = [self.composer.compose(activity, now)]
        return result

    def _analyze_periodic(self, activity: list[SensorSample], now: float) -> PassResult:
        result = PassResult("periodic", now)
        result.features = extract_window_features(self.windows.snapshot_all(now))
        result.predictions = self.synthesizer.periodic(now)
        unusual = self.composer.detect_unusual_patterns(activity, now)
        if unusual is not None:
            result.insights.append(unusual)
        return result

    async def run_realtime_pass(self) -> PassResult:
        """Features, energy and stress predictions, one real-time insight.

        Returns an empty result once the engine is shut down.
        """
        if self._closed:
            return PassResult("realtime", self.now())
        return await self._realtime_pass()

    async def _realtime_pass(self) -> PassResult:
        now = self.now()
        snapshots = self.windows.snapshot_all(now)
        activity = _flatten(self.activity.snapshot_all(now))
        try:
            result = await asyncio.to_thread(self._analyze_realtime, snapshots, activity, now)
        except Exception as e:
            self._stats["failed_passes"] += 1
            logger.error("Realtime pass failed: %s", e)
            result = PassResult("realtime", now)
            result.insights = [support_insight("I'm still here, looking after your well-being.", now)]

        self._stats["realtime_passes"] += 1
        self._latest_features = dict(result.features)
        await self._emit(result)
        if result.features:
            await self._to_sinks("store_features", result.features, now)
        logger.debug(
            "Realtime pass: %d feature set(s), %d prediction(s)",
            len(result.features), len(result.predictions),
        )
        return result

    async def run_periodic_pass(self) -> PassResult:
        """Cleanup, long-horizon predictions, anomaly insight, enrichment."""
        if self._closed:
            return PassResult("periodic", self.now())
        return await self._periodic_pass()

    async def _periodic_pass(self) -> PassResult:
        now = self.now()
        evicted = self.windows.evict_all(now) + self.activity.evict_all(now)
        removed = self.store.cleanup(now, self.config.max_age)
        purged = self.book.sweep(now)
        logger.debug(
            "Cleanup: %d window sample(s), %d stored point(s), %d prediction(s)",
            evicted, removed, purged,
        )

        activity = _flatten(self.activity.snapshot_all(now))
        try:
            result = await asyncio.to_thread(self._analyze_periodic, activity, now)
        except Exception as e:
            self._stats["failed_passes"] += 1
            logger.error("Periodic pass failed: %s", e)
            result = PassResult("periodic", now)
            result.insights = [support_insight("Your patterns are still being looked after.", now)]

        self._stats["periodic_passes"] += 1
        if result.features:
            self._latest_features = dict(result.features)
        await self._emit(result)

        if self.llm is not None and result.features:
            result.enrichment = await self._enrich(result.features)
            await self._enrichments.publish(dict(result.enrichment))
        return result

    async def _enrich(self, features: dict[SensorKind, FeatureSet]) -> dict[str, Any]:
        descriptions = {kind.value: describe_features(kind, fs) for kind, fs in features.items()}
        try:
            return await asyncio.wait_for(self.llm.enrich(descriptions), self.config.enrichment_timeout)
        except asyncio.TimeoutError:
            error = BackendError("llm", f"no reply within {self.config.enrichment_timeout}s")
        except Exception as e:
            error = e
        self._stats["llm_failures"] += 1
        logger.warning("LLM enrichment failed, using local analysis only: %s", error)
        return {
            "summary": "Enrichment unavailable; insights are based on local analysis.",
            "fallback": True,
            "error": str(error),
        }

    # -- emission -----------------------------------------------------------

    async def _emit(self, result: PassResult) -> None:
        for prediction in result.predictions:
            self.book.add(prediction)
            await self._predictions.publish(prediction.copy())
            await self._to_sinks("store_prediction", prediction)
        for insight in result.insights:
            await self._insights.publish(insight)
            await self._to_sinks("store_insight", insight)

    async def _to_sinks(self, method: str, *args: Any) -> None:
        for sink in self.sinks:
            try:
                await asyncio.wait_for(getattr(sink, method)(*args), self.config.sink_timeout)
            except asyncio.TimeoutError:
                self._stats["sink_failures"] += 1
                logger.warning("Sink %s.%s timed out", type(sink).__name__, method)
            except Exception as e:
                self._stats["sink_failures"] += 1
                logger.warning("Sink %s.%s failed: %s", type(sink).__name__, method, e)

    # -- consumer API -------------------------------------------------------

    def subscribe_predictions(self) -> Subscription[Prediction]:
        return self._predictions.subscribe()

    def subscribe_insights(self) -> Subscription[Insight]:
        return self._insights.subscribe()

    def subscribe_enrichments(self) -> Subscription[dict]:
        return self._enrichments.subscribe()

    def on_prediction(self, callback: Callable[[Prediction], Any]) -> None:
        self._predictions.add_callback(callback)

    def on_insight(self, callback: Callable[[Insight], Any]) -> None:
        self._insights.add_callback(callback)

    def get_active_predictions(self, now: float | None = None) -> list[Prediction]:
        return self.book.active(self.now() if now is None else now)

    def latest_features(self) -> dict[SensorKind, FeatureSet]:
        return dict(self._latest_features)

    def recent_samples(self, kind: SensorKind) -> Sequence[SensorSample]:
        return self.windows.snapshot(kind, self.now())

    def health(self) -> dict[str, Any]:
        now = self.now()
        if self._closed:
            status = "closed"
        elif self._running:
            status = "ok"
        else:
            status = "stopped"
        return {
            "status": status,
            "uptime_seconds": round(now - self._started_at) if self._started_at is not None else 0,
            "samples": {"accepted": self.ingestor.accepted, "dropped": self.ingestor.dropped},
            "windows": {kind.value: len(self.windows.buffer(kind)) for kind in self.windows.kinds()},
            "stored_points": len(self.store),
            "active_predictions": len(self.book.active(now)),
            "subscribers": {
                "predictions": self._predictions.subscriber_count,
                "insights": self._insights.subscriber_count,
                "enrichments": self._enrichments.subscriber_count,
            },
            "passes_in_flight": len(self._passes),
            **self._stats,
        }
