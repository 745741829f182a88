"""Replay recorded sample logs through the engine for offline analysis.

A log is a ``.jsonl`` file with one raw sample per line, in the same shape
live ingestion accepts, e.g.::

    {"sensor_kind": "accelerometer", "timestamp": 1760781600.0, "x": 0.1, "y": 0.0, "z": 0.2}

Replays drive the engine with a clock that follows the log, so windows,
passes and prediction lifetimes behave as they would have live.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import statistics
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from sensorpulse.analytics.features import FeatureSet
from sensorpulse.analytics.insights import Insight
from sensorpulse.analytics.predictions import Prediction
from sensorpulse.config import EngineConfig
from sensorpulse.engine import InsightEngine
from sensorpulse.errors import InvalidSampleError
from sensorpulse.ingest import SampleIngestor, parse_timestamp
from sensorpulse.llm import LLMClient
from sensorpulse.samples import SensorKind, SensorSample
from sensorpulse.sinks import JsonlSink, RecordSink

logger = logging.getLogger(__name__)


def load_records(path: str | Path) -> list[dict]:
    """Read a ``.jsonl`` sample log; blank and malformed lines are skipped."""
    records: list[dict] = []
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("[line %d] invalid JSON, skipping", line_num)
                continue
            if not isinstance(entry, dict):
                logger.warning("[line %d] not a JSON object, skipping", line_num)
                continue
            records.append(entry)
    logger.info("Loaded %d record(s) from %s", len(records), Path(path).name)
    return records


def record_timestamp(record: dict) -> float | None:
    value = record.get("timestamp", record.get("ts"))
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except InvalidSampleError:
        return None


def reference_time(stamps: Iterable[float | None], config: EngineConfig) -> float | None:
    """Latest timestamp that is not an outlier beyond the bulk of the log.

    Stamps more than ``max_age`` past the median are treated as broken
    device clocks, so a single one cannot push every other sample out of
    retention.
    """
    stamps = [t for t in stamps if t is not None]
    if not stamps:
        return None
    limit = statistics.median(stamps) + config.max_age.total_seconds()
    return max(t for t in stamps if t <= limit)


def normalize_records(records: Iterable[dict], config: EngineConfig | None = None) -> list[SensorSample]:
    """Validate every record against the log's reference time."""
    config = config or EngineConfig()
    records = list(records)
    now = reference_time((record_timestamp(r) for r in records), config)
    if now is None:
        now = time.time()
    ingestor = SampleIngestor(config.clock_skew_tolerance, config.max_age)
    samples = [s for s in (ingestor.try_normalize(r, now) for r in records) if s is not None]
    samples.sort(key=lambda s: s.timestamp)
    return samples


class ReplayClock:
    """Monotonic clock advanced by the replayed timestamps."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_to(self, timestamp: float) -> None:
        self.now = max(self.now, timestamp)


@dataclass
class ReplayResult:
    predictions: list[Prediction] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    features: dict[SensorKind, FeatureSet] = field(default_factory=dict)
    accepted: int = 0
    dropped: int = 0


async def replay(
    records: Iterable[dict],
    config: EngineConfig | None = None,
    seed: int | None = None,
    sinks: Iterable[RecordSink] = (),
    llm: LLMClient | None = None,
) -> ReplayResult:
    """Feed *records* through a fresh engine in timestamp order.

    A periodic pass runs every time the replayed clock crosses
    ``analysis_interval``, and once more at the end of the log.
    """
    config = config or EngineConfig()
    records = list(records)
    stamps = [record_timestamp(r) for r in records]
    ordered = sorted(
        zip(stamps, range(len(records))),
        key=lambda pair: (pair[0] if pair[0] is not None else float("-inf"), pair[1]),
    )

    first = next((t for t, _ in ordered if t is not None), time.time())
    # Outliers past the log's reference time do not move the clock
    latest = reference_time(stamps, config)
    if latest is not None:
        latest += config.clock_skew_tolerance.total_seconds()
    clock = ReplayClock(first)
    engine = InsightEngine(config, clock=clock, rng=random.Random(seed), llm=llm, sinks=sinks)
    result = ReplayResult()
    engine.on_prediction(result.predictions.append)
    engine.on_insight(result.insights.append)

    interval = config.analysis_interval.total_seconds()
    next_periodic = first + interval
    try:
        for ts, index in ordered:
            if ts is not None and ts <= latest:
                clock.advance_to(ts)
            await engine.process([records[index]])
            if clock.now >= next_periodic:
                await engine.run_periodic_pass()
                next_periodic = clock.now + interval

        if len(engine.store):
            await engine.run_realtime_pass()
            await engine.run_periodic_pass()
        result.features = engine.latest_features()
        result.accepted = engine.ingestor.accepted
        result.dropped = engine.ingestor.dropped
    finally:
        await engine.shutdown()

    logger.info(
        "Replay: %d accepted, %d dropped, %d prediction(s), %d insight(s)",
        result.accepted, result.dropped, len(result.predictions), len(result.insights),
    )
    return result


def replay_file(
    path: str | Path,
    output_path: str | Path | None = None,
    seed: int | None = None,
    config: EngineConfig | None = None,
) -> ReplayResult:
    """Replay a ``.jsonl`` sample log, optionally writing records as JSONL."""
    records = load_records(path)
    sinks = [JsonlSink(output_path)] if output_path else []
    return asyncio.run(replay(records, config=config, seed=seed, sinks=sinks))
