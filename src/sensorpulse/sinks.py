"""Persistence collaborators for emitted records.

The engine hands every prediction, insight and feature summary to each
configured sink.  Sinks never feed back into analysis, so a slow or failing
sink only costs the record it was writing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from sensorpulse.analytics.features import FeatureSet
from sensorpulse.analytics.insights import Insight
from sensorpulse.analytics.predictions import Prediction
from sensorpulse.samples import SensorKind

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordSink(Protocol):
    async def store_prediction(self, prediction: Prediction) -> None: ...

    async def store_insight(self, insight: Insight) -> None: ...

    async def store_features(self, features: dict[SensorKind, FeatureSet], timestamp: float) -> None: ...


def features_record(features: dict[SensorKind, FeatureSet], timestamp: float) -> dict[str, Any]:
    return {
        "timestamp": datetime.fromtimestamp(timestamp, timezone.utc).isoformat(),
        "features": {kind.value: fs.to_dict() for kind, fs in features.items()},
    }


class MemorySink:
    """Keeps every record in lists; for tests and embedding."""

    def __init__(self) -> None:
        self.predictions: list[Prediction] = []
        self.insights: list[Insight] = []
        self.features: list[dict[str, Any]] = []

    async def store_prediction(self, prediction: Prediction) -> None:
        self.predictions.append(prediction)

    async def store_insight(self, insight: Insight) -> None:
        self.insights.append(insight)

    async def store_features(self, features: dict[SensorKind, FeatureSet], timestamp: float) -> None:
        self.features.append(features_record(features, timestamp))


class JsonlSink:
    """Appends one JSON object per record to a ``.jsonl`` file.

    Each line carries a ``type`` of ``prediction``, ``insight`` or
    ``features``.  The file is opened per write so it can be rotated
    underneath the engine.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0
        self._lock = asyncio.Lock()

    def _append(self, record: dict[str, Any]) -> None:
        with open(self.path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")

    async def _write(self, record: dict[str, Any]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._append, record)
            self.count += 1

    async def store_prediction(self, prediction: Prediction) -> None:
        await self._write({"type": "prediction", **prediction.to_dict()})

    async def store_insight(self, insight: Insight) -> None:
        await self._write({"type": "insight", **insight.to_dict()})

    async def store_features(self, features: dict[SensorKind, FeatureSet], timestamp: float) -> None:
        await self._write({"type": "features", **features_record(features, timestamp)})
