"""Tests for replay.py -- log loading and offline engine replays."""

from __future__ import annotations

import json
import math

import pytest

from sensorpulse.analytics.features import TrendDirection
from sensorpulse.analytics.predictions import PredictionKind
from sensorpulse.config import EngineConfig
from sensorpulse.replay import (
    ReplayClock,
    load_records,
    normalize_records,
    record_timestamp,
    reference_time,
    replay,
    replay_file,
)
from sensorpulse.samples import SensorKind

from tests.conftest import DAY, T0, raw_accel, write_jsonl


# ===================================================================
# Loading
# ===================================================================


class TestLoadRecords:
    def test_skips_blank_and_malformed_lines(self, tmp_path):
        f = tmp_path / "log.jsonl"
        f.write_text(
            json.dumps(raw_accel(T0, 1.0)) + "\n"
            "\n"
            "{not json\n"
            "[1, 2, 3]\n"
            + json.dumps(raw_accel(T0 + 1, 2.0)) + "\n"
        )
        records = load_records(f)
        assert [r["x"] for r in records] == [1.0, 2.0]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_records(tmp_path / "nope.jsonl")


class TestRecordTimestamp:
    def test_aliases(self):
        assert record_timestamp({"timestamp": T0}) == T0
        assert record_timestamp({"ts": T0 * 1000}) == T0

    def test_missing_or_bad(self):
        assert record_timestamp({}) is None
        assert record_timestamp({"timestamp": "soon"}) is None


class TestNormalizeRecords:
    def test_sorted_and_validated_against_log_end(self):
        records = [raw_accel(T0 + 10, 1.0), raw_accel(T0, 2.0), raw_accel(T0 + 5, math.nan)]
        samples = normalize_records(records)
        assert [s.timestamp for s in samples] == [T0, T0 + 10]
        assert not any(s.clock_anomaly for s in samples)

    def test_far_future_stamp_does_not_flag_the_rest(self):
        records = [raw_accel(T0 + 60 * i, 1.0) for i in range(10)] + [raw_accel(9e10, 1.0)]
        samples = normalize_records(records)
        assert len(samples) == 11
        assert [s.timestamp for s in samples if s.clock_anomaly] == [9e10]


class TestReferenceTime:
    def test_latest_plausible_stamp(self):
        config = EngineConfig()
        assert reference_time([T0, None, T0 + 60, 9e10], config) == T0 + 60
        assert reference_time([T0, T0 + DAY], config) == T0 + DAY

    def test_no_stamps(self):
        assert reference_time([None], EngineConfig()) is None


class TestReplayClock:
    def test_never_goes_backwards(self):
        clock = ReplayClock(T0)
        clock.advance_to(T0 + 10)
        clock.advance_to(T0 + 5)
        assert clock() == T0 + 10


# ===================================================================
# Replays
# ===================================================================


def _ramp(n: int, start: float = T0) -> list[dict]:
    """*n* accelerometer records one second apart with rising magnitude."""
    return [raw_accel(start + i, float(i + 1)) for i in range(n)]


class TestReplay:
    @pytest.mark.asyncio
    async def test_counts_and_outputs(self):
        records = _ramp(60) + [raw_accel(T0 + 61, math.nan), {"sensor_kind": "barometer", "timestamp": T0}]
        result = await replay(records, seed=1)
        assert result.accepted == 60
        assert result.dropped == 2
        assert result.insights
        assert any(p.kind == PredictionKind.ENERGY_LEVEL for p in result.predictions)

    @pytest.mark.asyncio
    async def test_out_of_order_log_is_replayed_in_time_order(self):
        result = await replay(list(reversed(_ramp(20))), seed=1)
        trend = result.features[SensorKind.ACCELEROMETER].trend
        assert trend.direction == TrendDirection.INCREASING

    @pytest.mark.asyncio
    async def test_seed_makes_replay_deterministic(self):
        records = _ramp(60)
        first = await replay(records, seed=7)
        second = await replay(records, seed=7)
        assert [i.message for i in first.insights] == [i.message for i in second.insights]
        assert [p.description for p in first.predictions] == [p.description for p in second.predictions]

    @pytest.mark.asyncio
    async def test_empty_log(self):
        result = await replay([])
        assert result.insights == []
        assert result.predictions == []
        assert result.accepted == 0

    @pytest.mark.asyncio
    async def test_periodic_passes_follow_the_log_clock(self, monkeypatch):
        from sensorpulse.engine import InsightEngine

        calls = []
        original = InsightEngine.run_periodic_pass

        async def counting(self):
            calls.append(self.now())
            return await original(self)

        monkeypatch.setattr(InsightEngine, "run_periodic_pass", counting)
        # One sample a minute for 40 minutes, 15-minute interval
        records = [raw_accel(T0 + 60 * i, 1.0) for i in range(40)]
        await replay(records, config=EngineConfig(), seed=1)
        # At 15 and 30 minutes, then once at the end
        assert calls == [T0 + 900, T0 + 1800, T0 + 2340]

    @pytest.mark.asyncio
    async def test_far_future_stamp_does_not_move_the_clock(self, monkeypatch):
        from sensorpulse.engine import InsightEngine

        calls = []
        original = InsightEngine.run_periodic_pass

        async def counting(self):
            calls.append(self.now())
            return await original(self)

        monkeypatch.setattr(InsightEngine, "run_periodic_pass", counting)
        result = await replay(_ramp(60) + [raw_accel(9e10, 1.0)], seed=1)
        assert result.accepted == 61
        assert calls == [T0 + 59]
        assert any(p.kind == PredictionKind.ENERGY_LEVEL for p in result.predictions)


class TestReplayFile:
    def test_writes_jsonl_records(self, tmp_path):
        log = write_jsonl(tmp_path / "log.jsonl", _ramp(60))
        out = tmp_path / "out" / "records.jsonl"
        result = replay_file(log, out, seed=3)

        lines = [json.loads(line) for line in out.read_text().splitlines()]
        types = {line["type"] for line in lines}
        assert {"prediction", "insight", "features"} <= types
        assert sum(1 for line in lines if line["type"] == "insight") == len(result.insights)

    def test_without_output(self, tmp_path):
        log = write_jsonl(tmp_path / "log.jsonl", _ramp(5))
        result = replay_file(log, seed=3)
        assert result.accepted == 5
        # Below min_data_points, so only the closing pass produced an insight
        assert len(result.insights) == 1
