"""Tests for sensorpulse.analytics.patterns -- deviations and stress risk."""

from datetime import timezone

import pytest

from sensorpulse.analytics.patterns import PatternAnalyzer, relative_deviation
from sensorpulse.analytics.timeseries import TimeSeriesStore
from sensorpulse.samples import SensorKind

from tests.conftest import DAY, HOUR, T0, fill_store

ACC = SensorKind.ACCELEROMETER


def _analyzer(store: TimeSeriesStore) -> PatternAnalyzer:
    return PatternAnalyzer(store, timezone.utc)


@pytest.fixture
def two_weeks():
    """Week 1 averages 5, week 2 averages 10 (hourly points)."""
    store = TimeSeriesStore(max_points=10_000)
    fill_store(store, T0, 7, 5.0)
    fill_store(store, T0 + 7 * DAY, 7, 10.0)
    return store, T0 + 14 * DAY


class TestRelativeDeviation:
    def test_both_zero(self):
        assert relative_deviation(0.0, 0.0) == 0.0

    def test_doubling(self):
        assert relative_deviation(10.0, 5.0) == 0.5
        assert relative_deviation(5.0, 10.0) == 0.5

    def test_capped_at_one(self):
        assert relative_deviation(5.0, -5.0) == 1.0


class TestDeviations:
    def test_zero_windows_do_not_divide_by_zero(self):
        store = TimeSeriesStore(max_points=10_000)
        fill_store(store, T0, 14, 0.0)
        assert _analyzer(store).activity_deviation(T0 + 14 * DAY) == 0.0

    def test_missing_week_is_zero(self):
        store = TimeSeriesStore(max_points=10_000)
        fill_store(store, T0 + 7 * DAY, 7, 10.0)
        assert _analyzer(store).activity_deviation(T0 + 14 * DAY) == 0.0

    def test_doubled_week_activity_deviation(self, two_weeks):
        store, now = two_weeks
        assert _analyzer(store).activity_deviation(now) == pytest.approx(0.5)

    def test_doubled_week_sleep_and_routine(self, two_weeks):
        store, now = two_weeks
        analyzer = _analyzer(store)
        assert analyzer.sleep_deviation(now) == pytest.approx(0.5)
        assert analyzer.routine_deviation(now) == pytest.approx(0.5)

    def test_day_parts(self, two_weeks):
        store, now = two_weeks
        parts = _analyzer(store).day_part_deviations(now)
        assert set(parts) == {"morning routine", "afternoon routine", "evening routine"}
        assert all(v == pytest.approx(0.5) for v in parts.values())


class TestStressRisk:
    def test_doubled_week_flags_irregular_activity(self, two_weeks):
        store, now = two_weeks
        assessment = _analyzer(store).stress_risk(now)
        assert "irregular activity patterns" in assessment.indicators
        assert assessment.deviations["activity"] == pytest.approx(0.5)
        # 0.4 * 0.5 + 0.3 * 0.5 + 0.3 * 0.5
        assert assessment.risk_level == pytest.approx(0.5)

    def test_steady_weeks_have_no_risk(self):
        store = TimeSeriesStore(max_points=10_000)
        fill_store(store, T0, 14, 5.0)
        assessment = _analyzer(store).stress_risk(T0 + 14 * DAY)
        assert assessment.risk_level == 0.0
        assert assessment.indicators == []
        assert set(assessment.deviations) == {"activity", "sleep", "routine"}


class TestProfiles:
    def test_hourly_profile(self):
        store = TimeSeriesStore()
        store.record(ACC, 2.0, T0 + 9 * HOUR)
        store.record(ACC, 4.0, T0 + 9 * HOUR + 60)
        store.record(ACC, 8.0, T0 + 15 * HOUR)
        assert _analyzer(store).hourly_profile() == {9: 3.0, 15: 8.0}

    def test_sleep_quality_default(self):
        assert _analyzer(TimeSeriesStore()).sleep_quality() == 0.5

    def test_sleep_quality_from_night_movement(self):
        store = TimeSeriesStore()
        store.record(ACC, 2.0, T0 + 23 * HOUR)
        store.record(ACC, 2.0, T0 + 3 * HOUR)
        store.record(ACC, 50.0, T0 + 12 * HOUR)  # daytime, ignored
        assert _analyzer(store).sleep_quality() == pytest.approx(0.8)

    def test_recent_activity(self):
        store = TimeSeriesStore()
        store.record(ACC, 100.0, T0 - 3 * HOUR)
        store.record(ACC, 4.0, T0 - HOUR)
        store.record(ACC, 6.0, T0 - 60)
        assert _analyzer(store).recent_activity(T0) == 5.0

    def test_daily_means_index_from_oldest_day(self):
        store = TimeSeriesStore(max_points=10_000)
        fill_store(store, T0, 1, 2.0)
        fill_store(store, T0 + 2 * DAY, 1, 6.0)
        means = _analyzer(store).daily_means(T0 + 3 * DAY)
        assert means == [(0, 2.0), (2, 6.0)]
