"""Analytics for streaming device sensor samples.

Modules:
    window      -- Per-kind sliding windows with horizon eviction
    features    -- Window statistics, trend, epoch windowing
    timeseries  -- Long-horizon bounded history per kind
    behavior    -- Behaviour, health and environment indicators
    patterns    -- Week-over-week deviation scores and stress risk
    predictions -- Rule-based predictions and their retention
    insights    -- Priority-ordered present-tense insights
    summary     -- Daily summary aggregation
"""

from sensorpulse.analytics.window import WindowBuffer, WindowSet
from sensorpulse.analytics.features import (
    FeatureSet,
    Trend,
    TrendDirection,
    compute_trend,
    describe_features,
    epoch_windows,
    extract_features,
    extract_window_features,
)
from sensorpulse.analytics.timeseries import TimeSeriesStore
from sensorpulse.analytics.behavior import (
    ActivityLevel,
    BehaviorPattern,
    EnvironmentalFactors,
    HealthIndicators,
    analyze_behavior,
    analyze_environment,
    analyze_health,
)
from sensorpulse.analytics.patterns import PatternAnalyzer, StressAssessment, relative_deviation
from sensorpulse.analytics.predictions import (
    Prediction,
    PredictionBook,
    PredictionKind,
    PredictionState,
    PredictionSynthesizer,
)
from sensorpulse.analytics.insights import Insight, InsightComposer, InsightKind, InsightPriority
from sensorpulse.analytics.summary import DailySummary, build_daily_summary, summaries_by_day

__all__ = [
    # window
    "WindowBuffer",
    "WindowSet",
    # features
    "FeatureSet",
    "Trend",
    "TrendDirection",
    "compute_trend",
    "describe_features",
    "epoch_windows",
    "extract_features",
    "extract_window_features",
    # timeseries
    "TimeSeriesStore",
    # behavior
    "ActivityLevel",
    "BehaviorPattern",
    "EnvironmentalFactors",
    "HealthIndicators",
    "analyze_behavior",
    "analyze_environment",
    "analyze_health",
    # patterns
    "PatternAnalyzer",
    "StressAssessment",
    "relative_deviation",
    # predictions
    "Prediction",
    "PredictionBook",
    "PredictionKind",
    "PredictionState",
    "PredictionSynthesizer",
    # insights
    "Insight",
    "InsightComposer",
    "InsightKind",
    "InsightPriority",
    # summary
    "DailySummary",
    "build_daily_summary",
    "summaries_by_day",
]
