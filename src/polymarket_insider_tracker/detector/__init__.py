"""Detection layer - Composite suspicion scoring and adaptive thresholds."""

from polymarket_insider_tracker.detector.composite import (
    CompositeSuspicionScorer,
    ScorerConfig,
)
from polymarket_insider_tracker.detector.models import (
    BatchScoreResult,
    CompositeScoreResult,
    ConditionMetric,
    MarketConditions,
    MarketRegime,
    SignalCategory,
    SignalContribution,
    SignalReading,
    SignalSource,
    SuspicionLevel,
    ThresholdAdjustment,
    ThresholdConfig,
)
from polymarket_insider_tracker.detector.sources import SignalProvider, default_providers
from polymarket_insider_tracker.detector.thresholds import DynamicThresholdAdjuster

__all__ = [
    "BatchScoreResult",
    "CompositeScoreResult",
    "CompositeSuspicionScorer",
    "ConditionMetric",
    "DynamicThresholdAdjuster",
    "MarketConditions",
    "MarketRegime",
    "ScorerConfig",
    "SignalCategory",
    "SignalContribution",
    "SignalProvider",
    "SignalReading",
    "SignalSource",
    "SuspicionLevel",
    "ThresholdAdjustment",
    "ThresholdConfig",
    "default_providers",
]
