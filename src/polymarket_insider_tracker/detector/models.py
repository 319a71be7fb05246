"""Data models for the detector module."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# === Composite scoring ===


class SignalSource(str, Enum):
    """Detector that contributes a signal to the composite score."""

    FRESH_WALLET = "FRESH_WALLET"
    WIN_RATE = "WIN_RATE"
    PROFIT_LOSS = "PROFIT_LOSS"
    TIMING_PATTERN = "TIMING_PATTERN"
    POSITION_SIZING = "POSITION_SIZING"
    MARKET_SELECTION = "MARKET_SELECTION"
    COORDINATION = "COORDINATION"
    SYBIL = "SYBIL"
    ACCURACY = "ACCURACY"
    TRADING_PATTERN = "TRADING_PATTERN"


class SignalCategory(str, Enum):
    WALLET_PROFILE = "WALLET_PROFILE"
    PERFORMANCE = "PERFORMANCE"
    BEHAVIOR = "BEHAVIOR"
    NETWORK = "NETWORK"


class SuspicionLevel(str, Enum):
    """Composite suspicion level. Bands: <20 NONE, 20 LOW, 40 MEDIUM, 60 HIGH, 80 CRITICAL."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [
    SuspicionLevel.NONE,
    SuspicionLevel.LOW,
    SuspicionLevel.MEDIUM,
    SuspicionLevel.HIGH,
    SuspicionLevel.CRITICAL,
]


class SignalConfidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


SIGNAL_CATEGORY_MAP: dict[SignalSource, SignalCategory] = {
    SignalSource.FRESH_WALLET: SignalCategory.WALLET_PROFILE,
    SignalSource.WIN_RATE: SignalCategory.PERFORMANCE,
    SignalSource.PROFIT_LOSS: SignalCategory.PERFORMANCE,
    SignalSource.ACCURACY: SignalCategory.PERFORMANCE,
    SignalSource.TIMING_PATTERN: SignalCategory.BEHAVIOR,
    SignalSource.POSITION_SIZING: SignalCategory.BEHAVIOR,
    SignalSource.MARKET_SELECTION: SignalCategory.BEHAVIOR,
    SignalSource.TRADING_PATTERN: SignalCategory.BEHAVIOR,
    SignalSource.COORDINATION: SignalCategory.NETWORK,
    SignalSource.SYBIL: SignalCategory.NETWORK,
}

SIGNAL_NAMES: dict[SignalSource, str] = {
    SignalSource.FRESH_WALLET: "Fresh Wallet Analysis",
    SignalSource.WIN_RATE: "Win Rate Analysis",
    SignalSource.PROFIT_LOSS: "Profit/Loss Analysis",
    SignalSource.TIMING_PATTERN: "Timing Pattern Analysis",
    SignalSource.POSITION_SIZING: "Position Sizing Analysis",
    SignalSource.MARKET_SELECTION: "Market Selection Analysis",
    SignalSource.COORDINATION: "Coordination Detection",
    SignalSource.SYBIL: "Sybil Detection",
    SignalSource.ACCURACY: "Historical Accuracy",
    SignalSource.TRADING_PATTERN: "Trading Pattern Classification",
}

CATEGORY_NAMES: dict[SignalCategory, str] = {
    SignalCategory.WALLET_PROFILE: "Wallet Profile",
    SignalCategory.PERFORMANCE: "Performance",
    SignalCategory.BEHAVIOR: "Behavior",
    SignalCategory.NETWORK: "Network",
}


@dataclass(frozen=True)
class SignalReading:
    """What a signal provider reports for one wallet.

    Attributes:
        score: Raw suspicion score, 0-100.
        confidence: Provider's confidence in the score.
        data_quality: Share of the data the provider needed that it had, 0-100.
        available: False when the provider has nothing to say about the wallet.
        reason: Short human-readable explanation.
        flags: Risk flags raised by the provider.
    """

    score: float = 0.0
    confidence: SignalConfidence = SignalConfidence.LOW
    data_quality: float = 0.0
    available: bool = True
    reason: str = ""
    flags: tuple[str, ...] = ()

    @classmethod
    def unavailable(cls, reason: str = "Data not available") -> SignalReading:
        return cls(available=False, reason=reason)


@dataclass(frozen=True)
class SignalContribution:
    """One source's contribution to a composite score."""

    source: SignalSource
    category: SignalCategory
    name: str
    raw_score: float
    weight: float
    weighted_score: float
    confidence: SignalConfidence
    data_quality: float
    available: bool
    reason: str
    flags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "source": self.source.value,
            "category": self.category.value,
            "name": self.name,
            "raw_score": self.raw_score,
            "weight": self.weight,
            "weighted_score": self.weighted_score,
            "confidence": self.confidence.value,
            "data_quality": self.data_quality,
            "available": self.available,
            "reason": self.reason,
            "flags": list(self.flags),
        }


@dataclass(frozen=True)
class CategoryBreakdown:
    category: SignalCategory
    name: str
    score: float
    weight: float
    signal_count: int
    available_signals: int
    signals: tuple[SignalContribution, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "name": self.name,
            "score": self.score,
            "weight": self.weight,
            "signal_count": self.signal_count,
            "available_signals": self.available_signals,
            "signals": [s.source.value for s in self.signals],
        }


@dataclass(frozen=True)
class RiskFlag:
    """A risk flag aggregated across every signal that raised it."""

    category: str
    severity: float
    description: str
    sources: tuple[SignalSource, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "sources": [s.value for s in self.sources],
        }


@dataclass(frozen=True)
class CompositeScoreResult:
    """Composite suspicion assessment for one wallet.

    Attributes:
        wallet_address: Checksummed wallet address.
        composite_score: Final score, 0-100.
        suspicion_level: Band the score falls in.
        should_flag: Score reached the flag threshold.
        is_potential_insider: Score reached the insider threshold and a
            high-confidence network or performance signal backs it up.
    """

    wallet_address: str
    composite_score: int
    suspicion_level: SuspicionLevel
    should_flag: bool
    is_potential_insider: bool
    signal_contributions: tuple[SignalContribution, ...]
    category_breakdown: tuple[CategoryBreakdown, ...]
    top_signals: tuple[SignalContribution, ...]
    risk_flags: tuple[RiskFlag, ...]
    data_quality: float
    available_signals: int
    total_signals: int
    summary: tuple[str, ...]
    key_findings: tuple[str, ...]
    analyzed_at: datetime
    from_cache: bool = False

    @property
    def is_high_suspicion(self) -> bool:
        return self.suspicion_level.rank >= SuspicionLevel.HIGH.rank

    def contribution(self, source: SignalSource) -> SignalContribution | None:
        for contribution in self.signal_contributions:
            if contribution.source == source:
                return contribution
        return None

    def to_dict(self) -> dict[str, object]:
        """Serialize for logging/alerting."""
        return {
            "wallet_address": self.wallet_address,
            "composite_score": self.composite_score,
            "suspicion_level": self.suspicion_level.value,
            "should_flag": self.should_flag,
            "is_potential_insider": self.is_potential_insider,
            "signal_contributions": [c.to_dict() for c in self.signal_contributions],
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "top_signals": [c.source.value for c in self.top_signals],
            "risk_flags": [f.to_dict() for f in self.risk_flags],
            "data_quality": self.data_quality,
            "available_signals": self.available_signals,
            "total_signals": self.total_signals,
            "summary": list(self.summary),
            "key_findings": list(self.key_findings),
            "analyzed_at": self.analyzed_at.isoformat(),
            "from_cache": self.from_cache,
        }


@dataclass(frozen=True)
class BatchScoreResult:
    results: dict[str, CompositeScoreResult]
    failed: dict[str, Exception]
    total_processed: int
    average_score: float
    by_level: dict[SuspicionLevel, int]
    processed_at: datetime
    signal_availability: dict[SignalSource, SignalAvailability] = field(default_factory=dict)
    common_flags: tuple[tuple[str, int], ...] = ()


@dataclass(frozen=True)
class SignalAvailability:
    available: int = 0
    total: int = 0

    @property
    def rate(self) -> float:
        return self.available / self.total if self.total else 0.0


@dataclass(frozen=True)
class ScorerSummary:
    total_wallets_scored: int
    by_level: dict[SuspicionLevel, int]
    average_score: float
    median_score: float | None
    signal_availability: dict[SignalSource, SignalAvailability]
    common_flags: tuple[tuple[str, int], ...]
    cache_stats: dict[str, float | int] = field(default_factory=dict)


# === Dynamic thresholds ===


class MarketRegime(str, Enum):
    NORMAL = "NORMAL"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    LOW_VOLATILITY = "LOW_VOLATILITY"
    HIGH_ACTIVITY = "HIGH_ACTIVITY"
    LOW_ACTIVITY = "LOW_ACTIVITY"
    BULL_MARKET = "BULL_MARKET"
    BEAR_MARKET = "BEAR_MARKET"
    EXTREME = "EXTREME"


class ConditionMetric(str, Enum):
    VOLUME = "VOLUME"
    VOLATILITY = "VOLATILITY"
    ACTIVE_TRADERS = "ACTIVE_TRADERS"
    ACTIVE_MARKETS = "ACTIVE_MARKETS"
    TRADE_SIZE = "TRADE_SIZE"
    SENTIMENT = "SENTIMENT"
    LIQUIDITY = "LIQUIDITY"
    FRESH_WALLET_ACTIVITY = "FRESH_WALLET_ACTIVITY"


class ThresholdType(str, Enum):
    SUSPICION_LEVEL = "SUSPICION_LEVEL"
    FLAG_THRESHOLD = "FLAG_THRESHOLD"
    INSIDER_THRESHOLD = "INSIDER_THRESHOLD"
    SIGNAL_THRESHOLD = "SIGNAL_THRESHOLD"
    CATEGORY_THRESHOLD = "CATEGORY_THRESHOLD"


class AdjustmentDirection(str, Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    NONE = "NONE"


class AdjustmentReason(str, Enum):
    REGIME_CHANGE = "REGIME_CHANGE"
    METRIC_THRESHOLD = "METRIC_THRESHOLD"
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    INITIALIZATION = "INITIALIZATION"
    RESET = "RESET"
    ADAPTIVE = "ADAPTIVE"


@dataclass(frozen=True)
class MetricSnapshot:
    """One metric observation compared against its rolling history."""

    metric: ConditionMetric
    value: float
    historical_average: float
    standard_deviation: float
    percentile_rank: float
    z_score: float
    is_anomalous: bool
    measured_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "metric": self.metric.value,
            "value": self.value,
            "historical_average": self.historical_average,
            "standard_deviation": self.standard_deviation,
            "percentile_rank": self.percentile_rank,
            "z_score": self.z_score,
            "is_anomalous": self.is_anomalous,
            "measured_at": self.measured_at.isoformat(),
        }


@dataclass(frozen=True)
class MarketConditions:
    regime: MarketRegime
    metrics: dict[ConditionMetric, MetricSnapshot]
    health_score: int
    is_unusual: bool
    confidence: float
    measured_at: datetime
    period_minutes: float

    def z_score(self, metric: ConditionMetric) -> float:
        snapshot = self.metrics.get(metric)
        return snapshot.z_score if snapshot is not None else 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "regime": self.regime.value,
            "metrics": {m.value: s.to_dict() for m, s in self.metrics.items()},
            "health_score": self.health_score,
            "is_unusual": self.is_unusual,
            "confidence": self.confidence,
            "measured_at": self.measured_at.isoformat(),
            "period_minutes": self.period_minutes,
        }


@dataclass(frozen=True)
class SuspicionThresholds:
    """Lower bounds of the LOW/MEDIUM/HIGH/CRITICAL bands."""

    low: float = 20.0
    medium: float = 40.0
    high: float = 60.0
    critical: float = 80.0

    def is_ordered(self) -> bool:
        return self.low < self.medium < self.high < self.critical

    def classify(self, score: float) -> SuspicionLevel:
        if score >= self.critical:
            return SuspicionLevel.CRITICAL
        if score >= self.high:
            return SuspicionLevel.HIGH
        if score >= self.medium:
            return SuspicionLevel.MEDIUM
        if score >= self.low:
            return SuspicionLevel.LOW
        return SuspicionLevel.NONE


SUSPICION_LEVEL_KEYS = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class ThresholdConfig:
    """Thresholds used to interpret composite scores.

    Multiplier maps only hold overridden entries; a missing key means 1.0.
    """

    suspicion: SuspicionThresholds = SuspicionThresholds()
    flag_threshold: float = 50.0
    insider_threshold: float = 70.0
    signal_multipliers: dict[SignalSource, float] = field(default_factory=dict)
    category_multipliers: dict[SignalCategory, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the persisted JSON key names."""
        return {
            "suspicionThresholds": dataclasses.asdict(self.suspicion),
            "flagThreshold": self.flag_threshold,
            "insiderThreshold": self.insider_threshold,
            "signalMultipliers": {k.value: v for k, v in self.signal_multipliers.items()},
            "categoryMultipliers": {k.value: v for k, v in self.category_multipliers.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: ThresholdConfig) -> ThresholdConfig:
        """Parse a persisted document, falling back to ``defaults`` for missing keys.

        Raises:
            ValueError: If a value has the wrong type or an unknown key.
        """
        if not isinstance(data, dict):
            raise ValueError("currentThresholds must be an object")
        suspicion = defaults.suspicion
        raw_suspicion = data.get("suspicionThresholds")
        if raw_suspicion is not None:
            if not isinstance(raw_suspicion, dict):
                raise ValueError("suspicionThresholds must be an object")
            suspicion = dataclasses.replace(
                suspicion,
                **{
                    key: float(raw_suspicion[key])
                    for key in SUSPICION_LEVEL_KEYS
                    if key in raw_suspicion
                },
            )
        return cls(
            suspicion=suspicion,
            flag_threshold=float(data.get("flagThreshold", defaults.flag_threshold)),
            insider_threshold=float(data.get("insiderThreshold", defaults.insider_threshold)),
            signal_multipliers=_parse_multipliers(
                data.get("signalMultipliers"), SignalSource, defaults.signal_multipliers
            ),
            category_multipliers=_parse_multipliers(
                data.get("categoryMultipliers"), SignalCategory, defaults.category_multipliers
            ),
        )


def _parse_multipliers(raw: Any, key_type: type[Enum], defaults: dict[Any, float]) -> dict:
    if raw is None:
        return dict(defaults)
    if not isinstance(raw, dict):
        raise ValueError("multipliers must be an object")
    return {key_type(k): float(v) for k, v in raw.items()}


@dataclass(frozen=True)
class AdjustmentRule:
    """A rule that nudges a threshold when market metrics move.

    Positive ``trigger_z_score`` fires when a metric's z-score is at or
    above it; negative fires at or below.
    """

    name: str
    description: str
    trigger_metrics: tuple[ConditionMetric, ...]
    trigger_z_score: float
    target_threshold: ThresholdType
    adjustment_percent: float
    min_adjustment: float
    max_adjustment: float
    enabled: bool = True
    priority: int = 0
    target_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "triggerMetrics": [m.value for m in self.trigger_metrics],
            "triggerZScore": self.trigger_z_score,
            "targetThreshold": self.target_threshold.value,
            "adjustmentPercent": self.adjustment_percent,
            "minAdjustment": self.min_adjustment,
            "maxAdjustment": self.max_adjustment,
            "enabled": self.enabled,
            "priority": self.priority,
        }
        if self.target_key is not None:
            data["targetKey"] = self.target_key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AdjustmentRule:
        """Raises KeyError/ValueError on a malformed rule."""
        if not isinstance(data, dict):
            raise ValueError("rule must be an object")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            trigger_metrics=tuple(ConditionMetric(m) for m in data["triggerMetrics"]),
            trigger_z_score=float(data["triggerZScore"]),
            target_threshold=ThresholdType(data["targetThreshold"]),
            adjustment_percent=float(data["adjustmentPercent"]),
            min_adjustment=float(data.get("minAdjustment", 0.0)),
            max_adjustment=float(data.get("maxAdjustment", float("inf"))),
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 0)),
            target_key=data.get("targetKey"),
        )


@dataclass(frozen=True)
class ThresholdAdjustment:
    id: str
    threshold_type: ThresholdType
    threshold_key: str | None
    previous_value: float
    new_value: float
    direction: AdjustmentDirection
    percentage_change: float
    reason: AdjustmentReason
    triggered_by: str
    adjusted_at: datetime
    regime: MarketRegime
    notes: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "threshold_type": self.threshold_type.value,
            "threshold_key": self.threshold_key,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "direction": self.direction.value,
            "percentage_change": self.percentage_change,
            "reason": self.reason.value,
            "triggered_by": self.triggered_by,
            "adjusted_at": self.adjusted_at.isoformat(),
            "regime": self.regime.value,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class RegimeChange:
    previous_regime: MarketRegime
    new_regime: MarketRegime
    confidence: float
    triggering_metrics: tuple[ConditionMetric, ...]
    detected_at: datetime
    previous_regime_duration_minutes: float


@dataclass(frozen=True)
class RulesStatus:
    total: int
    enabled: int
    triggered_count: int


@dataclass(frozen=True)
class AdjusterSummary:
    current_regime: MarketRegime
    regime_duration_minutes: int
    total_adjustments: int
    adjustments_by_reason: dict[AdjustmentReason, int]
    adjustments_by_type: dict[ThresholdType, int]
    current_thresholds: ThresholdConfig
    deviation_from_defaults: dict[str, float]
    last_conditions: MarketConditions | None
    last_adjustment: ThresholdAdjustment | None
    auto_adjust_enabled: bool
    rules_status: RulesStatus
