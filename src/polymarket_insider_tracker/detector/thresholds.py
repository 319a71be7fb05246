"""Market-aware threshold adjustment.

This module provides the DynamicThresholdAdjuster class that tracks rolling
statistics for market-condition metrics, classifies the current market
regime and nudges the composite scorer's thresholds through prioritized
adjustment rules. Adjusted thresholds never drift further from their
defaults than the configured maximum; manual overrides are exempt.

The adjuster is not thread-safe. Callers serialize updates.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
import uuid
from collections import Counter, deque
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import numpy as np

from polymarket_insider_tracker.detector.models import (
    SUSPICION_LEVEL_KEYS,
    AdjusterSummary,
    AdjustmentDirection,
    AdjustmentReason,
    AdjustmentRule,
    ConditionMetric,
    MarketConditions,
    MarketRegime,
    MetricSnapshot,
    RegimeChange,
    RulesStatus,
    SignalCategory,
    SignalSource,
    SuspicionLevel,
    ThresholdAdjustment,
    ThresholdConfig,
    ThresholdType,
)
from polymarket_insider_tracker.events import EventEmitter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_ADJUSTMENT_INTERVAL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_TOTAL_ADJUSTMENT_PERCENT = 50.0
DEFAULT_REGIME_SENSITIVITY = 0.7
DEFAULT_HISTORICAL_WINDOW_MINUTES = 1440  # 24 hours
DEFAULT_MAX_HISTORY_SIZE = 1000

# Metric statistics
ANOMALY_Z_SCORE = 2.0
HEALTHY_Z_SCORE = 1.5

# Regime detection
EXTREME_Z_SCORE = 3.0
EXTREME_METRIC_COUNT = 2
HIGH_VOLATILITY_Z_SCORE = 2.0
LOW_VOLATILITY_Z_SCORE = -1.5
ACTIVITY_Z_SCORE = 1.5
SENTIMENT_Z_SCORE = 1.5

# Multiplier bounds
AUTO_MIN_MULTIPLIER = 0.5
AUTO_MAX_MULTIPLIER = 2.0
MANUAL_MIN_MULTIPLIER = 0.1
MANUAL_MAX_MULTIPLIER = 5.0

ALL_THRESHOLDS_KEY = "all"

# Thresholds, rules, regime and auto-adjust flag parsed from a saved document
_ParsedDocument = tuple[
    ThresholdConfig, list[AdjustmentRule] | None, MarketRegime | None, bool | None
]

DEFAULT_RULES: tuple[AdjustmentRule, ...] = (
    AdjustmentRule(
        name="High Volume Increase",
        description="Increase thresholds during high volume periods to reduce noise",
        trigger_metrics=(ConditionMetric.VOLUME,),
        trigger_z_score=2.0,
        target_threshold=ThresholdType.SUSPICION_LEVEL,
        adjustment_percent=10.0,
        min_adjustment=2.0,
        max_adjustment=15.0,
        priority=10,
    ),
    AdjustmentRule(
        name="Low Activity Decrease",
        description="Decrease thresholds during low activity to catch subtle patterns",
        trigger_metrics=(ConditionMetric.ACTIVE_TRADERS, ConditionMetric.VOLUME),
        trigger_z_score=-1.5,
        target_threshold=ThresholdType.SUSPICION_LEVEL,
        adjustment_percent=-10.0,
        min_adjustment=2.0,
        max_adjustment=10.0,
        priority=9,
    ),
    AdjustmentRule(
        name="High Volatility Flag Increase",
        description="Increase flag threshold during volatile periods",
        trigger_metrics=(ConditionMetric.VOLATILITY,),
        trigger_z_score=2.5,
        target_threshold=ThresholdType.FLAG_THRESHOLD,
        adjustment_percent=15.0,
        min_adjustment=3.0,
        max_adjustment=20.0,
        priority=8,
    ),
    AdjustmentRule(
        name="Fresh Wallet Surge",
        description="Increase fresh wallet signal sensitivity during surge",
        trigger_metrics=(ConditionMetric.FRESH_WALLET_ACTIVITY,),
        trigger_z_score=2.0,
        target_threshold=ThresholdType.SIGNAL_THRESHOLD,
        target_key=SignalSource.FRESH_WALLET.value,
        adjustment_percent=-15.0,
        min_adjustment=2.0,
        max_adjustment=15.0,
        priority=7,
    ),
    AdjustmentRule(
        name="Extreme Conditions",
        description="Conservative thresholds during extreme market conditions",
        trigger_metrics=(ConditionMetric.VOLUME, ConditionMetric.VOLATILITY),
        trigger_z_score=3.0,
        target_threshold=ThresholdType.INSIDER_THRESHOLD,
        adjustment_percent=10.0,
        min_adjustment=5.0,
        max_adjustment=15.0,
        priority=15,
    ),
    AdjustmentRule(
        name="Low Liquidity Alert",
        description="Increase sensitivity when liquidity is low",
        trigger_metrics=(ConditionMetric.LIQUIDITY,),
        trigger_z_score=-2.0,
        target_threshold=ThresholdType.FLAG_THRESHOLD,
        adjustment_percent=-10.0,
        min_adjustment=2.0,
        max_adjustment=10.0,
        priority=6,
    ),
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _copy_config(config: ThresholdConfig) -> ThresholdConfig:
    return dataclasses.replace(
        config,
        signal_multipliers=dict(config.signal_multipliers),
        category_multipliers=dict(config.category_multipliers),
    )


def _is_valid_threshold(value: float) -> bool:
    return math.isfinite(value) and 0 <= value <= 100


def _is_valid_multiplier(value: float) -> bool:
    return math.isfinite(value) and MANUAL_MIN_MULTIPLIER <= value <= MANUAL_MAX_MULTIPLIER


def _to_float(value: float) -> float:
    try:
        return float(value)
    except OverflowError:
        # Integers beyond float range saturate.
        return math.inf if value > 0 else -math.inf


def _percent_change(previous: float, new: float) -> float:
    if previous == 0:
        return 0.0
    return round((new - previous) / previous * 100, 2)


class DynamicThresholdAdjuster:
    """Adapts suspicion thresholds to prevailing market conditions.

    Each call to ``update_market_conditions`` compares the new metric values
    against their rolling history (z-scores), classifies the market regime
    and, when auto-adjustment is on, runs the enabled rules in descending
    priority. A rule fires when any of its trigger metrics crosses its
    z-score trigger (at or above a positive trigger, at or below a negative
    one). Each threshold type then stays untouched for the cooldown interval.

    Adjustment Formula:
        delta = current * adjustment_percent / 100
        |delta| clamped to [min_adjustment, max_adjustment]
        new = clamp(current + delta, default * (1 - max_total%), default * (1 + max_total%))
        new rounded to 0.1

    Events:
        regime-change, conditions-updated, threshold-adjusted, thresholds-reset,
        rule-added, rule-removed, rule-updated, auto-adjust-changed,
        config-saved, config-loaded, config-imported, save-error, load-error,
        import-error

    Example:
        ```python
        adjuster = DynamicThresholdAdjuster(settings_path="data/thresholds.json")
        adjuster.events.on("threshold-adjusted", lambda adj: print(adj.new_value))

        conditions = adjuster.update_market_conditions({
            ConditionMetric.VOLUME: 1_250_000,
            ConditionMetric.VOLATILITY: 0.08,
        })
        level = adjuster.classify_score(result.composite_score)
        ```
    """

    def __init__(
        self,
        *,
        thresholds: ThresholdConfig | None = None,
        rules: Iterable[AdjustmentRule] | None = None,
        auto_adjust_enabled: bool = True,
        min_adjustment_interval_seconds: float = DEFAULT_MIN_ADJUSTMENT_INTERVAL_SECONDS,
        max_total_adjustment_percent: float = DEFAULT_MAX_TOTAL_ADJUSTMENT_PERCENT,
        regime_sensitivity: float = DEFAULT_REGIME_SENSITIVITY,
        historical_window_minutes: float = DEFAULT_HISTORICAL_WINDOW_MINUTES,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        settings_path: str | Path | None = None,
        auto_save: bool = False,
        log_all_changes: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the threshold adjuster.

        Args:
            thresholds: Default thresholds; current thresholds start here.
            rules: Adjustment rules (default: DEFAULT_RULES).
            auto_adjust_enabled: Run rules on every conditions update.
            min_adjustment_interval_seconds: Cooldown per threshold type.
            max_total_adjustment_percent: Maximum drift from defaults for
                automatic adjustments.
            regime_sensitivity: Confidence reported on regime changes.
            historical_window_minutes: Age limit for metric history.
            max_history_size: Bound on metric, adjustment and regime history.
            settings_path: JSON file used by save/load when no path is given.
            auto_save: Save after every adjustment (requires settings_path).
            log_all_changes: Log every threshold change at INFO.
            clock: Returns the current UTC time. Injectable for tests.
        """
        self._defaults = _copy_config(thresholds or ThresholdConfig())
        self._current = _copy_config(self._defaults)
        self._rules: list[AdjustmentRule] = list(DEFAULT_RULES if rules is None else rules)
        self._auto_adjust_enabled = auto_adjust_enabled
        self._min_interval = timedelta(seconds=min_adjustment_interval_seconds)
        self._max_total_percent = max_total_adjustment_percent
        self._regime_sensitivity = regime_sensitivity
        self._window = timedelta(minutes=historical_window_minutes)
        self._max_history_size = max_history_size
        self._settings_path = Path(settings_path) if settings_path else None
        self._auto_save = auto_save
        self._log_all_changes = log_all_changes
        self._clock = clock or _utcnow

        self._metric_history: dict[ConditionMetric, deque[tuple[datetime, float]]] = {}
        self._last_snapshots: dict[ConditionMetric, MetricSnapshot] = {}
        self._last_conditions: MarketConditions | None = None
        self._regime = MarketRegime.NORMAL
        self._regime_since = self._clock()
        self._adjustments: deque[ThresholdAdjustment] = deque(maxlen=max_history_size)
        self._regime_changes: deque[RegimeChange] = deque(maxlen=max_history_size)
        self._last_adjusted: dict[ThresholdType, datetime] = {}
        self._rule_triggers: Counter[str] = Counter()
        self.events = EventEmitter()

    # === Market conditions ===

    def update_market_conditions(
        self, metrics: Mapping[ConditionMetric | str, float]
    ) -> MarketConditions:
        """Record new metric values and re-evaluate regime and thresholds.

        Metrics not supplied keep their last snapshot. Degenerate values
        (NaN, negative, huge) are recorded as-is.

        Returns:
            The new market conditions snapshot.

        Raises:
            ValueError: If a metric name is unknown. Nothing is recorded.
        """
        parsed = {ConditionMetric(metric): _to_float(value) for metric, value in metrics.items()}
        now = self._clock()
        for metric, value in parsed.items():
            self._last_snapshots[metric] = self._record_metric(metric, value, now)

        snapshots = {
            metric: self._last_snapshots.get(metric) or self._zero_snapshot(metric, now)
            for metric in ConditionMetric
        }
        regime = self._detect_regime(snapshots)
        anomalous = tuple(m for m, s in snapshots.items() if s.is_anomalous)

        healthy = sum(1 for s in snapshots.values() if abs(s.z_score) < HEALTHY_Z_SCORE)
        with_history = sum(1 for s in snapshots.values() if s.standard_deviation > 0)
        conditions = MarketConditions(
            regime=regime,
            metrics=snapshots,
            health_score=round(healthy / len(snapshots) * 100),
            is_unusual=regime != MarketRegime.NORMAL or bool(anomalous),
            confidence=with_history / len(snapshots),
            measured_at=now,
            period_minutes=self._window.total_seconds() / 60,
        )

        if regime != self._regime:
            self._change_regime(regime, anomalous, now)

        self._last_conditions = conditions
        if self._auto_adjust_enabled:
            self._apply_rules(conditions)

        self.events.emit("conditions-updated", conditions)
        return conditions

    def _record_metric(
        self, metric: ConditionMetric, value: float, now: datetime
    ) -> MetricSnapshot:
        history = self._metric_history.setdefault(
            metric, deque(maxlen=self._max_history_size)
        )
        cutoff = now - self._window
        while history and history[0][0] < cutoff:
            history.popleft()

        values = np.array([v for _, v in history], dtype=float)
        with np.errstate(invalid="ignore", over="ignore"):
            if len(values):
                mean = float(values.mean())
                std = float(values.std(ddof=1)) if len(values) > 1 else 0.0
                percentile = float((values < value).sum()) / len(values) * 100
            else:
                mean, std, percentile = value, 0.0, 50.0
            z_score = (value - mean) / std if std > 0 else 0.0

        history.append((now, value))
        return MetricSnapshot(
            metric=metric,
            value=value,
            historical_average=mean,
            standard_deviation=std,
            percentile_rank=percentile,
            z_score=z_score,
            is_anomalous=abs(z_score) > ANOMALY_Z_SCORE,
            measured_at=now,
        )

    @staticmethod
    def _zero_snapshot(metric: ConditionMetric, now: datetime) -> MetricSnapshot:
        return MetricSnapshot(
            metric=metric,
            value=0.0,
            historical_average=0.0,
            standard_deviation=0.0,
            percentile_rank=50.0,
            z_score=0.0,
            is_anomalous=False,
            measured_at=now,
        )

    @staticmethod
    def _detect_regime(snapshots: Mapping[ConditionMetric, MetricSnapshot]) -> MarketRegime:
        """Classify the market. Checks run in order; the first match wins."""
        z = {metric: snapshot.z_score for metric, snapshot in snapshots.items()}

        if sum(1 for v in z.values() if abs(v) >= EXTREME_Z_SCORE) >= EXTREME_METRIC_COUNT:
            return MarketRegime.EXTREME

        volatility = z[ConditionMetric.VOLATILITY]
        if volatility >= HIGH_VOLATILITY_Z_SCORE:
            return MarketRegime.HIGH_VOLATILITY
        if volatility <= LOW_VOLATILITY_Z_SCORE:
            return MarketRegime.LOW_VOLATILITY

        activity = (z[ConditionMetric.VOLUME] + z[ConditionMetric.ACTIVE_TRADERS]) / 2
        if activity >= ACTIVITY_Z_SCORE:
            return MarketRegime.HIGH_ACTIVITY
        if activity <= -ACTIVITY_Z_SCORE:
            return MarketRegime.LOW_ACTIVITY

        sentiment = z[ConditionMetric.SENTIMENT]
        if sentiment >= SENTIMENT_Z_SCORE:
            return MarketRegime.BULL_MARKET
        if sentiment <= -SENTIMENT_Z_SCORE:
            return MarketRegime.BEAR_MARKET

        return MarketRegime.NORMAL

    def _change_regime(
        self,
        regime: MarketRegime,
        triggering: tuple[ConditionMetric, ...],
        now: datetime,
    ) -> None:
        change = RegimeChange(
            previous_regime=self._regime,
            new_regime=regime,
            confidence=self._regime_sensitivity,
            triggering_metrics=triggering,
            detected_at=now,
            previous_regime_duration_minutes=(now - self._regime_since).total_seconds() / 60,
        )
        self._regime_changes.append(change)
        self._regime = regime
        self._regime_since = now
        logger.info(
            "Market regime changed: %s -> %s (triggers: %s)",
            change.previous_regime.value,
            regime.value,
            [m.value for m in triggering],
        )
        self.events.emit("regime-change", change)

    # === Rules ===

    def _apply_rules(self, conditions: MarketConditions) -> None:
        now = conditions.measured_at
        rules = sorted(
            (r for r in self._rules if r.enabled), key=lambda r: r.priority, reverse=True
        )
        for rule in rules:
            if not self._rule_fires(rule, conditions):
                continue
            last = self._last_adjusted.get(rule.target_threshold)
            if last is not None and now - last < self._min_interval:
                logger.debug(
                    "Rule %s skipped, %s in cooldown", rule.name, rule.target_threshold.value
                )
                continue
            self._rule_triggers[rule.name] += 1
            if self._apply_rule(rule, now):
                self._last_adjusted[rule.target_threshold] = now

    @staticmethod
    def _rule_fires(rule: AdjustmentRule, conditions: MarketConditions) -> bool:
        for metric in rule.trigger_metrics:
            z = conditions.z_score(metric)
            if rule.trigger_z_score >= 0 and z >= rule.trigger_z_score:
                return True
            if rule.trigger_z_score < 0 and z <= rule.trigger_z_score:
                return True
        return False

    def _apply_rule(self, rule: AdjustmentRule, now: datetime) -> bool:
        """Apply one rule. Returns True if any threshold changed."""
        triggered_by = f"Rule: {rule.name}"
        target = rule.target_threshold
        current = self._current

        if target == ThresholdType.SUSPICION_LEVEL:
            keys = (rule.target_key,) if rule.target_key else SUSPICION_LEVEL_KEYS
            if any(key not in SUSPICION_LEVEL_KEYS for key in keys):
                logger.warning("Rule %s targets unknown level %s", rule.name, rule.target_key)
                return False
            updates = {
                key: self._adjusted_value(
                    getattr(current.suspicion, key),
                    getattr(self._defaults.suspicion, key),
                    rule,
                )
                for key in keys
            }
            candidate = dataclasses.replace(current.suspicion, **updates)
            if not candidate.is_ordered():
                logger.debug("Rule %s skipped, levels would overlap", rule.name)
                return False
            self._current = dataclasses.replace(current, suspicion=candidate)
            changed = False
            for key, value in updates.items():
                previous = getattr(current.suspicion, key)
                if value != previous:
                    self._record(target, key, previous, value, AdjustmentReason.METRIC_THRESHOLD,
                                 triggered_by, notes=rule.description)
                    changed = True
            return changed

        if target in (ThresholdType.FLAG_THRESHOLD, ThresholdType.INSIDER_THRESHOLD):
            if target == ThresholdType.FLAG_THRESHOLD:
                attr = "flag_threshold"
            else:
                attr = "insider_threshold"
            previous = getattr(current, attr)
            value = self._adjusted_value(previous, getattr(self._defaults, attr), rule)
            if value == previous:
                return False
            self._current = dataclasses.replace(current, **{attr: value})
            self._record(target, None, previous, value, AdjustmentReason.METRIC_THRESHOLD,
                         triggered_by, notes=rule.description)
            return True

        try:
            if target == ThresholdType.SIGNAL_THRESHOLD:
                key: Any = SignalSource(rule.target_key)
                multipliers = dict(current.signal_multipliers)
            else:
                key = SignalCategory(rule.target_key)
                multipliers = dict(current.category_multipliers)
        except ValueError:
            logger.warning("Rule %s targets unknown key %s", rule.name, rule.target_key)
            return False

        previous = multipliers.get(key, 1.0)
        value = round(
            max(
                AUTO_MIN_MULTIPLIER,
                min(AUTO_MAX_MULTIPLIER, previous * (1 + rule.adjustment_percent / 100)),
            ),
            2,
        )
        if value == previous:
            return False
        multipliers[key] = value
        if target == ThresholdType.SIGNAL_THRESHOLD:
            self._current = dataclasses.replace(current, signal_multipliers=multipliers)
        else:
            self._current = dataclasses.replace(current, category_multipliers=multipliers)
        self._record(target, key.value, previous, value, AdjustmentReason.METRIC_THRESHOLD,
                     triggered_by, notes=rule.description)
        return True

    def _adjusted_value(self, current: float, default: float, rule: AdjustmentRule) -> float:
        if rule.adjustment_percent == 0:
            return current
        delta = current * rule.adjustment_percent / 100
        magnitude = min(max(abs(delta), rule.min_adjustment), rule.max_adjustment)
        value = current + math.copysign(magnitude, rule.adjustment_percent)

        cap = self._max_total_percent / 100
        low, high = default * (1 - cap), default * (1 + cap)
        return max(low, min(high, round(max(low, min(high, value)), 1)))

    def add_rule(self, rule: AdjustmentRule) -> bool:
        """Add a rule. Returns False if a rule with the same name exists."""
        if any(r.name == rule.name for r in self._rules):
            return False
        self._rules.append(rule)
        self.events.emit("rule-added", rule)
        return True

    def remove_rule(self, name: str) -> bool:
        for index, rule in enumerate(self._rules):
            if rule.name == name:
                del self._rules[index]
                self._rule_triggers.pop(name, None)
                self.events.emit("rule-removed", rule)
                return True
        return False

    def set_rule_enabled(self, name: str, enabled: bool) -> bool:
        for index, rule in enumerate(self._rules):
            if rule.name == name:
                updated = dataclasses.replace(rule, enabled=enabled)
                self._rules[index] = updated
                self.events.emit("rule-updated", updated)
                return True
        return False

    def get_rules(self) -> list[AdjustmentRule]:
        """Rules in descending priority order."""
        return sorted(self._rules, key=lambda r: r.priority, reverse=True)

    def set_auto_adjust_enabled(self, enabled: bool) -> None:
        if enabled == self._auto_adjust_enabled:
            return
        self._auto_adjust_enabled = enabled
        logger.info("Automatic threshold adjustment %s", "enabled" if enabled else "disabled")
        self.events.emit("auto-adjust-changed", enabled)

    def is_auto_adjust_enabled(self) -> bool:
        return self._auto_adjust_enabled

    # === Thresholds ===

    def get_current_thresholds(self) -> ThresholdConfig:
        return _copy_config(self._current)

    def get_default_thresholds(self) -> ThresholdConfig:
        return _copy_config(self._defaults)

    def get_flag_threshold(self) -> float:
        return self._current.flag_threshold

    def get_insider_threshold(self) -> float:
        return self._current.insider_threshold

    def get_suspicion_thresholds(self) -> dict[str, float]:
        return dataclasses.asdict(self._current.suspicion)

    def get_signal_multiplier(self, source: SignalSource) -> float:
        return self._current.signal_multipliers.get(source, 1.0)

    def get_category_multiplier(self, category: SignalCategory) -> float:
        return self._current.category_multipliers.get(category, 1.0)

    def get_effective_threshold(self, level: SuspicionLevel) -> float:
        """Lower bound of ``level``'s band (0 for NONE)."""
        if level == SuspicionLevel.NONE:
            return 0.0
        return float(getattr(self._current.suspicion, level.value.lower()))

    def classify_score(self, score: float) -> SuspicionLevel:
        return self._current.suspicion.classify(score)

    def set_suspicion_threshold(
        self, level: SuspicionLevel | str, value: float, *, triggered_by: str = "manual"
    ) -> bool:
        """Override one suspicion level bound.

        Returns:
            False if the level is unknown, the value is outside 0-100 or the
            levels would no longer be strictly ordered.
        """
        key = (level.value if isinstance(level, SuspicionLevel) else str(level)).lower()
        if key not in SUSPICION_LEVEL_KEYS or not _is_valid_threshold(value):
            logger.warning("Rejected suspicion threshold %s=%s", key, value)
            return False
        candidate = dataclasses.replace(self._current.suspicion, **{key: float(value)})
        if not candidate.is_ordered():
            logger.warning("Rejected suspicion threshold %s=%s, levels would overlap", key, value)
            return False
        previous = getattr(self._current.suspicion, key)
        if previous == value:
            return True
        self._current = dataclasses.replace(self._current, suspicion=candidate)
        self._record(ThresholdType.SUSPICION_LEVEL, key, previous, float(value),
                     AdjustmentReason.MANUAL, triggered_by,
                     notes=f"Manual override of {key} suspicion threshold")
        return True

    def set_flag_threshold(self, value: float, *, triggered_by: str = "manual") -> bool:
        return self._set_score_threshold(ThresholdType.FLAG_THRESHOLD, "flag_threshold",
                                         value, triggered_by, "flag threshold")

    def set_insider_threshold(self, value: float, *, triggered_by: str = "manual") -> bool:
        return self._set_score_threshold(ThresholdType.INSIDER_THRESHOLD, "insider_threshold",
                                         value, triggered_by, "insider threshold")

    def _set_score_threshold(
        self, threshold_type: ThresholdType, attr: str, value: float, triggered_by: str, label: str
    ) -> bool:
        if not _is_valid_threshold(value):
            logger.warning("Rejected %s %s", label, value)
            return False
        previous = getattr(self._current, attr)
        if previous == value:
            return True
        self._current = dataclasses.replace(self._current, **{attr: float(value)})
        self._record(threshold_type, None, previous, float(value), AdjustmentReason.MANUAL,
                     triggered_by, notes=f"Manual override of {label}")
        return True

    def set_signal_multiplier(
        self, source: SignalSource, value: float, *, triggered_by: str = "manual"
    ) -> bool:
        if not _is_valid_multiplier(value):
            logger.warning("Rejected signal multiplier %s=%s", source.value, value)
            return False
        previous = self.get_signal_multiplier(source)
        if previous == value:
            return True
        multipliers = {**self._current.signal_multipliers, source: float(value)}
        self._current = dataclasses.replace(self._current, signal_multipliers=multipliers)
        self._record(ThresholdType.SIGNAL_THRESHOLD, source.value, previous, float(value),
                     AdjustmentReason.MANUAL, triggered_by,
                     notes=f"Manual override of {source.value} signal multiplier")
        return True

    def set_category_multiplier(
        self, category: SignalCategory, value: float, *, triggered_by: str = "manual"
    ) -> bool:
        if not _is_valid_multiplier(value):
            logger.warning("Rejected category multiplier %s=%s", category.value, value)
            return False
        previous = self.get_category_multiplier(category)
        if previous == value:
            return True
        multipliers = {**self._current.category_multipliers, category: float(value)}
        self._current = dataclasses.replace(self._current, category_multipliers=multipliers)
        self._record(ThresholdType.CATEGORY_THRESHOLD, category.value, previous, float(value),
                     AdjustmentReason.MANUAL, triggered_by,
                     notes=f"Manual override of {category.value} category multiplier")
        return True

    def reset_to_defaults(self, *, triggered_by: str = "manual") -> None:
        self._current = _copy_config(self._defaults)
        self._last_adjusted.clear()
        self._record(ThresholdType.SUSPICION_LEVEL, ALL_THRESHOLDS_KEY, 0.0, 0.0,
                     AdjustmentReason.RESET, triggered_by,
                     notes="All thresholds reset to defaults", announce=False)
        logger.info("Thresholds reset to defaults")
        self.events.emit("thresholds-reset", self.get_current_thresholds())

    def get_deviation_from_defaults(self) -> dict[str, float]:
        """Percent deviation of each current threshold from its default."""

        def deviation(current: float, default: float) -> float:
            return round((current - default) / default * 100, 1) if default else 0.0

        result = {
            f"suspicion.{key}": deviation(
                getattr(self._current.suspicion, key), getattr(self._defaults.suspicion, key)
            )
            for key in SUSPICION_LEVEL_KEYS
        }
        result["flag_threshold"] = deviation(
            self._current.flag_threshold, self._defaults.flag_threshold
        )
        result["insider_threshold"] = deviation(
            self._current.insider_threshold, self._defaults.insider_threshold
        )
        for source in SignalSource:
            result[f"signal.{source.value}"] = deviation(
                self.get_signal_multiplier(source),
                self._defaults.signal_multipliers.get(source, 1.0),
            )
        for category in SignalCategory:
            result[f"category.{category.value}"] = deviation(
                self.get_category_multiplier(category),
                self._defaults.category_multipliers.get(category, 1.0),
            )
        return result

    def _record(
        self,
        threshold_type: ThresholdType,
        key: str | None,
        previous: float,
        new: float,
        reason: AdjustmentReason,
        triggered_by: str,
        *,
        notes: str | None = None,
        announce: bool = True,
    ) -> ThresholdAdjustment:
        now = self._clock()
        if new > previous:
            direction = AdjustmentDirection.INCREASE
        elif new < previous:
            direction = AdjustmentDirection.DECREASE
        else:
            direction = AdjustmentDirection.NONE

        adjustment = ThresholdAdjustment(
            id=f"adj_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}",
            threshold_type=threshold_type,
            threshold_key=key,
            previous_value=previous,
            new_value=new,
            direction=direction,
            percentage_change=_percent_change(previous, new),
            reason=reason,
            triggered_by=triggered_by,
            adjusted_at=now,
            regime=self._regime,
            notes=notes,
        )
        self._adjustments.append(adjustment)
        if not announce:
            return adjustment

        if self._log_all_changes:
            logger.info(
                "Threshold adjusted: %s%s %.2f -> %.2f (%s, %s)",
                threshold_type.value,
                f"[{key}]" if key else "",
                previous,
                new,
                reason.value,
                triggered_by,
            )
        self.events.emit("threshold-adjusted", adjustment)
        if self._auto_save and self._settings_path is not None:
            self.save_to_file()
        return adjustment

    # === History and state ===

    def get_current_regime(self) -> MarketRegime:
        return self._regime

    def get_last_conditions(self) -> MarketConditions | None:
        return self._last_conditions

    def get_adjustment_history(self, limit: int | None = None) -> list[ThresholdAdjustment]:
        """Adjustments, newest first."""
        history = list(reversed(self._adjustments))
        return history[:limit] if limit is not None else history

    def get_regime_history(self, limit: int | None = None) -> list[RegimeChange]:
        """Regime changes, newest first."""
        history = list(reversed(self._regime_changes))
        return history[:limit] if limit is not None else history

    def clear_history(self) -> None:
        self._adjustments.clear()
        self._regime_changes.clear()
        self._metric_history.clear()
        self._last_snapshots.clear()
        self._rule_triggers.clear()
        self.events.emit("history-cleared")

    def get_summary(self) -> AdjusterSummary:
        by_reason = {reason: 0 for reason in AdjustmentReason}
        by_type = {threshold_type: 0 for threshold_type in ThresholdType}
        for adjustment in self._adjustments:
            by_reason[adjustment.reason] += 1
            by_type[adjustment.threshold_type] += 1

        return AdjusterSummary(
            current_regime=self._regime,
            regime_duration_minutes=round(
                (self._clock() - self._regime_since).total_seconds() / 60
            ),
            total_adjustments=len(self._adjustments),
            adjustments_by_reason=by_reason,
            adjustments_by_type=by_type,
            current_thresholds=self.get_current_thresholds(),
            deviation_from_defaults=self.get_deviation_from_defaults(),
            last_conditions=self._last_conditions,
            last_adjustment=self._adjustments[-1] if self._adjustments else None,
            auto_adjust_enabled=self._auto_adjust_enabled,
            rules_status=RulesStatus(
                total=len(self._rules),
                enabled=sum(1 for r in self._rules if r.enabled),
                triggered_count=sum(self._rule_triggers.values()),
            ),
        )

    # === Persistence ===

    def _document(self) -> dict[str, Any]:
        return {
            "currentThresholds": self._current.to_dict(),
            "currentRegime": self._regime.value,
            "autoAdjustEnabled": self._auto_adjust_enabled,
            "rules": [rule.to_dict() for rule in self._rules],
        }

    def _parse_document(self, data: Any) -> _ParsedDocument:
        """Validate a persisted document without touching state.

        Raises:
            ValueError, KeyError, TypeError: If the document is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("config document must be a JSON object")

        thresholds = ThresholdConfig.from_dict(data.get("currentThresholds", {}), self._defaults)
        suspicion = thresholds.suspicion
        levels = [getattr(suspicion, key) for key in SUSPICION_LEVEL_KEYS]
        if not all(_is_valid_threshold(v) for v in levels) or not suspicion.is_ordered():
            raise ValueError(f"invalid suspicion thresholds: {levels}")
        for value in (thresholds.flag_threshold, thresholds.insider_threshold):
            if not _is_valid_threshold(value):
                raise ValueError(f"threshold out of range: {value}")
        multipliers = [
            *thresholds.signal_multipliers.values(),
            *thresholds.category_multipliers.values(),
        ]
        if not all(_is_valid_multiplier(v) for v in multipliers):
            raise ValueError(f"multiplier out of range: {multipliers}")

        rules = None
        if "rules" in data:
            if not isinstance(data["rules"], list):
                raise ValueError("rules must be a list")
            rules = [AdjustmentRule.from_dict(rule) for rule in data["rules"]]

        regime = MarketRegime(data["currentRegime"]) if "currentRegime" in data else None
        auto_adjust = data.get("autoAdjustEnabled")
        if auto_adjust is not None and not isinstance(auto_adjust, bool):
            raise ValueError("autoAdjustEnabled must be a boolean")
        return thresholds, rules, regime, auto_adjust

    def _apply_document(self, parsed: _ParsedDocument) -> None:
        thresholds, rules, regime, auto_adjust = parsed
        self._current = thresholds
        if rules is not None:
            self._rules = rules
        if regime is not None and regime != self._regime:
            self._regime = regime
            self._regime_since = self._clock()
        if auto_adjust is not None:
            self._auto_adjust_enabled = auto_adjust

    def save_to_file(self, path: str | Path | None = None) -> bool:
        """Write thresholds, rules and regime as JSON.

        Returns:
            True on success. Failures are logged and emitted as save-error.
        """
        target = Path(path) if path else self._settings_path
        if target is None:
            logger.warning("Cannot save thresholds: no settings path configured")
            return False
        document = {**self._document(), "savedAt": self._clock().isoformat()}
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(document, indent=2))
        except OSError as e:
            logger.error("Failed to save thresholds to %s: %s", target, e)
            self.events.emit("save-error", e)
            return False
        logger.debug("Saved thresholds to %s", target)
        self.events.emit("config-saved", str(target))
        return True

    def load_from_file(self, path: str | Path | None = None) -> bool:
        """Load a saved document, merged over the default thresholds.

        Returns:
            False if there is no file or it is malformed (state unchanged).
        """
        target = Path(path) if path else self._settings_path
        if target is None or not target.exists():
            return False
        try:
            parsed = self._parse_document(json.loads(target.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load thresholds from %s: %s", target, e)
            self.events.emit("load-error", e)
            return False
        self._apply_document(parsed)
        logger.info("Loaded thresholds from %s", target)
        self.events.emit("config-loaded", str(target))
        return True

    def export_config(self) -> str:
        return json.dumps({**self._document(), "exportedAt": self._clock().isoformat()}, indent=2)

    def import_config(self, json_text: str, *, triggered_by: str = "import") -> bool:
        """Replace thresholds and rules from an exported document.

        The document is fully validated before any state changes.

        Returns:
            False on malformed input (state unchanged).
        """
        try:
            parsed = self._parse_document(json.loads(json_text))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Rejected threshold config import: %s", e)
            self.events.emit("import-error", e)
            return False
        self._apply_document(parsed)
        self._record(ThresholdType.SUSPICION_LEVEL, ALL_THRESHOLDS_KEY, 0.0, 0.0,
                     AdjustmentReason.MANUAL, triggered_by,
                     notes="Configuration imported", announce=False)
        logger.info("Imported threshold config (%s)", triggered_by)
        self.events.emit("config-imported", self.get_current_thresholds())
        return True
