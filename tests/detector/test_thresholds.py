"""Tests for the dynamic threshold adjuster."""

from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from polymarket_insider_tracker.detector.models import (
    AdjustmentDirection,
    AdjustmentReason,
    AdjustmentRule,
    ConditionMetric,
    MarketRegime,
    SignalSource,
    SuspicionLevel,
    ThresholdType,
)
from polymarket_insider_tracker.detector.thresholds import (
    ALL_THRESHOLDS_KEY,
    DynamicThresholdAdjuster,
)


def warm_up(adjuster: DynamicThresholdAdjuster, clock, updates: int = 6) -> None:
    """Feed every metric a quiet history alternating between 100 and 102."""
    for i in range(updates):
        value = 100.0 if i % 2 == 0 else 102.0
        adjuster.update_market_conditions({metric: value for metric in ConditionMetric})
        clock.advance(minutes=1)


def collect(adjuster: DynamicThresholdAdjuster, event: str) -> list:
    received: list = []
    adjuster.events.on(event, received.append)
    return received


@pytest.fixture
def adjuster(clock) -> DynamicThresholdAdjuster:
    return DynamicThresholdAdjuster(clock=clock)


@pytest.fixture
def warm_adjuster(adjuster: DynamicThresholdAdjuster, clock) -> DynamicThresholdAdjuster:
    warm_up(adjuster, clock)
    return adjuster


class TestMetricStatistics:
    """Tests for rolling metric statistics."""

    def test_first_observation(self, adjuster: DynamicThresholdAdjuster) -> None:
        conditions = adjuster.update_market_conditions({"VOLUME": 5.0})
        snapshot = conditions.metrics[ConditionMetric.VOLUME]

        assert snapshot.z_score == 0.0
        assert snapshot.percentile_rank == 50.0
        assert snapshot.historical_average == 5.0
        assert not snapshot.is_anomalous
        assert conditions.regime == MarketRegime.NORMAL

    def test_missing_metrics_get_neutral_snapshot(
        self, adjuster: DynamicThresholdAdjuster
    ) -> None:
        conditions = adjuster.update_market_conditions({ConditionMetric.VOLUME: 5.0})

        assert set(conditions.metrics) == set(ConditionMetric)
        assert conditions.metrics[ConditionMetric.SENTIMENT].value == 0.0
        assert conditions.confidence == 0.0

    def test_quiet_history_is_normal(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        conditions = warm_adjuster.get_last_conditions()

        assert conditions is not None
        assert conditions.regime == MarketRegime.NORMAL
        assert not conditions.is_unusual
        assert conditions.health_score == 100
        assert warm_adjuster.get_adjustment_history() == []
        assert warm_adjuster.get_regime_history() == []

    def test_spike_statistics(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        conditions = warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})
        snapshot = conditions.metrics[ConditionMetric.VOLUME]

        assert snapshot.historical_average == pytest.approx(101.0)
        assert snapshot.standard_deviation == pytest.approx(math.sqrt(1.2))
        assert snapshot.z_score == pytest.approx(99 / math.sqrt(1.2))
        assert snapshot.percentile_rank == 100.0
        assert snapshot.is_anomalous
        assert conditions.health_score == 88
        assert conditions.confidence == 1.0
        assert conditions.is_unusual
        assert conditions.period_minutes == 1440

    def test_conditions_event(self, adjuster: DynamicThresholdAdjuster) -> None:
        received = collect(adjuster, "conditions-updated")

        conditions = adjuster.update_market_conditions({ConditionMetric.VOLUME: 1.0})

        assert received == [conditions]

    def test_unknown_metric_raises(self, adjuster: DynamicThresholdAdjuster) -> None:
        with pytest.raises(ValueError):
            adjuster.update_market_conditions({"OPEN_INTEREST": 1.0})

    def test_unknown_metric_records_nothing(self, adjuster: DynamicThresholdAdjuster) -> None:
        with pytest.raises(ValueError):
            adjuster.update_market_conditions({"VOLUME": 1.0, "OPEN_INTEREST": 2.0})

        assert adjuster.get_last_conditions() is None
        conditions = adjuster.update_market_conditions({"VOLUME": 7.0})
        snapshot = conditions.metrics[ConditionMetric.VOLUME]
        assert snapshot.historical_average == 7.0
        assert snapshot.percentile_rank == 50.0

    def test_degenerate_values_do_not_crash(self, adjuster: DynamicThresholdAdjuster) -> None:
        for value in (1.0, 2.0, 3.0, math.nan, -5.0, 1e308, math.inf, 10**400, -(10**400)):
            conditions = adjuster.update_market_conditions({ConditionMetric.VOLUME: value})
            assert ConditionMetric.VOLUME in conditions.metrics

        assert conditions.metrics[ConditionMetric.VOLUME].value == -math.inf

    def test_huge_integer_saturates(self, adjuster: DynamicThresholdAdjuster) -> None:
        conditions = adjuster.update_market_conditions({ConditionMetric.VOLUME: 10**400})

        assert conditions.metrics[ConditionMetric.VOLUME].value == math.inf


class TestRegimeDetection:
    """Tests for market regime classification."""

    @pytest.mark.parametrize(
        ("metrics", "expected"),
        [
            ({ConditionMetric.VOLATILITY: 200.0}, MarketRegime.HIGH_VOLATILITY),
            ({ConditionMetric.VOLATILITY: 0.0}, MarketRegime.LOW_VOLATILITY),
            ({ConditionMetric.VOLUME: 200.0}, MarketRegime.HIGH_ACTIVITY),
            ({ConditionMetric.ACTIVE_TRADERS: 200.0}, MarketRegime.HIGH_ACTIVITY),
            ({ConditionMetric.VOLUME: 0.0}, MarketRegime.LOW_ACTIVITY),
            ({ConditionMetric.SENTIMENT: 200.0}, MarketRegime.BULL_MARKET),
            ({ConditionMetric.SENTIMENT: 0.0}, MarketRegime.BEAR_MARKET),
            (
                {ConditionMetric.VOLUME: 200.0, ConditionMetric.VOLATILITY: 200.0},
                MarketRegime.EXTREME,
            ),
            ({ConditionMetric.LIQUIDITY: 0.0}, MarketRegime.NORMAL),
        ],
    )
    def test_regimes(
        self,
        warm_adjuster: DynamicThresholdAdjuster,
        metrics: dict[ConditionMetric, float],
        expected: MarketRegime,
    ) -> None:
        conditions = warm_adjuster.update_market_conditions(metrics)

        assert conditions.regime == expected
        assert warm_adjuster.get_current_regime() == expected

    def test_regime_change_recorded(
        self, warm_adjuster: DynamicThresholdAdjuster
    ) -> None:
        received = collect(warm_adjuster, "regime-change")

        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert len(received) == 1
        change = warm_adjuster.get_regime_history()[0]
        assert change is received[0]
        assert change.previous_regime == MarketRegime.NORMAL
        assert change.new_regime == MarketRegime.HIGH_ACTIVITY
        assert change.triggering_metrics == (ConditionMetric.VOLUME,)
        assert change.confidence == 0.7
        assert change.previous_regime_duration_minutes == 6.0

    def test_no_event_when_regime_holds(
        self, warm_adjuster: DynamicThresholdAdjuster, clock
    ) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})
        received = collect(warm_adjuster, "regime-change")

        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert received == []
        assert len(warm_adjuster.get_regime_history()) == 1


class TestAdjustmentRules:
    """Tests for automatic rule-driven adjustments."""

    def test_volume_spike_adjusts(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        received = collect(warm_adjuster, "threshold-adjusted")

        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert warm_adjuster.get_insider_threshold() == 77.0
        assert warm_adjuster.get_suspicion_thresholds() == {
            "low": 22.0,
            "medium": 44.0,
            "high": 66.0,
            "critical": 88.0,
        }
        assert warm_adjuster.get_flag_threshold() == 50.0
        assert len(received) == 5
        assert all(a.reason == AdjustmentReason.METRIC_THRESHOLD for a in received)
        assert all(a.direction == AdjustmentDirection.INCREASE for a in received)

        # higher-priority rule applies first
        assert received[0].threshold_type == ThresholdType.INSIDER_THRESHOLD
        assert received[0].triggered_by == "Rule: Extreme Conditions"
        assert received[0].percentage_change == 10.0
        assert received[0].regime == MarketRegime.HIGH_ACTIVITY
        assert [a.threshold_key for a in received[1:]] == ["low", "medium", "high", "critical"]

        summary = warm_adjuster.get_summary()
        assert summary.rules_status.triggered_count == 2
        assert summary.rules_status.total == 6
        assert summary.rules_status.enabled == 6
        assert summary.total_adjustments == 5
        assert summary.adjustments_by_type[ThresholdType.SUSPICION_LEVEL] == 4
        assert summary.adjustments_by_reason[AdjustmentReason.METRIC_THRESHOLD] == 5

    def test_cooldown_blocks_repeat(self, warm_adjuster: DynamicThresholdAdjuster, clock) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})
        clock.advance(seconds=10)

        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert len(warm_adjuster.get_adjustment_history()) == 5
        assert warm_adjuster.get_suspicion_thresholds()["low"] == 22.0
        assert warm_adjuster.get_summary().rules_status.triggered_count == 2

    def test_volatility_spike(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLATILITY: 200.0})

        assert warm_adjuster.get_flag_threshold() == 57.5
        assert warm_adjuster.get_insider_threshold() == 77.0
        assert warm_adjuster.get_suspicion_thresholds()["low"] == 20.0

    def test_low_activity_decreases_levels(
        self, warm_adjuster: DynamicThresholdAdjuster
    ) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 0.0})

        assert warm_adjuster.get_suspicion_thresholds() == {
            "low": 18.0,
            "medium": 36.0,
            "high": 54.0,
            "critical": 72.0,
        }
        adjustment = warm_adjuster.get_adjustment_history(limit=1)[0]
        assert adjustment.direction == AdjustmentDirection.DECREASE

    def test_fresh_wallet_surge(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        conditions = warm_adjuster.update_market_conditions(
            {ConditionMetric.FRESH_WALLET_ACTIVITY: 200.0}
        )

        assert warm_adjuster.get_signal_multiplier(SignalSource.FRESH_WALLET) == 0.85
        assert conditions.regime == MarketRegime.NORMAL
        assert conditions.is_unusual
        adjustment = warm_adjuster.get_adjustment_history()[0]
        assert adjustment.threshold_type == ThresholdType.SIGNAL_THRESHOLD
        assert adjustment.threshold_key == "FRESH_WALLET"

    def test_low_liquidity(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.LIQUIDITY: 0.0})

        assert warm_adjuster.get_flag_threshold() == 45.0

    def test_total_drift_capped(self, clock) -> None:
        rule = AdjustmentRule(
            name="Aggressive Flag",
            description="Raise the flag threshold by half",
            trigger_metrics=(ConditionMetric.VOLUME,),
            trigger_z_score=2.0,
            target_threshold=ThresholdType.FLAG_THRESHOLD,
            adjustment_percent=50.0,
            min_adjustment=0.0,
            max_adjustment=100.0,
        )
        adjuster = DynamicThresholdAdjuster(
            rules=[rule], min_adjustment_interval_seconds=0, clock=clock
        )
        warm_up(adjuster, clock)

        adjuster.update_market_conditions({ConditionMetric.VOLUME: 1000.0})
        assert adjuster.get_flag_threshold() == 75.0

        clock.advance(minutes=1)
        adjuster.update_market_conditions({ConditionMetric.VOLUME: 10000.0})

        assert adjuster.get_flag_threshold() == 75.0
        assert len(adjuster.get_adjustment_history()) == 1
        assert adjuster.get_deviation_from_defaults()["flag_threshold"] == 50.0

    def test_auto_adjust_disabled(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        received = collect(warm_adjuster, "auto-adjust-changed")

        warm_adjuster.set_auto_adjust_enabled(False)
        warm_adjuster.set_auto_adjust_enabled(False)
        conditions = warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert received == [False]
        assert not warm_adjuster.is_auto_adjust_enabled()
        assert conditions.regime == MarketRegime.HIGH_ACTIVITY
        assert warm_adjuster.get_adjustment_history() == []

    def test_disabled_rule_skipped(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        assert warm_adjuster.set_rule_enabled("Extreme Conditions", False)

        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        assert warm_adjuster.get_insider_threshold() == 70.0
        assert warm_adjuster.get_summary().rules_status.enabled == 5


class TestRuleManagement:
    """Tests for adding and removing rules."""

    def test_rules_sorted_by_priority(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert [r.priority for r in adjuster.get_rules()] == [15, 10, 9, 8, 7, 6]

    def test_add_duplicate_rejected(self, adjuster: DynamicThresholdAdjuster) -> None:
        rule = adjuster.get_rules()[0]

        assert not adjuster.add_rule(rule)

    def test_add_and_remove(self, adjuster: DynamicThresholdAdjuster) -> None:
        added = collect(adjuster, "rule-added")
        removed = collect(adjuster, "rule-removed")
        rule = AdjustmentRule(
            name="Sentiment Watch",
            description="Tighten in bear markets",
            trigger_metrics=(ConditionMetric.SENTIMENT,),
            trigger_z_score=-2.0,
            target_threshold=ThresholdType.FLAG_THRESHOLD,
            adjustment_percent=-5.0,
            min_adjustment=1.0,
            max_adjustment=5.0,
            priority=20,
        )

        assert adjuster.add_rule(rule)
        assert adjuster.get_rules()[0] == rule
        assert adjuster.remove_rule("Sentiment Watch")
        assert not adjuster.remove_rule("Sentiment Watch")
        assert added == [rule]
        assert removed == [rule]

    def test_set_rule_enabled_unknown(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert not adjuster.set_rule_enabled("Nope", False)


class TestManualOverrides:
    """Tests for manual threshold setters."""

    def test_flag_threshold(self, adjuster: DynamicThresholdAdjuster) -> None:
        # manual overrides are exempt from the drift cap
        assert adjuster.set_flag_threshold(95.0)
        assert adjuster.get_flag_threshold() == 95.0

        adjustment = adjuster.get_adjustment_history()[0]
        assert adjustment.reason == AdjustmentReason.MANUAL
        assert adjustment.triggered_by == "manual"
        assert adjustment.percentage_change == 90.0

    @pytest.mark.parametrize("value", [150.0, -1.0, float("nan")])
    def test_flag_threshold_rejected(
        self, adjuster: DynamicThresholdAdjuster, value: float
    ) -> None:
        assert not adjuster.set_flag_threshold(value)
        assert adjuster.get_flag_threshold() == 50.0

    def test_insider_threshold(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert adjuster.set_insider_threshold(60.0, triggered_by="ops")

        adjustment = adjuster.get_adjustment_history()[0]
        assert adjustment.threshold_type == ThresholdType.INSIDER_THRESHOLD
        assert adjustment.triggered_by == "ops"

    def test_same_value_records_nothing(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert adjuster.set_flag_threshold(50.0)
        assert adjuster.get_adjustment_history() == []

    def test_suspicion_threshold(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert not adjuster.set_suspicion_threshold("high", 30.0)
        assert not adjuster.set_suspicion_threshold("none", 10.0)
        assert adjuster.set_suspicion_threshold(SuspicionLevel.HIGH, 65.0)

        assert adjuster.get_suspicion_thresholds()["high"] == 65.0
        assert adjuster.get_effective_threshold(SuspicionLevel.HIGH) == 65.0
        assert adjuster.get_effective_threshold(SuspicionLevel.NONE) == 0.0
        assert adjuster.classify_score(62) == SuspicionLevel.MEDIUM
        assert adjuster.classify_score(65) == SuspicionLevel.HIGH

    def test_signal_multiplier(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert not adjuster.set_signal_multiplier(SignalSource.WIN_RATE, 6.0)
        assert adjuster.set_signal_multiplier(SignalSource.WIN_RATE, 2.0)

        assert adjuster.get_signal_multiplier(SignalSource.WIN_RATE) == 2.0
        assert adjuster.get_deviation_from_defaults()["signal.WIN_RATE"] == 100.0

    def test_returned_config_is_a_copy(self, adjuster: DynamicThresholdAdjuster) -> None:
        config = adjuster.get_current_thresholds()
        config.signal_multipliers[SignalSource.SYBIL] = 3.0

        assert adjuster.get_signal_multiplier(SignalSource.SYBIL) == 1.0


class TestReset:
    """Tests for resetting and clearing state."""

    def test_reset_to_defaults(self, adjuster: DynamicThresholdAdjuster) -> None:
        adjuster.set_flag_threshold(60.0)
        adjusted = collect(adjuster, "threshold-adjusted")
        reset = collect(adjuster, "thresholds-reset")

        adjuster.reset_to_defaults()

        assert adjuster.get_flag_threshold() == 50.0
        assert adjusted == []
        assert len(reset) == 1
        entry = adjuster.get_adjustment_history()[0]
        assert entry.reason == AdjustmentReason.RESET
        assert entry.threshold_key == ALL_THRESHOLDS_KEY
        assert entry.direction == AdjustmentDirection.NONE

    def test_reset_clears_cooldown(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})
        warm_adjuster.reset_to_defaults()

        warm_adjuster.update_market_conditions({ConditionMetric.VOLATILITY: 200.0})

        assert warm_adjuster.get_insider_threshold() == 77.0

    def test_clear_history(self, warm_adjuster: DynamicThresholdAdjuster) -> None:
        warm_adjuster.update_market_conditions({ConditionMetric.VOLUME: 200.0})

        warm_adjuster.clear_history()

        assert warm_adjuster.get_adjustment_history() == []
        assert warm_adjuster.get_regime_history() == []
        assert warm_adjuster.get_summary().rules_status.triggered_count == 0
        # thresholds themselves stay adjusted
        assert warm_adjuster.get_insider_threshold() == 77.0


class TestPersistence:
    """Tests for saving, loading and import/export."""

    def test_save_and_load(self, adjuster: DynamicThresholdAdjuster, clock, tmp_path: Path) -> None:
        path = tmp_path / "config" / "thresholds.json"
        adjuster.set_flag_threshold(65.0)
        adjuster.set_signal_multiplier(SignalSource.SYBIL, 1.5)
        adjuster.set_rule_enabled("Low Liquidity Alert", False)
        saved = collect(adjuster, "config-saved")

        assert adjuster.save_to_file(path)
        assert saved == [str(path)]
        document = json.loads(path.read_text())
        assert document["currentThresholds"]["flagThreshold"] == 65.0
        assert document["savedAt"] == clock().isoformat()

        restored = DynamicThresholdAdjuster(settings_path=path, clock=clock)
        assert restored.load_from_file()
        assert restored.get_flag_threshold() == 65.0
        assert restored.get_signal_multiplier(SignalSource.SYBIL) == 1.5
        assert restored.get_rules() == adjuster.get_rules()

    def test_save_without_path(self, adjuster: DynamicThresholdAdjuster) -> None:
        assert not adjuster.save_to_file()

    def test_load_missing_file(self, adjuster: DynamicThresholdAdjuster, tmp_path: Path) -> None:
        assert not adjuster.load_from_file(tmp_path / "missing.json")

    def test_load_malformed_file(
        self, adjuster: DynamicThresholdAdjuster, tmp_path: Path
    ) -> None:
        path = tmp_path / "thresholds.json"
        path.write_text("{not json")
        errors = collect(adjuster, "load-error")

        assert not adjuster.load_from_file(path)
        assert len(errors) == 1
        assert adjuster.get_flag_threshold() == 50.0

    def test_save_error(self, adjuster: DynamicThresholdAdjuster, tmp_path: Path) -> None:
        errors = collect(adjuster, "save-error")

        assert not adjuster.save_to_file(tmp_path)
        assert len(errors) == 1
        assert isinstance(errors[0], OSError)

    def test_auto_save(self, clock, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.json"
        adjuster = DynamicThresholdAdjuster(settings_path=path, auto_save=True, clock=clock)

        adjuster.set_flag_threshold(60.0)

        assert json.loads(path.read_text())["currentThresholds"]["flagThreshold"] == 60.0

    def test_export_import(self, adjuster: DynamicThresholdAdjuster, clock) -> None:
        adjuster.set_insider_threshold(80.0)
        adjuster.set_auto_adjust_enabled(False)
        exported = adjuster.export_config()

        other = DynamicThresholdAdjuster(clock=clock)
        imported = collect(other, "config-imported")

        assert other.import_config(exported)
        assert other.get_insider_threshold() == 80.0
        assert not other.is_auto_adjust_enabled()
        assert len(imported) == 1
        entry = other.get_adjustment_history()[0]
        assert entry.reason == AdjustmentReason.MANUAL
        assert entry.threshold_key == ALL_THRESHOLDS_KEY
        assert entry.triggered_by == "import"

    @pytest.mark.parametrize(
        "text",
        [
            "{not json",
            json.dumps({"currentThresholds": {"suspicionThresholds": {"low": 50}}}),
            json.dumps({"currentThresholds": {"signalMultipliers": {"WIN_RATE": 10}}}),
            json.dumps({"currentThresholds": {"flagThreshold": 120}}),
            json.dumps([]),
            json.dumps({"rules": {}}),
            json.dumps({"rules": [{"name": "incomplete"}]}),
            json.dumps({"currentRegime": "SIDEWAYS"}),
        ],
    )
    def test_import_rejects_invalid(
        self, adjuster: DynamicThresholdAdjuster, text: str
    ) -> None:
        errors = collect(adjuster, "import-error")

        assert not adjuster.import_config(text)
        assert adjuster.get_flag_threshold() == 50.0
        assert len(adjuster.get_rules()) == 6
        assert len(errors) == 1
        assert adjuster.get_adjustment_history() == []

    def test_import_merges_over_defaults(self, adjuster: DynamicThresholdAdjuster) -> None:
        text = json.dumps({"currentThresholds": {"flagThreshold": 55}})

        assert adjuster.import_config(text)
        assert adjuster.get_flag_threshold() == 55.0
        assert adjuster.get_insider_threshold() == 70.0
        assert len(adjuster.get_rules()) == 6
