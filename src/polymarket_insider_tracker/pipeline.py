"""Main pipeline orchestrator for Polymarket Insider Tracker.

This module provides the Pipeline class that wires together the profiling
and detection components and keeps the composite scorer's thresholds in
step with the dynamic threshold adjuster.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from polymarket_insider_tracker.config import Settings, get_settings
from polymarket_insider_tracker.detector.composite import CompositeSuspicionScorer, ScorerConfig
from polymarket_insider_tracker.detector.models import (
    BatchScoreResult,
    CompositeScoreResult,
    ConditionMetric,
    MarketConditions,
    SignalCategory,
    SignalSource,
    ThresholdConfig,
)
from polymarket_insider_tracker.detector.sources import SignalProvider, default_providers
from polymarket_insider_tracker.detector.thresholds import DynamicThresholdAdjuster
from polymarket_insider_tracker.profiler.behavior import WalletBehaviorProfiler
from polymarket_insider_tracker.profiler.concentration import WalletConcentrationAnalyzer
from polymarket_insider_tracker.profiler.models import (
    ConcentrationTrade,
    ProfileTrade,
    WalletBehaviorProfile,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Adjuster events that change the thresholds the scorer should use
THRESHOLD_CHANGE_EVENTS = (
    "threshold-adjusted",
    "thresholds-reset",
    "config-loaded",
    "config-imported",
)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(format=LOG_FORMAT, level=settings.get_logging_level())


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    trades_ingested: int = 0
    wallets_scored: int = 0
    wallets_flagged: int = 0
    potential_insiders: int = 0
    condition_updates: int = 0
    threshold_adjustments: int = 0
    errors: int = 0
    last_trade_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Composition root for the insider detection engine.

    Pipeline flow:
        Trades → Behavior Profiler + Concentration Analyzer → Signal Providers
        → Composite Scorer (thresholds from Dynamic Threshold Adjuster)

    Example:
        ```python
        from polymarket_insider_tracker.config import get_settings
        from polymarket_insider_tracker.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            pipeline.ingest_trades(address, trades)
            result = await pipeline.score_wallet(address)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline and build all components.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            clock: Returns the current UTC time; shared by every component.
        """
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()
        self._stop_event: asyncio.Event | None = None

        s = self._settings
        self._profiler = WalletBehaviorProfiler(
            min_trades=s.profiler.min_trades,
            cache_ttl_seconds=s.profiler.cache_ttl_seconds,
            max_cached_profiles=s.profiler.max_cached_profiles,
            large_trade_usd=s.profiler.large_trade_usd,
            whale_trade_usd=s.profiler.whale_trade_usd,
            high_suspicion_threshold=s.profiler.high_suspicion_threshold,
            clock=self._clock,
        )
        self._concentration = WalletConcentrationAnalyzer(
            cache_ttl_seconds=s.concentration.cache_ttl_seconds,
            max_cache_size=s.concentration.max_cache_size,
            min_trades=s.concentration.min_trades,
            time_window_days=s.concentration.time_window_days,
            specialist_threshold=s.concentration.specialist_threshold,
            clock=self._clock,
        )
        self._scorer = CompositeSuspicionScorer(
            providers=default_providers(self._profiler, self._concentration),
            config=ScorerConfig(
                min_signals=s.scorer.min_signals,
                cache_ttl_seconds=s.scorer.cache_ttl_seconds,
                max_cache_size=s.scorer.max_cache_size,
                flag_threshold=s.scorer.flag_threshold,
                insider_threshold=s.scorer.insider_threshold,
                insider_signal_threshold=s.scorer.insider_signal_threshold,
            ),
            clock=self._clock,
        )
        self._adjuster = DynamicThresholdAdjuster(
            thresholds=ThresholdConfig(
                flag_threshold=s.scorer.flag_threshold,
                insider_threshold=s.scorer.insider_threshold,
            ),
            auto_adjust_enabled=s.thresholds.auto_adjust_enabled,
            min_adjustment_interval_seconds=s.thresholds.min_adjustment_interval_seconds,
            max_total_adjustment_percent=s.thresholds.max_total_adjustment_percent,
            regime_sensitivity=s.thresholds.regime_sensitivity,
            historical_window_minutes=s.thresholds.historical_window_minutes,
            max_history_size=s.thresholds.max_history_size,
            settings_path=s.thresholds.settings_path,
            auto_save=s.thresholds.auto_save,
            log_all_changes=s.thresholds.log_all_changes,
            clock=self._clock,
        )
        self._wire_events()

    def _wire_events(self) -> None:
        for event in THRESHOLD_CHANGE_EVENTS:
            self._adjuster.events.on(event, lambda *_: self._sync_thresholds())
        self._adjuster.events.on("threshold-adjusted", self._on_threshold_adjusted)
        self._scorer.events.on("wallet-flagged", self._on_wallet_flagged)
        self._scorer.events.on("potential-insider", self._on_potential_insider)

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def profiler(self) -> WalletBehaviorProfiler:
        return self._profiler

    @property
    def concentration(self) -> WalletConcentrationAnalyzer:
        return self._concentration

    @property
    def scorer(self) -> CompositeSuspicionScorer:
        return self._scorer

    @property
    def thresholds(self) -> DynamicThresholdAdjuster:
        return self._adjuster

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the pipeline.

        Loads persisted thresholds when a settings path is configured.

        Raises:
            RuntimeError: If pipeline is already running.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")
        logger.debug("Settings: %s", self._settings.summary())

        try:
            if self._settings.thresholds.settings_path is not None:
                self._adjuster.load_from_file()
            self._sync_thresholds()
            self._stats.started_at = self._clock()
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Saves thresholds when auto-save is enabled.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        thresholds = self._settings.thresholds
        if thresholds.auto_save and thresholds.settings_path is not None:
            self._adjuster.save_to_file()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def run(self) -> None:
        """Start the pipeline and run until stop() is called.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

    # === Operations ===

    def register_provider(
        self,
        source: SignalSource,
        provider: SignalProvider,
        category: SignalCategory | None = None,
    ) -> None:
        """Plug an external signal provider (e.g. coordination or sybil detection)."""
        self._scorer.register_source(source, provider, category)
        self._scorer.clear_cache()

    def ingest_trades(
        self, address: str, trades: Iterable[ProfileTrade]
    ) -> WalletBehaviorProfile | None:
        """Feed a wallet's new trades to the profiler and concentration analyzer.

        Returns:
            The wallet's updated profile, or None below the profiler's minimum.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        batch = list(trades)
        try:
            profile = self._profiler.update_profile(address, batch)
            self._concentration.add_trades(
                address, [ConcentrationTrade.from_profile_trade(t) for t in batch]
            )
            self._scorer.invalidate_cache(address)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.warning("Failed to ingest trades for %s: %s", address, e)
            raise

        self._stats.trades_ingested += len(batch)
        if batch:
            latest = max(t.timestamp for t in batch)
            if self._stats.last_trade_time is None or latest > self._stats.last_trade_time:
                self._stats.last_trade_time = latest
        return profile

    async def score_wallet(self, address: str, *, use_cache: bool = True) -> CompositeScoreResult:
        """Calculate the composite suspicion score for one wallet.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        result = await self._scorer.calculate_score(address, use_cache=use_cache)
        self._stats.wallets_scored += 1
        return result

    async def score_wallets(
        self, addresses: Sequence[str], *, use_cache: bool = True
    ) -> BatchScoreResult:
        batch = await self._scorer.batch_calculate_scores(addresses, use_cache=use_cache)
        self._stats.wallets_scored += len(batch.results)
        self._stats.errors += len(batch.failed)
        return batch

    def update_market_conditions(
        self, metrics: Mapping[ConditionMetric | str, float]
    ) -> MarketConditions:
        conditions = self._adjuster.update_market_conditions(metrics)
        self._stats.condition_updates += 1
        return conditions

    # === Event handlers ===

    def _sync_thresholds(self) -> None:
        """Push the adjuster's current thresholds into the scorer config."""
        current = self._adjuster.get_current_thresholds()
        config = self._scorer.get_config()
        if (
            config.flag_threshold == current.flag_threshold
            and config.insider_threshold == current.insider_threshold
            and config.suspicion_thresholds == current.suspicion
        ):
            return
        self._scorer.update_config(
            flag_threshold=current.flag_threshold,
            insider_threshold=current.insider_threshold,
            suspicion_thresholds=current.suspicion,
        )

    def _on_threshold_adjusted(self, _adjustment: Any) -> None:
        self._stats.threshold_adjustments += 1

    def _on_wallet_flagged(self, _result: CompositeScoreResult) -> None:
        self._stats.wallets_flagged += 1

    def _on_potential_insider(self, result: CompositeScoreResult) -> None:
        self._stats.potential_insiders += 1
        logger.warning(
            "Potential insider: wallet=%s, score=%d",
            result.wallet_address[:10] + "...",
            result.composite_score,
        )
