"""Wallet behavior profiling.

This module provides the WalletBehaviorProfiler class that turns a wallet's
trade history into a WalletBehaviorProfile: when it trades, what it trades,
how it sizes positions, how well it performs, and which of those patterns
look suspicious.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import numpy as np

from polymarket_insider_tracker.addresses import is_valid_address, to_checksum_address
from polymarket_insider_tracker.cache import CacheStats, TTLCache
from polymarket_insider_tracker.events import EventEmitter
from polymarket_insider_tracker.profiler.models import (
    BatchProfileResult,
    BehaviorFlag,
    MarketPreferences,
    PerformanceMetrics,
    PositionSizing,
    ProfileConfidence,
    ProfileSummary,
    ProfileTrade,
    RiskAppetite,
    TimeDistribution,
    TradingFrequency,
    TradingPatterns,
    TradingStyle,
    WalletBehaviorProfile,
)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_TRADES = 3
DEFAULT_CACHE_TTL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_CACHED_PROFILES = 1000
DEFAULT_LARGE_TRADE_USD = 1000.0
DEFAULT_WHALE_TRADE_USD = 10000.0
DEFAULT_HIGH_SUSPICION_THRESHOLD = 70

# 9am-5pm US Eastern, expressed in UTC hours [start, end)
MARKET_HOURS_START = 14
MARKET_HOURS_END = 22

PROFILE_VERSION = 1

# Trade annotations set by upstream detectors
PRE_EVENT_FLAG = "pre_event"
COORDINATED_FLAG = "coordinated"

MIN_RESOLVED_FOR_PERFORMANCE_FLAGS = 10
MIN_FLAGGED_TRADES = 3
MIN_LARGE_RESOLVED_FOR_TIMING = 5
PERFECT_TIMING_WIN_RATE = 0.9
CONSISTENT_PROFIT_FACTOR = 3.0
FRESH_WALLET_SIZE_RATIO = 5.0

FLAG_POINTS: dict[BehaviorFlag, int] = {
    BehaviorFlag.UNUSUAL_HOURS: 10,
    BehaviorFlag.MARKET_CONCENTRATION: 10,
    BehaviorFlag.HIGH_WIN_RATE: 15,
    BehaviorFlag.PERFECT_TIMING: 25,
    BehaviorFlag.COORDINATED_ACTIVITY: 20,
    BehaviorFlag.UNUSUAL_SIZING: 10,
    BehaviorFlag.FRESH_WALLET_ACTIVITY: 15,
    BehaviorFlag.PRE_NEWS_TRADING: 20,
    BehaviorFlag.CONSISTENT_PROFITABILITY: 15,
    BehaviorFlag.ABNORMAL_FREQUENCY: 10,
}
HIGH_WIN_FRESH_WALLET_BONUS = 15
PERFECT_TIMING_PRE_NEWS_BONUS = 20
NEAR_PERFECT_WIN_RATE_BONUS = 10
FULL_CONFIDENCE_TRADE_COUNT = 20


@dataclass(frozen=True)
class FrequencyThresholds:
    """Trades-per-month upper bounds for each frequency bucket."""

    rare: float = 1
    occasional: float = 5
    regular: float = 20
    frequent: float = 100


@dataclass(frozen=True)
class SuspicionThresholds:
    high_win_rate: float = 0.8
    unusual_hours: float = 0.4
    high_concentration: float = 0.8
    large_first_trade: float = 10000.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _abbrev(address: str) -> str:
    return address[:10] + "..."


def classify_trading_frequency(
    trade_count: int,
    span_days: float,
    thresholds: FrequencyThresholds = FrequencyThresholds(),
) -> TradingFrequency:
    """Bucket a wallet by trades per 30 days (span is floored at one day)."""
    trades_per_month = trade_count / max(1.0, span_days) * 30
    if trades_per_month < thresholds.rare:
        return TradingFrequency.RARE
    if trades_per_month < thresholds.occasional:
        return TradingFrequency.OCCASIONAL
    if trades_per_month < thresholds.regular:
        return TradingFrequency.REGULAR
    if trades_per_month < thresholds.frequent:
        return TradingFrequency.FREQUENT
    return TradingFrequency.VERY_FREQUENT


def classify_trading_style(
    trade_count: int,
    patterns: TradingPatterns,
    preferences: MarketPreferences,
    flags: Sequence[BehaviorFlag],
) -> TradingStyle:
    """Classify trading style. Checks run in order; the first match wins."""
    if BehaviorFlag.PERFECT_TIMING in flags or (
        BehaviorFlag.HIGH_WIN_RATE in flags and BehaviorFlag.PRE_NEWS_TRADING in flags
    ):
        return TradingStyle.POTENTIAL_INSIDER
    if trade_count < 2:
        return TradingStyle.UNKNOWN
    if patterns.maker_percentage > 0.7 and patterns.avg_time_between_trades < 1:
        return TradingStyle.MARKET_MAKER
    if patterns.avg_holding_period < 1 and patterns.avg_time_between_trades < 2:
        return TradingStyle.SCALPER
    if patterns.avg_holding_period < 24:
        return TradingStyle.DAY_TRADER
    if preferences.concentration_score > 0.7:
        return TradingStyle.EVENT_TRADER
    if patterns.avg_holding_period < 168:
        return TradingStyle.SWING_TRADER
    return TradingStyle.POSITION_TRADER


def classify_risk_appetite(sizing: PositionSizing) -> RiskAppetite:
    cv = sizing.coefficient_of_variation
    if sizing.whale_trade_percentage > 0.3:
        return RiskAppetite.VERY_AGGRESSIVE
    if sizing.large_trade_percentage > 0.5:
        return RiskAppetite.AGGRESSIVE
    if cv < 0.3 and sizing.avg_trade_size < 500:
        return RiskAppetite.VERY_CONSERVATIVE
    if cv < 0.5 and sizing.avg_trade_size < 1000:
        return RiskAppetite.CONSERVATIVE
    return RiskAppetite.MODERATE


def profile_confidence(trade_count: int) -> ProfileConfidence:
    if trade_count < 5:
        return ProfileConfidence.VERY_LOW
    if trade_count < 20:
        return ProfileConfidence.LOW
    if trade_count < 50:
        return ProfileConfidence.MODERATE
    if trade_count < 200:
        return ProfileConfidence.HIGH
    return ProfileConfidence.VERY_HIGH


def _dedupe(trades: Iterable[ProfileTrade]) -> list[ProfileTrade]:
    seen: set[str] = set()
    unique: list[ProfileTrade] = []
    for trade in trades:
        if trade.trade_id in seen:
            continue
        seen.add(trade.trade_id)
        unique.append(trade)
    return unique


class WalletBehaviorProfiler:
    """Builds and caches behavioral profiles for wallets.

    The profiler keeps the trade set behind each cached profile so that
    ``update_profile`` can merge new trades incrementally. Profiles are
    immutable; every build or update replaces the cached snapshot.

    Events (on ``profiler.events``):
        profileBuilt(profile): after every successful build.
        profileUpdated(profile, new_trade_count): after an update that
            replaced an existing profile.
        highSuspicion(profile): when the suspicion score reaches the
            high-suspicion threshold.

    Example:
        ```python
        profiler = WalletBehaviorProfiler()
        profiler.events.on("highSuspicion", notify)

        profile = profiler.build_profile(address, trades)
        if profile is not None:
            print(profile.trading_style, profile.suspicion_score)
        ```
    """

    def __init__(
        self,
        *,
        min_trades: int = DEFAULT_MIN_TRADES,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_cached_profiles: int = DEFAULT_MAX_CACHED_PROFILES,
        large_trade_usd: float = DEFAULT_LARGE_TRADE_USD,
        whale_trade_usd: float = DEFAULT_WHALE_TRADE_USD,
        high_suspicion_threshold: int = DEFAULT_HIGH_SUSPICION_THRESHOLD,
        frequency_thresholds: FrequencyThresholds | None = None,
        suspicion_thresholds: SuspicionThresholds | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the profiler.

        Args:
            min_trades: Minimum valid trades required to build a profile.
            cache_ttl_seconds: Profile cache TTL.
            max_cached_profiles: Maximum number of cached profiles.
            large_trade_usd: Size at which a trade counts as large.
            whale_trade_usd: Size at which a trade counts as a whale trade.
            high_suspicion_threshold: Score that triggers ``highSuspicion``.
            frequency_thresholds: Trades-per-month bucket bounds.
            suspicion_thresholds: Bounds for behavior-flag detection.
            clock: Returns the current UTC time. Injectable for tests.
        """
        self._min_trades = min_trades
        self._large_trade_usd = large_trade_usd
        self._whale_trade_usd = whale_trade_usd
        self._high_suspicion_threshold = high_suspicion_threshold
        self._frequency_thresholds = frequency_thresholds or FrequencyThresholds()
        self._suspicion_thresholds = suspicion_thresholds or SuspicionThresholds()
        self._clock = clock or _utcnow
        # Trades behind each cached profile; keys follow the profile cache.
        self._trades: dict[str, list[ProfileTrade]] = {}
        self._cache: TTLCache[str, WalletBehaviorProfile] = TTLCache(
            ttl_seconds=cache_ttl_seconds,
            max_size=max_cached_profiles,
            clock=lambda: self._clock().timestamp(),
            on_evict=self._on_evict,
        )
        # Trades of wallets still below the minimum, bounded like the profiles.
        self._pending: TTLCache[str, list[ProfileTrade]] = TTLCache(
            ttl_seconds=cache_ttl_seconds,
            max_size=max_cached_profiles,
            clock=lambda: self._clock().timestamp(),
        )
        self.events = EventEmitter()

    def _on_evict(self, address: str, _profile: WalletBehaviorProfile) -> None:
        self._trades.pop(address, None)

    # === Building ===

    def build_profile(
        self,
        address: str,
        trades: Iterable[ProfileTrade],
        *,
        min_trades: int | None = None,
        include_trade_ids: bool = False,
    ) -> WalletBehaviorProfile | None:
        """Build a behavioral profile from a wallet's trades.

        Trades with a non-positive size are ignored and duplicate trade IDs
        are counted once.

        Args:
            address: Wallet address (any case).
            trades: The wallet's trades.
            min_trades: Override for the minimum trade count.
            include_trade_ids: Store the trade IDs on the profile.

        Returns:
            The new profile, or None when there are too few valid trades.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        checksum_address = to_checksum_address(address)
        return self._build(
            checksum_address,
            trades,
            min_trades=self._min_trades if min_trades is None else min_trades,
            include_trade_ids=include_trade_ids,
            previous=self._cache.peek(checksum_address),
        )

    def update_profile(
        self,
        address: str,
        new_trades: Iterable[ProfileTrade],
        *,
        full_rebuild: bool = False,
    ) -> WalletBehaviorProfile | None:
        """Merge new trades into a wallet's profile.

        Trades already known (by trade ID) are ignored. If nothing new
        arrives the cached profile is returned unchanged.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        checksum_address = to_checksum_address(address)
        previous = self._cache.peek(checksum_address)
        if previous is None:
            self._trades.pop(checksum_address, None)
            existing = self._pending.get(checksum_address) or []
        else:
            existing = self._trades.get(checksum_address, [])

        if full_rebuild or not existing:
            merged = _dedupe([*existing, *new_trades])
            new_count = len(merged) - len(existing)
        else:
            known = {t.trade_id for t in existing}
            unique_new = _dedupe(t for t in new_trades if t.trade_id not in known)
            cached = self._cache.get(checksum_address)
            if not unique_new and cached is not None:
                logger.debug("No new trades for %s", _abbrev(checksum_address))
                return cached
            merged = [*existing, *unique_new]
            new_count = len(unique_new)

        profile = self._build(
            checksum_address,
            merged,
            min_trades=self._min_trades,
            include_trade_ids=True,
            previous=previous,
        )
        if profile is None:
            # Keep accumulating until the wallet has enough trades.
            self._pending.set(checksum_address, merged)
            return None
        self._pending.delete(checksum_address)
        if previous is not None:
            self.events.emit("profileUpdated", profile, new_count)
        return profile

    async def build_profiles(
        self,
        wallet_trades: Mapping[str, Sequence[ProfileTrade]],
    ) -> list[BatchProfileResult]:
        """Build profiles for many wallets concurrently.

        A failure for one wallet (e.g. an invalid address) is recorded on
        that wallet's result and does not affect the others.
        """

        async def build_one(address: str, trades: Sequence[ProfileTrade]) -> BatchProfileResult:
            started = time.perf_counter()
            try:
                profile = self.build_profile(address, trades, include_trade_ids=True)
            except Exception as e:
                logger.warning("Failed to build profile for %s: %s", address, e)
                return BatchProfileResult(
                    address=address,
                    profile=None,
                    processing_time_ms=(time.perf_counter() - started) * 1000,
                    error=str(e),
                )
            return BatchProfileResult(
                address=address,
                profile=profile,
                processing_time_ms=(time.perf_counter() - started) * 1000,
            )

        return list(
            await asyncio.gather(
                *(build_one(address, trades) for address, trades in wallet_trades.items())
            )
        )

    def _build(
        self,
        address: str,
        trades: Iterable[ProfileTrade],
        *,
        min_trades: int,
        include_trade_ids: bool,
        previous: WalletBehaviorProfile | None,
    ) -> WalletBehaviorProfile | None:
        valid = sorted(
            (t for t in _dedupe(trades) if t.size_usd > 0),
            key=lambda t: t.timestamp,
        )
        if len(valid) < max(1, min_trades):
            logger.debug(
                "Insufficient trades for %s: %d < %d",
                _abbrev(address),
                len(valid),
                min_trades,
            )
            return None

        now = self._clock()
        time_distribution = self._build_time_distribution(valid)
        preferences = self._build_market_preferences(valid)
        sizing = self._build_position_sizing(valid)
        performance = self._build_performance_metrics(valid)
        patterns = self._build_trading_patterns(valid)

        span_days = (valid[-1].timestamp - valid[0].timestamp).total_seconds() / 86400
        frequency = classify_trading_frequency(len(valid), span_days, self._frequency_thresholds)
        flags = self._detect_behavior_flags(
            valid, time_distribution, preferences, sizing, performance
        )
        style = classify_trading_style(len(valid), patterns, preferences, flags)
        suspicion_score = self._calculate_suspicion_score(flags, performance, len(valid))

        profile = WalletBehaviorProfile(
            address=address,
            trade_count=len(valid),
            total_volume=sum(t.size_usd for t in valid),
            time_distribution=time_distribution,
            market_preferences=preferences,
            position_sizing=sizing,
            performance=performance,
            trading_patterns=patterns,
            trading_frequency=frequency,
            trading_style=style,
            risk_appetite=classify_risk_appetite(sizing),
            confidence=profile_confidence(len(valid)),
            behavior_flags=tuple(flags),
            suspicion_score=suspicion_score,
            insights=tuple(
                self._generate_insights(style, frequency, performance, preferences, flags)
            ),
            created_at=previous.created_at if previous else now,
            updated_at=max(now, previous.updated_at) if previous else now,
            last_activity_at=valid[-1].timestamp,
            version=PROFILE_VERSION,
            trade_ids=tuple(t.trade_id for t in valid) if include_trade_ids else (),
        )

        self._cache.set(address, profile)
        self._trades[address] = valid

        logger.debug(
            "Built profile for %s: trades=%d, style=%s, suspicion=%d",
            _abbrev(address),
            profile.trade_count,
            style.value,
            suspicion_score,
        )
        self.events.emit("profileBuilt", profile)
        if suspicion_score >= self._high_suspicion_threshold:
            logger.info(
                "High suspicion profile: wallet=%s, score=%d, flags=%s",
                _abbrev(address),
                suspicion_score,
                ",".join(f.value for f in flags),
            )
            self.events.emit("highSuspicion", profile)
        return profile

    # === Queries ===

    def get_profile(self, address: str) -> WalletBehaviorProfile | None:
        """Return the cached profile, or None if missing, expired or invalid."""
        if not is_valid_address(address):
            return None
        checksum_address = to_checksum_address(address)
        profile = self._cache.get(checksum_address)
        if profile is None:
            self._trades.pop(checksum_address, None)
        return profile

    def has_profile(self, address: str) -> bool:
        if not is_valid_address(address):
            return False
        return to_checksum_address(address) in self._cache

    def get_all_profiles(self) -> list[WalletBehaviorProfile]:
        return self._cache.values()

    def get_profiles_by_style(self, style: TradingStyle) -> list[WalletBehaviorProfile]:
        return [p for p in self._cache.values() if p.trading_style == style]

    def get_profiles_by_flag(self, flag: BehaviorFlag) -> list[WalletBehaviorProfile]:
        return [p for p in self._cache.values() if flag in p.behavior_flags]

    def get_high_suspicion_profiles(
        self, threshold: int = DEFAULT_HIGH_SUSPICION_THRESHOLD
    ) -> list[WalletBehaviorProfile]:
        return [p for p in self._cache.values() if p.suspicion_score >= threshold]

    def get_summary(self) -> ProfileSummary:
        """Aggregate statistics over all live cached profiles."""
        profiles = self._cache.values()
        flag_counts: Counter[BehaviorFlag] = Counter()
        for profile in profiles:
            flag_counts.update(profile.behavior_flags)

        total_suspicion = sum(p.suspicion_score for p in profiles)
        return ProfileSummary(
            total_profiles=len(profiles),
            by_confidence=dict(Counter(p.confidence.value for p in profiles)),
            by_trading_style=dict(Counter(p.trading_style.value for p in profiles)),
            by_risk_appetite=dict(Counter(p.risk_appetite.value for p in profiles)),
            avg_suspicion_score=total_suspicion / len(profiles) if profiles else 0.0,
            high_suspicion_count=sum(
                1 for p in profiles if p.suspicion_score >= self._high_suspicion_threshold
            ),
            top_behavior_flags=tuple(flag_counts.most_common(10)),
            total_trades_analyzed=sum(p.trade_count for p in profiles),
            total_volume_analyzed=sum(p.total_volume for p in profiles),
        )

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()
        self._trades.clear()
        self._pending.clear()

    def remove_profile(self, address: str) -> bool:
        if not is_valid_address(address):
            return False
        checksum_address = to_checksum_address(address)
        self._trades.pop(checksum_address, None)
        self._pending.delete(checksum_address)
        return self._cache.delete(checksum_address)

    # === Metric builders ===

    def _build_time_distribution(self, trades: Sequence[ProfileTrade]) -> TimeDistribution:
        hours = [0] * 24
        days = [0] * 7
        market_hours = 0
        for trade in trades:
            ts = trade.timestamp.astimezone(UTC)
            hours[ts.hour] += 1
            days[ts.weekday()] += 1
            if MARKET_HOURS_START <= ts.hour < MARKET_HOURS_END:
                market_hours += 1

        market_pct = market_hours / len(trades)
        return TimeDistribution(
            hour_of_day=tuple(hours),
            day_of_week=tuple(days),
            peak_hour=int(np.argmax(hours)),
            peak_day=int(np.argmax(days)),
            market_hours_percentage=market_pct,
            off_hours_percentage=1 - market_pct,
        )

    def _build_market_preferences(self, trades: Sequence[ProfileTrade]) -> MarketPreferences:
        category_counts: Counter[str] = Counter()
        category_volume: dict[str, float] = {}
        market_counts: Counter[str] = Counter()
        for trade in trades:
            category = trade.market_category or "unknown"
            category_counts[category] += 1
            category_volume[category] = category_volume.get(category, 0.0) + trade.size_usd
            market_counts[trade.market_id] += 1

        ranked = category_counts.most_common()
        top_count = ranked[0][1] if ranked else 0
        return MarketPreferences(
            category_distribution=dict(category_counts),
            category_volume_distribution=category_volume,
            top_categories=tuple(category for category, _ in ranked[:5]),
            concentration_score=top_count / len(trades),
            unique_markets_count=len(market_counts),
            avg_trades_per_market=len(trades) / len(market_counts) if market_counts else 0.0,
        )

    def _build_position_sizing(self, trades: Sequence[ProfileTrade]) -> PositionSizing:
        sizes = np.array([t.size_usd for t in trades], dtype=float)
        avg = float(sizes.mean())
        std = float(sizes.std())
        cv = std / avg if avg > 0 else 0.0
        return PositionSizing(
            avg_trade_size=avg,
            median_trade_size=float(np.median(sizes)),
            trade_size_std_dev=std,
            min_trade_size=float(sizes.min()),
            max_trade_size=float(sizes.max()),
            large_trade_percentage=float((sizes >= self._large_trade_usd).mean()),
            whale_trade_percentage=float((sizes >= self._whale_trade_usd).mean()),
            consistency_score=max(0.0, 1 - min(cv, 2.0) / 2),
        )

    def _build_performance_metrics(self, trades: Sequence[ProfileTrade]) -> PerformanceMetrics:
        returns = [t.pnl for t in trades if t.pnl is not None]
        wins = [p for p in returns if p > 0]
        losses = [-p for p in returns if p < 0]

        total_pnl = float(sum(returns))
        gross_profit = float(sum(wins))
        gross_loss = float(sum(losses))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = math.inf if gross_profit > 0 else 0.0

        running = peak = max_drawdown = 0.0
        for pnl in returns:
            running += pnl
            peak = max(peak, running)
            max_drawdown = max(max_drawdown, peak - running)

        if returns:
            avg_return = total_pnl / len(returns)
            return_std = float(np.std(returns))
            if return_std > 0:
                return_consistency = avg_return / return_std
            else:
                return_consistency = 1.0 if avg_return > 0 else 0.0
        else:
            return_consistency = 0.0

        return PerformanceMetrics(
            resolved_trade_count=len(returns),
            win_count=len(wins),
            loss_count=len(losses),
            win_rate=len(wins) / len(returns) if returns else 0.0,
            total_pnl=total_pnl,
            avg_win_pnl=gross_profit / len(wins) if wins else 0.0,
            avg_loss_pnl=gross_loss / len(losses) if losses else 0.0,
            profit_factor=profit_factor,
            return_consistency=return_consistency,
            max_drawdown=max_drawdown,
            best_trade=max(wins) if wins else 0.0,
            worst_trade=-max(losses) if losses else 0.0,
        )

    def _build_trading_patterns(self, trades: Sequence[ProfileTrade]) -> TradingPatterns:
        buy_pct = sum(1 for t in trades if t.side == "buy") / len(trades)
        maker_pct = sum(1 for t in trades if t.is_maker) / len(trades)
        if len(trades) < 2:
            return TradingPatterns(
                avg_time_between_trades=0.0,
                median_time_between_trades=0.0,
                avg_holding_period=0.0,
                buy_percentage=buy_pct,
                maker_percentage=maker_pct,
                clustering_score=0.0,
                max_win_streak=0,
                max_loss_streak=0,
                reversal_rate=0.0,
            )

        gaps = np.array(
            [
                (cur.timestamp - prev.timestamp).total_seconds() / 3600
                for prev, cur in zip(trades, trades[1:])
            ],
            dtype=float,
        )
        avg_gap = float(gaps.mean())

        spread_hours = float(gaps.sum())
        if spread_hours > 0:
            expected = spread_hours / len(trades)
            clustering = min(1.0, float(np.abs(gaps - expected).mean()) / expected)
        else:
            clustering = 0.0

        win_streak = loss_streak = max_win = max_loss = 0
        for trade in trades:
            if trade.pnl is None or trade.pnl == 0:
                continue
            if trade.pnl > 0:
                win_streak, loss_streak = win_streak + 1, 0
                max_win = max(max_win, win_streak)
            else:
                win_streak, loss_streak = 0, loss_streak + 1
                max_loss = max(max_loss, loss_streak)

        reversals = sum(1 for prev, cur in zip(trades, trades[1:]) if cur.side != prev.side)

        return TradingPatterns(
            avg_time_between_trades=avg_gap,
            median_time_between_trades=float(np.median(gaps)),
            # No position tracking; twice the average gap approximates holding time.
            avg_holding_period=avg_gap * 2,
            buy_percentage=buy_pct,
            maker_percentage=maker_pct,
            clustering_score=clustering,
            max_win_streak=max_win,
            max_loss_streak=max_loss,
            reversal_rate=reversals / (len(trades) - 1),
        )

    # === Flags and scoring ===

    def _detect_behavior_flags(
        self,
        trades: Sequence[ProfileTrade],
        time_distribution: TimeDistribution,
        preferences: MarketPreferences,
        sizing: PositionSizing,
        performance: PerformanceMetrics,
    ) -> list[BehaviorFlag]:
        thresholds = self._suspicion_thresholds
        flags: list[BehaviorFlag] = []

        if time_distribution.off_hours_percentage > thresholds.unusual_hours:
            flags.append(BehaviorFlag.UNUSUAL_HOURS)

        if preferences.concentration_score > thresholds.high_concentration:
            flags.append(BehaviorFlag.MARKET_CONCENTRATION)

        enough_resolved = performance.resolved_trade_count >= MIN_RESOLVED_FOR_PERFORMANCE_FLAGS
        if enough_resolved and performance.win_rate > thresholds.high_win_rate:
            flags.append(BehaviorFlag.HIGH_WIN_RATE)

        if enough_resolved and performance.profit_factor > CONSISTENT_PROFIT_FACTOR:
            flags.append(BehaviorFlag.CONSISTENT_PROFITABILITY)

        if sizing.trade_size_std_dev > sizing.avg_trade_size * 2:
            flags.append(BehaviorFlag.UNUSUAL_SIZING)

        first_size = trades[0].size_usd
        rest = [t.size_usd for t in trades[1:]]
        if first_size >= thresholds.large_first_trade or (
            rest and first_size >= FRESH_WALLET_SIZE_RATIO * float(np.mean(rest))
        ):
            flags.append(BehaviorFlag.FRESH_WALLET_ACTIVITY)

        large_resolved = [
            t for t in trades if t.size_usd >= self._large_trade_usd and t.pnl is not None
        ]
        if len(large_resolved) >= MIN_LARGE_RESOLVED_FOR_TIMING:
            large_wins = sum(1 for t in large_resolved if t.pnl is not None and t.pnl > 0)
            if large_wins / len(large_resolved) > PERFECT_TIMING_WIN_RATE:
                flags.append(BehaviorFlag.PERFECT_TIMING)

        if sum(1 for t in trades if PRE_EVENT_FLAG in t.flags) >= MIN_FLAGGED_TRADES:
            flags.append(BehaviorFlag.PRE_NEWS_TRADING)

        if sum(1 for t in trades if COORDINATED_FLAG in t.flags) >= MIN_FLAGGED_TRADES:
            flags.append(BehaviorFlag.COORDINATED_ACTIVITY)

        return flags

    def _calculate_suspicion_score(
        self,
        flags: Sequence[BehaviorFlag],
        performance: PerformanceMetrics,
        trade_count: int,
    ) -> int:
        """Weighted flag sum with combination bonuses, scaled by sample size.

        Scoring:
        - Points per active flag (see FLAG_POINTS)
        - +15 for high win rate together with fresh-wallet activity
        - +20 for perfect timing together with pre-news trading
        - Scaled by 0.5 + 0.5 * min(1, trades / 20)
        - +10 if win rate > 90% over at least 10 resolved trades

        Returns:
            Score in [0, 100].
        """
        score = float(sum(FLAG_POINTS.get(flag, 5) for flag in flags))
        if BehaviorFlag.HIGH_WIN_RATE in flags and BehaviorFlag.FRESH_WALLET_ACTIVITY in flags:
            score += HIGH_WIN_FRESH_WALLET_BONUS
        if BehaviorFlag.PERFECT_TIMING in flags and BehaviorFlag.PRE_NEWS_TRADING in flags:
            score += PERFECT_TIMING_PRE_NEWS_BONUS

        score *= 0.5 + 0.5 * min(1.0, trade_count / FULL_CONFIDENCE_TRADE_COUNT)

        if (
            performance.win_rate > PERFECT_TIMING_WIN_RATE
            and performance.resolved_trade_count >= MIN_RESOLVED_FOR_PERFORMANCE_FLAGS
        ):
            score += NEAR_PERFECT_WIN_RATE_BONUS

        return min(100, round(score))

    def _generate_insights(
        self,
        style: TradingStyle,
        frequency: TradingFrequency,
        performance: PerformanceMetrics,
        preferences: MarketPreferences,
        flags: Sequence[BehaviorFlag],
    ) -> list[str]:
        insights: list[str] = []
        if style != TradingStyle.UNKNOWN:
            insights.append(
                f"Trading style classified as {style.value.replace('_', ' ').lower()}"
            )
        insights.append(f"Trading frequency: {frequency.value.replace('_', ' ').lower()} trader")

        if performance.resolved_trade_count >= MIN_RESOLVED_FOR_PERFORMANCE_FLAGS:
            insights.append(
                f"Win rate: {round(performance.win_rate * 100)}% "
                f"({performance.win_count}/{performance.resolved_trade_count})"
            )
            if math.isinf(performance.profit_factor):
                insights.append("Profitable with no losing trades")
            elif performance.profit_factor > 2:
                insights.append(f"Strong profit factor of {performance.profit_factor:.1f}")

        if preferences.top_categories:
            insights.append(f"Primary market focus: {preferences.top_categories[0]}")
        if preferences.concentration_score > 0.7:
            insights.append("Highly concentrated in specific market categories")

        if BehaviorFlag.PERFECT_TIMING in flags:
            insights.append("Warning: suspiciously perfect timing on trades")
        if BehaviorFlag.HIGH_WIN_RATE in flags:
            insights.append("Warning: unusually high win rate detected")
        if BehaviorFlag.COORDINATED_ACTIVITY in flags:
            insights.append("Warning: potential coordination with other wallets")
        return insights
