"""Market-category concentration analysis.

This module provides the WalletConcentrationAnalyzer class that measures how
strongly a wallet's trading is concentrated in particular market categories.
Specialists in categories where outcomes hinge on non-public information
(politics, legal rulings, health approvals) score higher suspicion.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from polymarket_insider_tracker.addresses import normalize_address
from polymarket_insider_tracker.cache import TTLCache
from polymarket_insider_tracker.profiler.models import (
    BatchConcentrationResult,
    CategoryStats,
    ConcentrationLevel,
    ConcentrationResult,
    ConcentrationSummary,
    ConcentrationSuspicion,
    ConcentrationTrade,
    MarketCategory,
    SpecialistType,
)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 30 * 60  # 30 minutes
DEFAULT_MAX_CACHE_SIZE = 5000
DEFAULT_MIN_TRADES = 5
DEFAULT_TIME_WINDOW_DAYS = 90
DEFAULT_SPECIALIST_THRESHOLD = 50.0

DEFAULT_HIGH_VALUE_CATEGORIES: frozenset[MarketCategory] = frozenset(
    {
        MarketCategory.POLITICS,
        MarketCategory.LEGAL,
        MarketCategory.HEALTH,
        MarketCategory.GEOPOLITICS,
        MarketCategory.BUSINESS,
        MarketCategory.ECONOMY,
    }
)
HIGH_VALUE_BOOST = 1.5

# Primary-category trade share (percent) at or above which each level applies
EXTREME_CONCENTRATION = 80.0
HIGH_CONCENTRATION = 60.0
MODERATE_CONCENTRATION = 40.0
LOW_CONCENTRATION = 20.0

# Secondary share needed for MULTI_SPECIALIST, as a fraction of the specialist threshold
MULTI_SPECIALIST_RATIO = 0.5

VOLUME_CONCENTRATION_PERCENT = 70.0

# Normalization floor for HHI: one trade share in each of the 14 categories
MIN_HHI = 1 / len(MarketCategory)

CATEGORY_SUSPICION_WEIGHTS: dict[MarketCategory, float] = {
    MarketCategory.POLITICS: 1.0,
    MarketCategory.LEGAL: 1.0,
    MarketCategory.HEALTH: 0.9,
    MarketCategory.GEOPOLITICS: 0.9,
    MarketCategory.BUSINESS: 0.8,
    MarketCategory.ECONOMY: 0.8,
    MarketCategory.CRYPTO: 0.6,
    MarketCategory.TECH: 0.6,
    MarketCategory.SCIENCE: 0.5,
    MarketCategory.ENTERTAINMENT: 0.3,
    MarketCategory.CULTURE: 0.3,
    MarketCategory.SPORTS: 0.2,
    MarketCategory.OTHER: 0.2,
    MarketCategory.WEATHER: 0.1,
}

CATEGORY_SPECIALIST: dict[MarketCategory, SpecialistType] = {
    MarketCategory.POLITICS: SpecialistType.POLITICAL_SPECIALIST,
    MarketCategory.CRYPTO: SpecialistType.CRYPTO_SPECIALIST,
    MarketCategory.SPORTS: SpecialistType.SPORTS_SPECIALIST,
    MarketCategory.TECH: SpecialistType.TECH_SPECIALIST,
    MarketCategory.BUSINESS: SpecialistType.BUSINESS_SPECIALIST,
    MarketCategory.ECONOMY: SpecialistType.BUSINESS_SPECIALIST,
    MarketCategory.SCIENCE: SpecialistType.SCIENCE_SPECIALIST,
    MarketCategory.ENTERTAINMENT: SpecialistType.ENTERTAINMENT_SPECIALIST,
    MarketCategory.CULTURE: SpecialistType.ENTERTAINMENT_SPECIALIST,
    MarketCategory.GEOPOLITICS: SpecialistType.GEOPOLITICAL_SPECIALIST,
    MarketCategory.LEGAL: SpecialistType.LEGAL_SPECIALIST,
    MarketCategory.HEALTH: SpecialistType.HEALTH_SPECIALIST,
    MarketCategory.WEATHER: SpecialistType.GENERALIST,
    MarketCategory.OTHER: SpecialistType.GENERALIST,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def herfindahl_index(breakdown: Sequence[CategoryStats]) -> float:
    """Sum of squared trade-count shares, in [0, 1]."""
    return min(1.0, sum((stats.trade_percentage / 100) ** 2 for stats in breakdown))


def concentration_level(primary_percentage: float) -> ConcentrationLevel:
    """Map the primary category's trade share (0-100) to a concentration level."""
    if primary_percentage >= EXTREME_CONCENTRATION:
        return ConcentrationLevel.EXTREME
    if primary_percentage >= HIGH_CONCENTRATION:
        return ConcentrationLevel.HIGH
    if primary_percentage >= MODERATE_CONCENTRATION:
        return ConcentrationLevel.MODERATE
    if primary_percentage >= LOW_CONCENTRATION:
        return ConcentrationLevel.LOW
    return ConcentrationLevel.DIVERSIFIED


def suspicion_level(score: float) -> ConcentrationSuspicion:
    if score >= 80:
        return ConcentrationSuspicion.CRITICAL
    if score >= 60:
        return ConcentrationSuspicion.HIGH
    if score >= 40:
        return ConcentrationSuspicion.MEDIUM
    if score >= 20:
        return ConcentrationSuspicion.LOW
    return ConcentrationSuspicion.MINIMAL


class WalletConcentrationAnalyzer:
    """Detects wallets that specialize in particular market categories.

    The analyzer keeps its own append-only trade store per wallet
    (``add_trades``) and caches one result per wallet. Adding trades for a
    wallet invalidates its cached result.

    Example:
        ```python
        analyzer = WalletConcentrationAnalyzer()
        analyzer.add_trades(address, trades)

        result = analyzer.analyze(address)
        if result.is_specialist:
            print(result.specialist_type, result.suspicion_level)
        ```
    """

    def __init__(
        self,
        *,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        min_trades: int = DEFAULT_MIN_TRADES,
        time_window_days: float = DEFAULT_TIME_WINDOW_DAYS,
        specialist_threshold: float = DEFAULT_SPECIALIST_THRESHOLD,
        high_value_categories: Iterable[MarketCategory] = DEFAULT_HIGH_VALUE_CATEGORIES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the concentration analyzer.

        Args:
            cache_ttl_seconds: Result cache TTL (default 30 minutes).
            max_cache_size: Maximum number of cached results.
            min_trades: Minimum trades in the window for a non-empty result.
            time_window_days: Only trades this recent are analyzed.
            specialist_threshold: Primary-category share (percent) for a specialist.
            high_value_categories: Categories whose suspicion weight is boosted.
            clock: Returns the current UTC time. Injectable for tests.
        """
        self._min_trades = min_trades
        self._time_window_days = time_window_days
        self._specialist_threshold = specialist_threshold
        self._high_value_categories = frozenset(high_value_categories)
        self._clock = clock or _utcnow
        self._trades: dict[str, list[ConcentrationTrade]] = {}
        self._cache: TTLCache[str, ConcentrationResult] = TTLCache(
            ttl_seconds=cache_ttl_seconds,
            max_size=max_cache_size,
            clock=lambda: self._clock().timestamp(),
        )

    # === Trade store ===

    def add_trades(self, address: str, trades: Iterable[ConcentrationTrade]) -> int:
        """Append trades for a wallet, skipping known trade IDs.

        Returns:
            Number of trades actually added.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        key = normalize_address(address)
        existing = self._trades.setdefault(key, [])
        known = {t.trade_id for t in existing}
        added = 0
        for trade in trades:
            if trade.trade_id in known:
                continue
            known.add(trade.trade_id)
            existing.append(trade)
            added += 1
        self._cache.delete(key)
        return added

    def get_trades(self, address: str) -> list[ConcentrationTrade]:
        return list(self._trades.get(normalize_address(address), ()))

    def clear_trades(self, address: str) -> None:
        key = normalize_address(address)
        self._trades.pop(key, None)
        self._cache.delete(key)

    # === Analysis ===

    def analyze(
        self,
        address: str,
        trades: Sequence[ConcentrationTrade] | None = None,
        *,
        min_trades: int | None = None,
        time_window_days: float | None = None,
        high_value_categories: Iterable[MarketCategory] | None = None,
        specialist_threshold: float | None = None,
        bypass_cache: bool = False,
    ) -> ConcentrationResult:
        """Analyze a wallet's category concentration.

        Uses the supplied trades, or the wallet's stored trades when none are
        given. A cached result for the wallet is returned unless
        ``bypass_cache`` is set.

        Returns:
            The analysis result. Fewer than ``min_trades`` trades inside the
            time window yields an empty, DIVERSIFIED/MINIMAL result.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        key = normalize_address(address)

        if not bypass_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Concentration cache hit for %s", key[:10] + "...")
                return self._with_from_cache(cached)

        min_trades = self._min_trades if min_trades is None else min_trades
        window_days = self._time_window_days if time_window_days is None else time_window_days
        high_value = (
            self._high_value_categories
            if high_value_categories is None
            else frozenset(high_value_categories)
        )
        threshold = (
            self._specialist_threshold if specialist_threshold is None else specialist_threshold
        )

        now = self._clock()
        cutoff = now - timedelta(days=window_days)
        source = self._trades.get(key, []) if trades is None else trades
        window = [t for t in source if t.timestamp >= cutoff]

        if len(window) < max(1, min_trades):
            result = self._empty_result(key, now)
            self._cache.set(key, result)
            return result

        breakdown = self._category_stats(window)
        hhi = herfindahl_index(breakdown)
        primary = breakdown[0]
        secondary = breakdown[1] if len(breakdown) > 1 else None

        score = self._concentration_score(primary, hhi)
        level = concentration_level(primary.trade_percentage)
        specialist = self._specialist_type(primary, secondary, threshold)
        suspicion_score = self._suspicion_score(breakdown, score, high_value)
        suspicion = suspicion_level(suspicion_score)

        result = ConcentrationResult(
            wallet_address=key,
            concentration_level=level,
            concentration_score=score,
            herfindahl_index=hhi,
            specialist_type=specialist,
            suspicion_level=suspicion,
            suspicion_score=suspicion_score,
            primary_category=primary.category,
            secondary_category=secondary.category if secondary else None,
            category_breakdown=tuple(breakdown),
            total_trades=len(window),
            total_volume=sum(t.size for t in window),
            unique_categories=len(breakdown),
            unique_markets=len({t.market_id for t in window}),
            is_specialist=specialist != SpecialistType.GENERALIST,
            flag_reasons=tuple(self._flag_reasons(primary, level, suspicion, high_value)),
            analyzed_at=self._next_analyzed_at(key, now),
        )
        self._cache.set(key, result)

        if suspicion.rank >= ConcentrationSuspicion.HIGH.rank:
            logger.info(
                "Concentrated wallet: wallet=%s, primary=%s (%.1f%%), suspicion=%s",
                key[:10] + "...",
                primary.category.value,
                primary.trade_percentage,
                suspicion.value,
            )
        return result

    async def analyze_batch(
        self,
        addresses: Sequence[str],
        **options: object,
    ) -> BatchConcentrationResult:
        """Analyze many wallets from their stored trades.

        Per-wallet failures are collected in ``errors`` keyed by the
        lowercased input address.
        """
        started = time.perf_counter()

        async def analyze_one(address: str) -> ConcentrationResult:
            return self.analyze(address, **options)  # type: ignore[arg-type]

        outcomes = await asyncio.gather(
            *(analyze_one(address) for address in addresses),
            return_exceptions=True,
        )

        results: dict[str, ConcentrationResult] = {}
        errors: dict[str, str] = {}
        for address, outcome in zip(addresses, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Concentration analysis failed for %s: %s", address, outcome)
                errors[address.lower()] = str(outcome)
            else:
                results[outcome.wallet_address] = outcome

        return BatchConcentrationResult(
            results=results,
            errors=errors,
            total_processed=len(addresses),
            success_count=len(results),
            error_count=len(errors),
            specialists_found=sum(1 for r in results.values() if r.is_specialist),
            processing_time_ms=(time.perf_counter() - started) * 1000,
        )

    # === Queries ===

    def is_specialist_in_category(self, address: str, category: MarketCategory) -> bool:
        result = self.analyze(address)
        return result.is_specialist and result.primary_category == category

    def has_high_concentration(self, address: str, threshold: float = 50.0) -> bool:
        """Return True if the primary category holds at least ``threshold`` percent of trades."""
        result = self.analyze(address)
        if not result.category_breakdown:
            return False
        return result.category_breakdown[0].trade_percentage >= threshold

    def get_specialists_in_category(self, category: MarketCategory) -> list[str]:
        return [
            address
            for address in list(self._trades)
            if self.is_specialist_in_category(address, category)
        ]

    def get_flagged_wallets(
        self,
        min_suspicion: ConcentrationSuspicion = ConcentrationSuspicion.MEDIUM,
    ) -> list[str]:
        return [
            address
            for address in list(self._trades)
            if self.analyze(address).suspicion_level.rank >= min_suspicion.rank
        ]

    def get_concentration_score(self, address: str) -> float:
        return self.analyze(address).concentration_score

    def get_summary(self) -> ConcentrationSummary:
        """Aggregate statistics over every wallet with stored trades."""
        results = [self.analyze(address) for address in list(self._trades)]
        primary_counts = Counter(r.primary_category for r in results if r.primary_category)
        return ConcentrationSummary(
            total_wallets_analyzed=len(results),
            specialists_count=sum(1 for r in results if r.is_specialist),
            specialist_type_breakdown=dict(Counter(r.specialist_type for r in results)),
            concentration_level_breakdown=dict(Counter(r.concentration_level for r in results)),
            suspicion_level_breakdown=dict(Counter(r.suspicion_level for r in results)),
            average_concentration_score=(
                sum(r.concentration_score for r in results) / len(results) if results else 0.0
            ),
            top_primary_categories=tuple(primary_counts.most_common(10)),
            cache_stats=self._cache.stats().to_dict(),
        )

    def clear(self) -> None:
        self._cache.clear()
        self._trades.clear()

    # === Helpers ===

    @staticmethod
    def _with_from_cache(result: ConcentrationResult) -> ConcentrationResult:
        return replace(result, from_cache=True)

    def _next_analyzed_at(self, key: str, now: datetime) -> datetime:
        previous = self._cache.peek(key)
        if previous is not None and previous.analyzed_at > now:
            return previous.analyzed_at
        return now

    def _empty_result(self, key: str, now: datetime) -> ConcentrationResult:
        return ConcentrationResult(
            wallet_address=key,
            concentration_level=ConcentrationLevel.DIVERSIFIED,
            concentration_score=0.0,
            herfindahl_index=0.0,
            specialist_type=SpecialistType.GENERALIST,
            suspicion_level=ConcentrationSuspicion.MINIMAL,
            suspicion_score=0.0,
            primary_category=None,
            secondary_category=None,
            category_breakdown=(),
            total_trades=0,
            total_volume=0.0,
            unique_categories=0,
            unique_markets=0,
            is_specialist=False,
            flag_reasons=(),
            analyzed_at=self._next_analyzed_at(key, now),
        )

    def _category_stats(self, trades: Sequence[ConcentrationTrade]) -> list[CategoryStats]:
        grouped: dict[MarketCategory, list[ConcentrationTrade]] = {}
        for trade in trades:
            grouped.setdefault(trade.category, []).append(trade)

        total_trades = len(trades)
        total_volume = sum(t.size for t in trades)
        stats = []
        for category, items in grouped.items():
            volume = sum(t.size for t in items)
            timestamps = [t.timestamp for t in items]
            stats.append(
                CategoryStats(
                    category=category,
                    trade_count=len(items),
                    trade_percentage=len(items) / total_trades * 100,
                    total_volume=volume,
                    volume_percentage=volume / total_volume * 100 if total_volume > 0 else 0.0,
                    avg_trade_size=volume / len(items),
                    unique_markets=len({t.market_id for t in items}),
                    first_trade_at=min(timestamps),
                    last_trade_at=max(timestamps),
                )
            )
        # Stable sort keeps first-seen order among ties.
        stats.sort(key=lambda s: s.trade_count, reverse=True)
        return stats

    @staticmethod
    def _concentration_score(primary: CategoryStats, hhi: float) -> float:
        """Blend of normalized HHI (40%) and primary-category share (60%), 0-100."""
        normalized_hhi = (hhi - MIN_HHI) / (1 - MIN_HHI) * 100
        score = normalized_hhi * 0.4 + primary.trade_percentage * 0.6
        return min(100.0, max(0.0, score))

    @staticmethod
    def _specialist_type(
        primary: CategoryStats,
        secondary: CategoryStats | None,
        threshold: float,
    ) -> SpecialistType:
        if primary.trade_percentage < threshold:
            return SpecialistType.GENERALIST
        multi_threshold = threshold * MULTI_SPECIALIST_RATIO
        if secondary is not None and secondary.trade_percentage >= multi_threshold:
            return SpecialistType.MULTI_SPECIALIST
        return CATEGORY_SPECIALIST.get(primary.category, SpecialistType.GENERALIST)

    @staticmethod
    def _suspicion_score(
        breakdown: Sequence[CategoryStats],
        concentration_score: float,
        high_value: frozenset[MarketCategory],
    ) -> float:
        weighted = sum(
            stats.trade_percentage
            / 100
            * CATEGORY_SUSPICION_WEIGHTS.get(stats.category, 0.2)
            * (HIGH_VALUE_BOOST if stats.category in high_value else 1.0)
            for stats in breakdown
        )
        return min(100.0, max(0.0, weighted * 50 + concentration_score * 0.5))

    @staticmethod
    def _flag_reasons(
        primary: CategoryStats,
        level: ConcentrationLevel,
        suspicion: ConcentrationSuspicion,
        high_value: frozenset[MarketCategory],
    ) -> list[str]:
        reasons: list[str] = []
        category = primary.category.value
        if level == ConcentrationLevel.EXTREME:
            reasons.append(
                f"Extreme concentration: {primary.trade_percentage:.1f}% of trades in {category}"
            )
        elif level == ConcentrationLevel.HIGH:
            reasons.append(
                f"High concentration: {primary.trade_percentage:.1f}% of trades in {category}"
            )

        if primary.category in high_value:
            reasons.append(f"Primary focus on high-value category: {category}")

        if suspicion == ConcentrationSuspicion.CRITICAL:
            reasons.append(
                "Critical suspicion level due to concentration in insider-prone categories"
            )
        elif suspicion == ConcentrationSuspicion.HIGH:
            reasons.append("High suspicion level due to trading pattern")

        # Volume share is tracked separately from trade-count share.
        if primary.volume_percentage > VOLUME_CONCENTRATION_PERCENT:
            reasons.append(
                f"Volume concentration: {primary.volume_percentage:.1f}% of volume in {category}"
            )
        return reasons
