"""Composite suspicion scorer combining all wallet signals.

This module provides the CompositeSuspicionScorer class that evaluates every
registered signal provider for a wallet and aggregates the readings into a
single 0-100 suspicion score with category breakdown, risk flags and a
potential-insider verdict.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, NamedTuple

import numpy as np

from polymarket_insider_tracker.addresses import to_checksum_address
from polymarket_insider_tracker.cache import TTLCache
from polymarket_insider_tracker.detector.models import (
    CATEGORY_NAMES,
    SIGNAL_CATEGORY_MAP,
    SIGNAL_NAMES,
    BatchScoreResult,
    CategoryBreakdown,
    CompositeScoreResult,
    RiskFlag,
    ScorerSummary,
    SignalAvailability,
    SignalCategory,
    SignalConfidence,
    SignalContribution,
    SignalReading,
    SignalSource,
    SuspicionLevel,
    SuspicionThresholds,
)
from polymarket_insider_tracker.detector.sources import SignalProvider
from polymarket_insider_tracker.events import EventEmitter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_SIGNALS = 3
DEFAULT_CACHE_TTL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_CACHE_SIZE = 1000
DEFAULT_FLAG_THRESHOLD = 50.0
DEFAULT_INSIDER_THRESHOLD = 70.0
DEFAULT_INSIDER_SIGNAL_THRESHOLD = 70.0

# Default weights for each signal source
DEFAULT_SIGNAL_WEIGHTS: dict[SignalSource, float] = {
    SignalSource.FRESH_WALLET: 0.10,
    SignalSource.WIN_RATE: 0.12,
    SignalSource.PROFIT_LOSS: 0.12,
    SignalSource.TIMING_PATTERN: 0.10,
    SignalSource.POSITION_SIZING: 0.08,
    SignalSource.MARKET_SELECTION: 0.10,
    SignalSource.COORDINATION: 0.12,
    SignalSource.SYBIL: 0.10,
    SignalSource.ACCURACY: 0.10,
    SignalSource.TRADING_PATTERN: 0.06,
}

DEFAULT_CATEGORY_WEIGHTS: dict[SignalCategory, float] = {
    SignalCategory.WALLET_PROFILE: 0.15,
    SignalCategory.PERFORMANCE: 0.35,
    SignalCategory.BEHAVIOR: 0.25,
    SignalCategory.NETWORK: 0.25,
}

# Correlation boosts
STRONG_SIGNAL_SCORE = 60.0
STRONG_SIGNAL_MIN_COUNT = 3
STRONG_SIGNAL_STEP = 0.05
MAX_CORRELATION_BOOST = 1.25
CROSS_CATEGORY_SCORE = 50.0
CROSS_CATEGORY_BOOST = 1.1

KEY_FINDING_SCORE = 80.0
MAX_KEY_FINDINGS = 10
MAX_COMMON_FLAGS = 10

UNAVAILABLE_REASON = "Data not available"
WEIGHT_SUM_TOLERANCE = 0.01

INSIDER_EVIDENCE_CATEGORIES = frozenset({SignalCategory.NETWORK, SignalCategory.PERFORMANCE})


@dataclass(frozen=True)
class ScorerConfig:
    """Tunable parameters of the composite scorer."""

    signal_weights: dict[SignalSource, float] = field(
        default_factory=lambda: dict(DEFAULT_SIGNAL_WEIGHTS)
    )
    category_weights: dict[SignalCategory, float] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS)
    )
    suspicion_thresholds: SuspicionThresholds = SuspicionThresholds()
    min_signals: int = DEFAULT_MIN_SIGNALS
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    max_cache_size: int = DEFAULT_MAX_CACHE_SIZE
    flag_threshold: float = DEFAULT_FLAG_THRESHOLD
    insider_threshold: float = DEFAULT_INSIDER_THRESHOLD
    insider_signal_threshold: float = DEFAULT_INSIDER_SIGNAL_THRESHOLD


class _Registration(NamedTuple):
    provider: SignalProvider
    category: SignalCategory


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _sanitize_weights(weights: Mapping[Any, float], label: str) -> dict[Any, float]:
    """Replace negative or non-finite weights with 0 and warn on a bad total."""
    cleaned: dict[Any, float] = {}
    for key, weight in weights.items():
        if not math.isfinite(weight) or weight < 0:
            logger.warning("Ignoring invalid %s weight for %s: %s", label, key.value, weight)
            weight = 0.0
        cleaned[key] = float(weight)
    total = sum(cleaned.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        logger.warning("%s weights sum to %.3f, scores will be renormalised", label, total)
    return cleaned


def _signal_aggregates(
    results: Iterable[CompositeScoreResult],
) -> tuple[dict[SignalSource, SignalAvailability], tuple[tuple[str, int], ...]]:
    """Per-source availability and the most common risk flags across results."""
    availability: dict[SignalSource, list[int]] = {s: [0, 0] for s in SignalSource}
    flag_counts: Counter[str] = Counter()
    for result in results:
        for contribution in result.signal_contributions:
            counts = availability[contribution.source]
            counts[1] += 1
            if contribution.available:
                counts[0] += 1
        flag_counts.update(f.description for f in result.risk_flags)

    rates = {
        source: SignalAvailability(available=counts[0], total=counts[1])
        for source, counts in availability.items()
    }
    return rates, tuple(flag_counts.most_common(MAX_COMMON_FLAGS))


def categorize_flag(flag: str) -> str:
    """Map a free-text risk flag onto a display category."""
    text = flag.lower()
    if "insider" in text or "accuracy" in text:
        return "Insider Risk"
    if "sybil" in text or "cluster" in text:
        return "Sybil Risk"
    if "coordinat" in text:
        return "Coordination"
    if "win" in text or "profit" in text:
        return "Performance"
    if "timing" in text:
        return "Timing"
    if "size" in text or "sizing" in text or "position" in text:
        return "Sizing"
    return "General"


class CompositeSuspicionScorer:
    """Aggregates wallet signals into a unified suspicion assessment.

    This scorer:
    - Evaluates every registered signal provider concurrently
    - Averages available signals within each category by signal weight
    - Averages categories with available signals by category weight
    - Boosts the score when several strong signals agree
    - Caches results per wallet and emits events for flagged wallets

    Scoring Formula:
        category_score = sum(raw * weight) / sum(weight)   # available signals
        composite = sum(category_score * category_weight) / sum(category_weight)

        # Correlation boost
        if strong_signals >= 3: composite *= min(1 + (n - 2) * 0.05, 1.25)
        elif network >= 50 and performance >= 50: composite *= 1.1

        final_score = clamp(round(composite), 0, 100)   # 0 if < min_signals available

    Events:
        score-calculated(result), wallet-flagged(result), potential-insider(result)

    Example:
        ```python
        scorer = CompositeSuspicionScorer(
            providers=default_providers(profiler, analyzer),
        )
        scorer.register_source(SignalSource.SYBIL, sybil_detector)

        result = await scorer.calculate_score(address)
        if result.should_flag:
            await send_alert(result)
        ```
    """

    def __init__(
        self,
        *,
        providers: Mapping[SignalSource, SignalProvider] | None = None,
        config: ScorerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            providers: Signal providers keyed by source.
            config: Weights, thresholds and cache limits.
            clock: Returns the current UTC time. Injectable for tests.
        """
        self._config = self._validated(config or ScorerConfig())
        self._clock = clock or _utcnow
        self._sources: dict[SignalSource, _Registration] = {}
        self._cache = self._new_cache()
        self.events = EventEmitter()
        for source, provider in (providers or {}).items():
            self.register_source(source, provider)

    def _new_cache(self) -> TTLCache[str, CompositeScoreResult]:
        return TTLCache(
            ttl_seconds=self._config.cache_ttl_seconds,
            max_size=self._config.max_cache_size,
            clock=lambda: self._clock().timestamp(),
        )

    # === Source registry ===

    def register_source(
        self,
        source: SignalSource,
        provider: SignalProvider,
        category: SignalCategory | None = None,
    ) -> None:
        """Register (or replace) the provider for a signal source."""
        self._sources[source] = _Registration(
            provider=provider,
            category=category or SIGNAL_CATEGORY_MAP[source],
        )
        logger.debug("Registered signal source %s", source.value)

    def unregister_source(self, source: SignalSource) -> bool:
        return self._sources.pop(source, None) is not None

    def get_registered_sources(self) -> list[SignalSource]:
        return list(self._sources)

    # === Scoring ===

    async def calculate_score(
        self,
        address: str,
        *,
        use_cache: bool = True,
        skip_signals: Iterable[SignalSource] = (),
        min_signals: int | None = None,
    ) -> CompositeScoreResult:
        """Calculate the composite suspicion score for a wallet.

        Only results computed with default options are cached and served
        from cache.

        Args:
            address: Wallet address in any case.
            use_cache: Return a live cached result if one exists.
            skip_signals: Sources to leave out of this calculation.
            min_signals: Override the minimum number of available signals.

        Returns:
            CompositeScoreResult for the wallet.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        checksum = to_checksum_address(address)
        skip = frozenset(skip_signals)
        default_options = not skip and min_signals is None

        if use_cache and default_options:
            cached = self._cache.get(checksum)
            if cached is not None:
                logger.debug("Composite score cache hit for %s", checksum[:10] + "...")
                return replace(cached, from_cache=True)

        sources = [s for s in SignalSource if s not in skip]
        contributions = await asyncio.gather(
            *(self._evaluate(checksum, source) for source in sources)
        )
        result = self._build_result(
            checksum,
            list(contributions),
            self._config.min_signals if min_signals is None else min_signals,
        )

        if default_options:
            self._cache.set(checksum, result)

        self.events.emit("score-calculated", result)
        if result.should_flag:
            logger.info(
                "Wallet flagged: wallet=%s, score=%d, level=%s",
                checksum[:10] + "...",
                result.composite_score,
                result.suspicion_level.value,
            )
            self.events.emit("wallet-flagged", result)
        if result.is_potential_insider:
            self.events.emit("potential-insider", result)
        return result

    async def batch_calculate_scores(
        self,
        addresses: Sequence[str],
        *,
        use_cache: bool = True,
        skip_signals: Iterable[SignalSource] = (),
        min_signals: int | None = None,
    ) -> BatchScoreResult:
        """Score many wallets concurrently.

        Per-wallet failures (e.g. a malformed address) are collected in
        ``failed`` keyed by the input address; the rest still complete.
        """
        skip = tuple(skip_signals)
        outcomes = await asyncio.gather(
            *(
                self.calculate_score(
                    address, use_cache=use_cache, skip_signals=skip, min_signals=min_signals
                )
                for address in addresses
            ),
            return_exceptions=True,
        )

        results: dict[str, CompositeScoreResult] = {}
        failed: dict[str, Exception] = {}
        by_level = {level: 0 for level in SuspicionLevel}
        for address, outcome in zip(addresses, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Scoring failed for %s: %s", address, outcome)
                failed[address] = outcome
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results[outcome.wallet_address] = outcome
            by_level[outcome.suspicion_level] += 1

        scores = [r.composite_score for r in results.values()]
        availability, common_flags = _signal_aggregates(results.values())
        return BatchScoreResult(
            results=results,
            failed=failed,
            total_processed=len(addresses),
            average_score=round(float(np.mean(scores)), 2) if scores else 0.0,
            by_level=by_level,
            processed_at=self._clock(),
            signal_availability=availability,
            common_flags=common_flags,
        )

    async def _evaluate(self, address: str, source: SignalSource) -> SignalContribution:
        registration = self._sources.get(source)
        category = registration.category if registration else SIGNAL_CATEGORY_MAP[source]
        if registration is None:
            reading = SignalReading.unavailable(UNAVAILABLE_REASON)
        else:
            try:
                reading = await registration.provider.evaluate(address)
            except Exception as e:
                logger.warning(
                    "Signal %s failed for %s: %s", source.value, address[:10] + "...", e
                )
                reading = SignalReading.unavailable(UNAVAILABLE_REASON)
        return self._contribution(source, category, reading)

    def _contribution(
        self,
        source: SignalSource,
        category: SignalCategory,
        reading: SignalReading,
    ) -> SignalContribution:
        weight = self._config.signal_weights.get(source, 0.0)
        available = reading.available and math.isfinite(reading.score)
        if not available:
            return SignalContribution(
                source=source,
                category=category,
                name=SIGNAL_NAMES[source],
                raw_score=0.0,
                weight=weight,
                weighted_score=0.0,
                confidence=SignalConfidence.LOW,
                data_quality=0.0,
                available=False,
                reason=reading.reason or UNAVAILABLE_REASON,
            )

        raw = max(0.0, min(100.0, float(reading.score)))
        data_quality = reading.data_quality if math.isfinite(reading.data_quality) else 0.0
        return SignalContribution(
            source=source,
            category=category,
            name=SIGNAL_NAMES[source],
            raw_score=raw,
            weight=weight,
            weighted_score=raw * weight,
            confidence=reading.confidence,
            data_quality=max(0.0, min(100.0, data_quality)),
            available=True,
            reason=reading.reason,
            flags=tuple(reading.flags),
        )

    def _build_result(
        self,
        address: str,
        contributions: list[SignalContribution],
        min_signals: int,
    ) -> CompositeScoreResult:
        config = self._config
        available = [c for c in contributions if c.available]

        breakdown: list[CategoryBreakdown] = []
        category_scores: dict[SignalCategory, float] = {}
        for category in SignalCategory:
            signals = [c for c in contributions if c.category == category]
            live = [c for c in signals if c.available]
            weight_sum = sum(c.weight for c in live)
            score = sum(c.weighted_score for c in live) / weight_sum if weight_sum > 0 else 0.0
            if weight_sum > 0:
                category_scores[category] = score
            breakdown.append(
                CategoryBreakdown(
                    category=category,
                    name=CATEGORY_NAMES[category],
                    score=round(score, 2),
                    weight=config.category_weights.get(category, 0.0),
                    signal_count=len(signals),
                    available_signals=len(live),
                    signals=tuple(signals),
                )
            )

        if len(available) < min_signals:
            composite = 0
        else:
            composite = self._aggregate(category_scores, available)

        level = config.suspicion_thresholds.classify(composite)
        top_signals = sorted(available, key=lambda c: c.weighted_score, reverse=True)
        risk_flags = self._risk_flags(available)
        is_insider = composite >= config.insider_threshold and any(
            c.category in INSIDER_EVIDENCE_CATEGORIES
            and c.raw_score >= config.insider_signal_threshold
            and c.confidence == SignalConfidence.HIGH
            for c in available
        )

        if available:
            avg_quality = sum(c.data_quality for c in available) / len(available)
            data_quality = float(round(avg_quality * len(available) / len(contributions)))
        else:
            data_quality = 0.0

        return CompositeScoreResult(
            wallet_address=address,
            composite_score=composite,
            suspicion_level=level,
            should_flag=composite >= config.flag_threshold,
            is_potential_insider=is_insider,
            signal_contributions=tuple(contributions),
            category_breakdown=tuple(breakdown),
            top_signals=tuple(top_signals),
            risk_flags=tuple(risk_flags),
            data_quality=data_quality,
            available_signals=len(available),
            total_signals=len(contributions),
            summary=tuple(
                self._summary(composite, level, top_signals, risk_flags, is_insider)
            ),
            key_findings=tuple(
                f"{c.name}: {c.reason}"
                for c in top_signals
                if c.raw_score >= KEY_FINDING_SCORE
            )[:MAX_KEY_FINDINGS],
            analyzed_at=self._next_analyzed_at(address),
        )

    def _aggregate(
        self,
        category_scores: Mapping[SignalCategory, float],
        available: Sequence[SignalContribution],
    ) -> int:
        weights = self._config.category_weights
        total_weight = sum(weights.get(c, 0.0) for c in category_scores)
        if total_weight <= 0:
            return 0
        score = sum(s * weights.get(c, 0.0) for c, s in category_scores.items()) / total_weight

        strong = sum(1 for c in available if c.raw_score >= STRONG_SIGNAL_SCORE)
        if strong >= STRONG_SIGNAL_MIN_COUNT:
            score *= min(1 + (strong - 2) * STRONG_SIGNAL_STEP, MAX_CORRELATION_BOOST)
        elif (
            category_scores.get(SignalCategory.NETWORK, 0.0) >= CROSS_CATEGORY_SCORE
            and category_scores.get(SignalCategory.PERFORMANCE, 0.0) >= CROSS_CATEGORY_SCORE
        ):
            score *= CROSS_CATEGORY_BOOST

        return int(max(0, min(100, round(score))))

    @staticmethod
    def _risk_flags(available: Sequence[SignalContribution]) -> list[RiskFlag]:
        severities: dict[str, float] = {}
        sources: dict[str, list[SignalSource]] = {}
        for contribution in available:
            for flag in contribution.flags:
                severities[flag] = max(severities.get(flag, 0.0), contribution.raw_score)
                sources.setdefault(flag, []).append(contribution.source)

        flags = [
            RiskFlag(
                category=categorize_flag(flag),
                severity=severity,
                description=flag,
                sources=tuple(sources[flag]),
            )
            for flag, severity in severities.items()
        ]
        flags.sort(key=lambda f: f.severity, reverse=True)
        return flags

    @staticmethod
    def _summary(
        score: int,
        level: SuspicionLevel,
        top_signals: Sequence[SignalContribution],
        risk_flags: Sequence[RiskFlag],
        is_insider: bool,
    ) -> list[str]:
        lines = [f"Composite suspicion score: {score}/100 ({level.value})"]
        if top_signals:
            top = top_signals[0]
            lines.append(f"Top signal: {top.name} ({top.raw_score:.0f}/100)")
        if risk_flags:
            lines.append(f"{len(risk_flags)} risk flag(s) identified")
        if level == SuspicionLevel.CRITICAL:
            lines.append("CRITICAL: This wallet shows strong indicators of insider activity")
        elif level == SuspicionLevel.HIGH:
            lines.append("HIGH SUSPICION: Multiple concerning patterns detected")
        if is_insider:
            lines.append("Flagged as potential insider")
        return lines

    def _next_analyzed_at(self, address: str) -> datetime:
        now = self._clock()
        previous = self._cache.peek(address)
        if previous is not None and previous.analyzed_at > now:
            return previous.analyzed_at
        return now

    # === Queries ===

    def get_cached_result(self, address: str) -> CompositeScoreResult | None:
        return self._cache.peek(to_checksum_address(address))

    def get_high_suspicion_wallets(
        self, min_level: SuspicionLevel = SuspicionLevel.HIGH
    ) -> list[CompositeScoreResult]:
        """Cached results at or above ``min_level``, highest score first."""
        results = [r for r in self._cache.values() if r.suspicion_level.rank >= min_level.rank]
        return sorted(results, key=lambda r: r.composite_score, reverse=True)

    def get_potential_insiders(self) -> list[CompositeScoreResult]:
        results = [r for r in self._cache.values() if r.is_potential_insider]
        return sorted(results, key=lambda r: r.composite_score, reverse=True)

    def get_summary(self) -> ScorerSummary:
        """Summarize every live cached result."""
        results = self._cache.values()
        scores = [r.composite_score for r in results]

        by_level = {level: 0 for level in SuspicionLevel}
        for result in results:
            by_level[result.suspicion_level] += 1
        availability, common_flags = _signal_aggregates(results)

        return ScorerSummary(
            total_wallets_scored=len(results),
            by_level=by_level,
            average_score=round(float(np.mean(scores)), 2) if scores else 0.0,
            median_score=float(np.median(scores)) if scores else None,
            signal_availability=availability,
            common_flags=common_flags,
            cache_stats=self._cache.stats().to_dict(),
        )

    # === Cache and configuration ===

    def invalidate_cache(self, address: str) -> bool:
        return self._cache.delete(to_checksum_address(address))

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_config(self) -> ScorerConfig:
        return replace(
            self._config,
            signal_weights=dict(self._config.signal_weights),
            category_weights=dict(self._config.category_weights),
        )

    def update_config(self, **changes: Any) -> ScorerConfig:
        """Apply a partial configuration update and clear the result cache.

        Weight maps are merged into the current weights rather than replacing
        them.

        Raises:
            TypeError: If a change names an unknown config field.
        """
        if "signal_weights" in changes:
            changes["signal_weights"] = {
                **self._config.signal_weights,
                **changes["signal_weights"],
            }
        if "category_weights" in changes:
            changes["category_weights"] = {
                **self._config.category_weights,
                **changes["category_weights"],
            }

        previous = self._config
        self._config = self._validated(replace(previous, **changes))
        if (
            self._config.cache_ttl_seconds != previous.cache_ttl_seconds
            or self._config.max_cache_size != previous.max_cache_size
        ):
            self._cache = self._new_cache()
        else:
            self._cache.clear()

        logger.info("Updated composite scorer config: %s", sorted(changes))
        return self.get_config()

    def get_weights(self) -> dict[SignalSource, float]:
        """Get current signal weights."""
        return dict(self._config.signal_weights)

    def set_weights(self, weights: Mapping[SignalSource, float]) -> None:
        """Update signal weights.

        Args:
            weights: Partial mapping merged into the current weights.
        """
        self.update_config(signal_weights=dict(weights))
        logger.info("Updated composite scorer weights: %s", self._config.signal_weights)

    @staticmethod
    def _validated(config: ScorerConfig) -> ScorerConfig:
        return replace(
            config,
            signal_weights=_sanitize_weights(config.signal_weights, "Signal"),
            category_weights=_sanitize_weights(config.category_weights, "Category"),
        )
