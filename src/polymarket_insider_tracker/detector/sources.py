"""Signal providers feeding the composite suspicion scorer.

Each provider turns one detector's view of a wallet into a SignalReading.
The built-in providers read from the WalletBehaviorProfiler cache or the
WalletConcentrationAnalyzer; network signals (coordination, sybil clusters,
historical accuracy) come from external providers registered by the caller.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol, runtime_checkable

from polymarket_insider_tracker.detector.models import (
    SignalConfidence,
    SignalReading,
    SignalSource,
)
from polymarket_insider_tracker.profiler.behavior import WalletBehaviorProfiler
from polymarket_insider_tracker.profiler.concentration import WalletConcentrationAnalyzer
from polymarket_insider_tracker.profiler.models import (
    BehaviorFlag,
    ConcentrationSuspicion,
    ProfileConfidence,
    TradingStyle,
    WalletBehaviorProfile,
)

logger = logging.getLogger(__name__)

NO_PROFILE_REASON = "No behavior profile available"
INSUFFICIENT_HISTORY_REASON = "Insufficient trading history"

# Minimum history for performance and sizing signals
MIN_RESOLVED_TRADES = 5
MIN_SIZED_TRADES = 5

# Fresh wallet scoring
FRESH_FLAG_POINTS = 60.0
FEW_TRADES_POINTS = 20.0
FEW_TRADES_LIMIT = 10
FRESH_HIGH_WIN_POINTS = 20.0

# Win rate bands used in reasons
EXCEPTIONAL_WIN_RATE = 0.8
ABOVE_AVERAGE_WIN_RATE = 0.65

# Profit factor at which the profit signal saturates
PROFIT_FACTOR_CEILING = 5.0

# Timing scoring
OFF_HOURS_POINTS = 40.0
PRE_NEWS_POINTS = 40.0
PERFECT_TIMING_POINTS = 20.0

# Sizing scoring
WHALE_SHARE_POINTS = 60.0
UNUSUAL_SIZING_POINTS = 25.0
INCONSISTENCY_POINTS = 15.0

# Trading pattern scoring
INSIDER_PATTERN_SCORE = 80.0
SUSPICIOUS_PATTERN_SCORE = 50.0
FLAGGED_PATTERN_SCORE = 30.0

HEURISTIC_DATA_QUALITY = 70.0


@runtime_checkable
class SignalProvider(Protocol):
    """Anything that can score a wallet for one signal source."""

    async def evaluate(self, address: str) -> SignalReading:
        """Return a reading for ``address`` (checksummed)."""
        ...


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def confidence_from_profile(confidence: ProfileConfidence) -> SignalConfidence:
    if confidence in (ProfileConfidence.VERY_HIGH, ProfileConfidence.HIGH):
        return SignalConfidence.HIGH
    if confidence == ProfileConfidence.MODERATE:
        return SignalConfidence.MEDIUM
    return SignalConfidence.LOW


def confidence_from_quality(data_quality: float) -> SignalConfidence:
    if data_quality >= 80:
        return SignalConfidence.HIGH
    if data_quality >= 50:
        return SignalConfidence.MEDIUM
    return SignalConfidence.LOW


class ProfileSignalProvider:
    """Base for providers backed by cached behavior profiles.

    Subclasses implement ``score_profile``. A wallet without a live profile
    yields an unavailable reading.
    """

    def __init__(self, profiler: WalletBehaviorProfiler) -> None:
        self._profiler = profiler

    async def evaluate(self, address: str) -> SignalReading:
        profile = self._profiler.get_profile(address)
        if profile is None:
            return SignalReading.unavailable(NO_PROFILE_REASON)
        return self.score_profile(profile)

    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        raise NotImplementedError


class FreshWalletProvider(ProfileSignalProvider):
    """Large early trades on a wallet with little history."""

    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        score = 0.0
        flags: list[str] = []
        fresh = profile.has_flag(BehaviorFlag.FRESH_WALLET_ACTIVITY)
        if fresh:
            score += FRESH_FLAG_POINTS
            flags.append("Fresh wallet with large initial trade")
        if profile.trade_count < FEW_TRADES_LIMIT:
            score += FEW_TRADES_POINTS
        if fresh and profile.has_flag(BehaviorFlag.HIGH_WIN_RATE):
            score += FRESH_HIGH_WIN_POINTS
            flags.append("Fresh wallet with high win rate")

        if fresh:
            reason = f"Fresh wallet activity across {profile.trade_count} trades"
        else:
            reason = f"Established wallet with {profile.trade_count} trades"

        return SignalReading(
            score=_clamp(score),
            confidence=confidence_from_profile(profile.confidence),
            data_quality=100.0,
            reason=reason,
            flags=tuple(flags),
        )


class WinRateProvider(ProfileSignalProvider):
    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        performance = profile.performance
        resolved = performance.resolved_trade_count
        if resolved < MIN_RESOLVED_TRADES:
            return SignalReading.unavailable(INSUFFICIENT_HISTORY_REASON)

        win_rate = performance.win_rate
        score = _clamp((win_rate - 0.5) / 0.5 * 100)
        data_quality = min(100.0, resolved * 10.0)

        flags: list[str] = []
        if profile.has_flag(BehaviorFlag.HIGH_WIN_RATE):
            flags.append("Unusually high win rate")

        pct = round(win_rate * 100, 1)
        if win_rate >= EXCEPTIONAL_WIN_RATE:
            reason = f"Exceptionally high win rate ({pct}%)"
        elif win_rate >= ABOVE_AVERAGE_WIN_RATE:
            reason = f"Above average win rate ({pct}%)"
        else:
            reason = f"Win rate {pct}% across {resolved} positions"

        return SignalReading(
            score=score,
            confidence=confidence_from_quality(data_quality),
            data_quality=data_quality,
            reason=reason,
            flags=tuple(flags),
        )


class ProfitLossProvider(ProfileSignalProvider):
    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        performance = profile.performance
        resolved = performance.resolved_trade_count
        if resolved < MIN_RESOLVED_TRADES:
            return SignalReading.unavailable(INSUFFICIENT_HISTORY_REASON)

        profit_factor = performance.profit_factor
        if performance.total_pnl <= 0:
            score = 0.0
        elif math.isinf(profit_factor):
            score = 100.0
        else:
            score = _clamp((profit_factor - 1) / (PROFIT_FACTOR_CEILING - 1) * 100)

        data_quality = min(100.0, resolved * 10.0)
        flags: list[str] = []
        if profile.has_flag(BehaviorFlag.CONSISTENT_PROFITABILITY):
            flags.append("Consistent profitability")

        if math.isinf(profit_factor):
            factor_text = "no losing trades"
        else:
            factor_text = f"profit factor {profit_factor:.2f}"
        reason = f"Total PnL ${performance.total_pnl:,.2f} with {factor_text}"

        return SignalReading(
            score=score,
            confidence=confidence_from_quality(data_quality),
            data_quality=data_quality,
            reason=reason,
            flags=tuple(flags),
        )


class TimingPatternProvider(ProfileSignalProvider):
    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        off_hours = profile.time_distribution.off_hours_percentage
        score = off_hours * OFF_HOURS_POINTS
        flags: list[str] = []
        if profile.has_flag(BehaviorFlag.PRE_NEWS_TRADING):
            score += PRE_NEWS_POINTS
            flags.append("Pre-news trading")
        if profile.has_flag(BehaviorFlag.PERFECT_TIMING):
            score += PERFECT_TIMING_POINTS
            flags.append("Perfect timing on large trades")
        if profile.has_flag(BehaviorFlag.UNUSUAL_HOURS):
            flags.append("Trading at unusual hours")

        return SignalReading(
            score=_clamp(score),
            confidence=SignalConfidence.MEDIUM,
            data_quality=HEURISTIC_DATA_QUALITY,
            reason=f"{off_hours * 100:.0f}% of trades outside market hours",
            flags=tuple(flags),
        )


class PositionSizingProvider(ProfileSignalProvider):
    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        if profile.trade_count < MIN_SIZED_TRADES:
            return SignalReading.unavailable(INSUFFICIENT_HISTORY_REASON)

        sizing = profile.position_sizing
        score = sizing.whale_trade_percentage * WHALE_SHARE_POINTS
        flags: list[str] = []
        if profile.has_flag(BehaviorFlag.UNUSUAL_SIZING):
            score += UNUSUAL_SIZING_POINTS
            flags.append("Erratic position sizing")
        score += (1 - sizing.consistency_score) * INCONSISTENCY_POINTS
        data_quality = min(100.0, profile.trade_count * 5.0)

        return SignalReading(
            score=_clamp(score),
            confidence=confidence_from_quality(data_quality),
            data_quality=data_quality,
            reason=(
                f"Average trade ${sizing.avg_trade_size:,.2f}, "
                f"{sizing.whale_trade_percentage * 100:.0f}% whale trades"
            ),
            flags=tuple(flags),
        )


class TradingPatternProvider(ProfileSignalProvider):
    """Scores the profiler's trading style classification."""

    def score_profile(self, profile: WalletBehaviorProfile) -> SignalReading:
        if (
            profile.trading_style == TradingStyle.POTENTIAL_INSIDER
            or profile.has_flag(BehaviorFlag.PRE_NEWS_TRADING)
            or profile.has_flag(BehaviorFlag.COORDINATED_ACTIVITY)
        ):
            score = INSIDER_PATTERN_SCORE
        elif (
            profile.has_flag(BehaviorFlag.UNUSUAL_HOURS)
            or profile.has_flag(BehaviorFlag.MARKET_CONCENTRATION)
            or profile.has_flag(BehaviorFlag.HIGH_WIN_RATE)
        ):
            score = SUSPICIOUS_PATTERN_SCORE
        elif profile.behavior_flags:
            score = FLAGGED_PATTERN_SCORE
        else:
            score = 0.0

        flags: tuple[str, ...] = ()
        if profile.trading_style == TradingStyle.POTENTIAL_INSIDER:
            flags = ("Potential insider trading pattern",)
        elif profile.has_flag(BehaviorFlag.COORDINATED_ACTIVITY):
            flags = ("Coordinated trading activity",)

        return SignalReading(
            score=score,
            confidence=SignalConfidence.MEDIUM,
            data_quality=HEURISTIC_DATA_QUALITY,
            reason=f"Trading style: {profile.trading_style.value}",
            flags=flags,
        )


class MarketSelectionProvider:
    """Category concentration from the WalletConcentrationAnalyzer."""

    def __init__(self, analyzer: WalletConcentrationAnalyzer) -> None:
        self._analyzer = analyzer

    async def evaluate(self, address: str) -> SignalReading:
        result = self._analyzer.analyze(address)
        if result.total_trades == 0:
            return SignalReading.unavailable("No category trades recorded")

        data_quality = min(100.0, result.total_trades * 5.0)
        if result.suspicion_level == ConcentrationSuspicion.CRITICAL:
            reason = "Insider-like market selection pattern"
        else:
            reason = f"Market selection pattern: {result.specialist_type.value}"

        return SignalReading(
            score=_clamp(result.suspicion_score),
            confidence=confidence_from_quality(data_quality),
            data_quality=data_quality,
            reason=reason,
            flags=result.flag_reasons,
        )


def default_providers(
    profiler: WalletBehaviorProfiler,
    analyzer: WalletConcentrationAnalyzer,
) -> dict[SignalSource, SignalProvider]:
    """Built-in providers keyed by the source they report for."""
    return {
        SignalSource.FRESH_WALLET: FreshWalletProvider(profiler),
        SignalSource.WIN_RATE: WinRateProvider(profiler),
        SignalSource.PROFIT_LOSS: ProfitLossProvider(profiler),
        SignalSource.TIMING_PATTERN: TimingPatternProvider(profiler),
        SignalSource.POSITION_SIZING: PositionSizingProvider(profiler),
        SignalSource.TRADING_PATTERN: TradingPatternProvider(profiler),
        SignalSource.MARKET_SELECTION: MarketSelectionProvider(analyzer),
    }
