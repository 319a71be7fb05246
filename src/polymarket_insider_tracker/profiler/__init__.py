"""Wallet profiling layer - Behavior profiles and category concentration."""

from polymarket_insider_tracker.profiler.behavior import WalletBehaviorProfiler
from polymarket_insider_tracker.profiler.concentration import WalletConcentrationAnalyzer
from polymarket_insider_tracker.profiler.models import (
    BehaviorFlag,
    ConcentrationResult,
    ConcentrationTrade,
    MarketCategory,
    ProfileTrade,
    SpecialistType,
    TradingStyle,
    WalletBehaviorProfile,
)

__all__ = [
    "BehaviorFlag",
    "ConcentrationResult",
    "ConcentrationTrade",
    "MarketCategory",
    "ProfileTrade",
    "SpecialistType",
    "TradingStyle",
    "WalletBehaviorProfile",
    "WalletBehaviorProfiler",
    "WalletConcentrationAnalyzer",
]
