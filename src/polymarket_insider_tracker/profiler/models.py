"""Data models for the profiler module."""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds when the value is too large to be seconds.
        seconds = value / 1000 if value > 1e11 else value
        ts = datetime.fromtimestamp(seconds, tz=UTC)
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def _finite(value: float) -> float | None:
    """JSON-safe float: None for NaN/inf."""
    return value if math.isfinite(value) else None


# === Enumerations ===


class TradingFrequency(str, Enum):
    """Trades-per-month buckets."""

    RARE = "RARE"
    OCCASIONAL = "OCCASIONAL"
    REGULAR = "REGULAR"
    FREQUENT = "FREQUENT"
    VERY_FREQUENT = "VERY_FREQUENT"


class TradingStyle(str, Enum):
    UNKNOWN = "UNKNOWN"
    SCALPER = "SCALPER"
    DAY_TRADER = "DAY_TRADER"
    SWING_TRADER = "SWING_TRADER"
    POSITION_TRADER = "POSITION_TRADER"
    MARKET_MAKER = "MARKET_MAKER"
    EVENT_TRADER = "EVENT_TRADER"
    POTENTIAL_INSIDER = "POTENTIAL_INSIDER"


class RiskAppetite(str, Enum):
    VERY_CONSERVATIVE = "VERY_CONSERVATIVE"
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"
    VERY_AGGRESSIVE = "VERY_AGGRESSIVE"


class ProfileConfidence(str, Enum):
    """How much trade history backs a profile."""

    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class BehaviorFlag(str, Enum):
    UNUSUAL_HOURS = "UNUSUAL_HOURS"
    MARKET_CONCENTRATION = "MARKET_CONCENTRATION"
    HIGH_WIN_RATE = "HIGH_WIN_RATE"
    PERFECT_TIMING = "PERFECT_TIMING"
    COORDINATED_ACTIVITY = "COORDINATED_ACTIVITY"
    UNUSUAL_SIZING = "UNUSUAL_SIZING"
    FRESH_WALLET_ACTIVITY = "FRESH_WALLET_ACTIVITY"
    PRE_NEWS_TRADING = "PRE_NEWS_TRADING"
    CONSISTENT_PROFITABILITY = "CONSISTENT_PROFITABILITY"
    ABNORMAL_FREQUENCY = "ABNORMAL_FREQUENCY"


class MarketCategory(str, Enum):
    """Prediction-market categories used for concentration analysis."""

    POLITICS = "politics"
    CRYPTO = "crypto"
    SPORTS = "sports"
    TECH = "tech"
    BUSINESS = "business"
    SCIENCE = "science"
    ENTERTAINMENT = "entertainment"
    WEATHER = "weather"
    GEOPOLITICS = "geopolitics"
    LEGAL = "legal"
    HEALTH = "health"
    ECONOMY = "economy"
    CULTURE = "culture"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | MarketCategory | None) -> MarketCategory:
        """Map a free-form category label onto a known category (OTHER if unknown)."""
        if isinstance(value, MarketCategory):
            return value
        if not value:
            return cls.OTHER
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class ConcentrationLevel(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"
    DIVERSIFIED = "DIVERSIFIED"


class SpecialistType(str, Enum):
    POLITICAL_SPECIALIST = "POLITICAL_SPECIALIST"
    CRYPTO_SPECIALIST = "CRYPTO_SPECIALIST"
    SPORTS_SPECIALIST = "SPORTS_SPECIALIST"
    BUSINESS_SPECIALIST = "BUSINESS_SPECIALIST"
    LEGAL_SPECIALIST = "LEGAL_SPECIALIST"
    GEOPOLITICAL_SPECIALIST = "GEOPOLITICAL_SPECIALIST"
    HEALTH_SPECIALIST = "HEALTH_SPECIALIST"
    TECH_SPECIALIST = "TECH_SPECIALIST"
    SCIENCE_SPECIALIST = "SCIENCE_SPECIALIST"
    ENTERTAINMENT_SPECIALIST = "ENTERTAINMENT_SPECIALIST"
    GENERALIST = "GENERALIST"
    MULTI_SPECIALIST = "MULTI_SPECIALIST"


class ConcentrationSuspicion(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    MINIMAL = "MINIMAL"

    @property
    def rank(self) -> int:
        """Ordinal severity, MINIMAL=0 .. CRITICAL=4."""
        return _SUSPICION_RANK[self]


_SUSPICION_RANK = {
    ConcentrationSuspicion.MINIMAL: 0,
    ConcentrationSuspicion.LOW: 1,
    ConcentrationSuspicion.MEDIUM: 2,
    ConcentrationSuspicion.HIGH: 3,
    ConcentrationSuspicion.CRITICAL: 4,
}


# === Trades ===


@dataclass(frozen=True)
class ProfileTrade:
    """A single trade used for behavior profiling.

    Attributes:
        trade_id: Unique trade identifier (dedup key within a wallet).
        market_id: Market condition ID.
        market_category: Free-form category label.
        side: "buy" or "sell".
        size_usd: Trade notional in USD.
        price: Execution price (0-1 for binary outcomes).
        timestamp: Execution time (timezone-aware).
        is_maker: Whether the wallet provided liquidity.
        is_winner: Outcome of the position once resolved.
        pnl: Realized PnL in USD once resolved, None while open.
        flags: Upstream annotations such as "pre_event" or "coordinated".
    """

    trade_id: str
    market_id: str
    market_category: str
    side: Literal["buy", "sell"]
    size_usd: float
    price: float
    timestamp: datetime
    is_maker: bool = False
    is_winner: bool | None = None
    pnl: float | None = None
    flags: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProfileTrade:
        """Create a ProfileTrade from a query-layer dictionary."""
        pnl = data.get("pnl")
        is_winner = data.get("is_winner")
        return cls(
            trade_id=str(data["trade_id"]),
            market_id=str(data["market_id"]),
            market_category=str(data.get("market_category") or "unknown"),
            side="sell" if str(data.get("side", "buy")).lower() == "sell" else "buy",
            size_usd=float(data["size_usd"]),
            price=float(data.get("price", 0.0)),
            timestamp=_parse_timestamp(data["timestamp"]),
            is_maker=bool(data.get("is_maker", False)),
            is_winner=bool(is_winner) if is_winner is not None else None,
            pnl=float(pnl) if pnl is not None else None,
            flags=tuple(str(f) for f in data.get("flags") or ()),
        )


@dataclass(frozen=True)
class ConcentrationTrade:
    """A trade as seen by the category concentration analyzer."""

    trade_id: str
    market_id: str
    category: MarketCategory
    size: float
    timestamp: datetime
    market_question: str | None = None

    @classmethod
    def from_profile_trade(cls, trade: ProfileTrade) -> ConcentrationTrade:
        return cls(
            trade_id=trade.trade_id,
            market_id=trade.market_id,
            category=MarketCategory.parse(trade.market_category),
            size=trade.size_usd,
            timestamp=trade.timestamp,
        )


# === Behavior profile ===


@dataclass(frozen=True)
class TimeDistribution:
    """When a wallet trades. Hours are UTC; days are Monday=0 .. Sunday=6."""

    hour_of_day: tuple[int, ...]
    day_of_week: tuple[int, ...]
    peak_hour: int
    peak_day: int
    market_hours_percentage: float
    off_hours_percentage: float


@dataclass(frozen=True)
class MarketPreferences:
    category_distribution: dict[str, int]
    category_volume_distribution: dict[str, float]
    top_categories: tuple[str, ...]
    concentration_score: float
    unique_markets_count: int
    avg_trades_per_market: float


@dataclass(frozen=True)
class PositionSizing:
    avg_trade_size: float
    median_trade_size: float
    trade_size_std_dev: float
    min_trade_size: float
    max_trade_size: float
    large_trade_percentage: float
    whale_trade_percentage: float
    consistency_score: float

    @property
    def coefficient_of_variation(self) -> float:
        if self.avg_trade_size <= 0:
            return 0.0
        return self.trade_size_std_dev / self.avg_trade_size


@dataclass(frozen=True)
class PerformanceMetrics:
    """Realized performance over resolved trades.

    ``profit_factor`` is ``inf`` when there are winning trades and no losses.
    """

    resolved_trade_count: int
    win_count: int
    loss_count: int
    win_rate: float
    total_pnl: float
    avg_win_pnl: float
    avg_loss_pnl: float
    profit_factor: float
    return_consistency: float
    max_drawdown: float
    best_trade: float
    worst_trade: float


@dataclass(frozen=True)
class TradingPatterns:
    """Inter-trade timing (hours) and order-flow ratios."""

    avg_time_between_trades: float
    median_time_between_trades: float
    avg_holding_period: float
    buy_percentage: float
    maker_percentage: float
    clustering_score: float
    max_win_streak: int
    max_loss_streak: int
    reversal_rate: float


@dataclass(frozen=True)
class WalletBehaviorProfile:
    """Immutable behavior snapshot for one wallet.

    Updating a profile produces a new snapshot; ``created_at`` carries over
    from the previous snapshot and ``updated_at`` never moves backwards.
    """

    address: str
    trade_count: int
    total_volume: float
    time_distribution: TimeDistribution
    market_preferences: MarketPreferences
    position_sizing: PositionSizing
    performance: PerformanceMetrics
    trading_patterns: TradingPatterns
    trading_frequency: TradingFrequency
    trading_style: TradingStyle
    risk_appetite: RiskAppetite
    confidence: ProfileConfidence
    behavior_flags: tuple[BehaviorFlag, ...]
    suspicion_score: int
    insights: tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    last_activity_at: datetime
    version: int = 1
    trade_ids: tuple[str, ...] = ()

    def has_flag(self, flag: BehaviorFlag) -> bool:
        return flag in self.behavior_flags

    @property
    def is_high_suspicion(self) -> bool:
        """Return True if suspicion score is at least 70."""
        return self.suspicion_score >= 70

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        performance = dataclasses.asdict(self.performance)
        performance["profit_factor"] = _finite(self.performance.profit_factor)
        return {
            "address": self.address,
            "trade_count": self.trade_count,
            "total_volume": self.total_volume,
            "time_distribution": dataclasses.asdict(self.time_distribution),
            "market_preferences": dataclasses.asdict(self.market_preferences),
            "position_sizing": dataclasses.asdict(self.position_sizing),
            "performance": performance,
            "trading_patterns": dataclasses.asdict(self.trading_patterns),
            "trading_frequency": self.trading_frequency.value,
            "trading_style": self.trading_style.value,
            "risk_appetite": self.risk_appetite.value,
            "confidence": self.confidence.value,
            "behavior_flags": [f.value for f in self.behavior_flags],
            "suspicion_score": self.suspicion_score,
            "insights": list(self.insights),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "version": self.version,
            "trade_ids": list(self.trade_ids),
        }


@dataclass(frozen=True)
class BatchProfileResult:
    """Outcome of building one wallet's profile within a batch."""

    address: str
    profile: WalletBehaviorProfile | None
    processing_time_ms: float
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ProfileSummary:
    total_profiles: int
    by_confidence: dict[str, int]
    by_trading_style: dict[str, int]
    by_risk_appetite: dict[str, int]
    avg_suspicion_score: float
    high_suspicion_count: int
    top_behavior_flags: tuple[tuple[BehaviorFlag, int], ...]
    total_trades_analyzed: int
    total_volume_analyzed: float


# === Category concentration ===


@dataclass(frozen=True)
class CategoryStats:
    """Per-category slice of a wallet's trades. Percentages are 0-100."""

    category: MarketCategory
    trade_count: int
    trade_percentage: float
    total_volume: float
    volume_percentage: float
    avg_trade_size: float
    unique_markets: int
    first_trade_at: datetime
    last_trade_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "trade_count": self.trade_count,
            "trade_percentage": self.trade_percentage,
            "total_volume": self.total_volume,
            "volume_percentage": self.volume_percentage,
            "avg_trade_size": self.avg_trade_size,
            "unique_markets": self.unique_markets,
            "first_trade_at": self.first_trade_at.isoformat(),
            "last_trade_at": self.last_trade_at.isoformat(),
        }


@dataclass(frozen=True)
class ConcentrationResult:
    """Category concentration analysis for one wallet."""

    wallet_address: str
    concentration_level: ConcentrationLevel
    concentration_score: float
    herfindahl_index: float
    specialist_type: SpecialistType
    suspicion_level: ConcentrationSuspicion
    suspicion_score: float
    primary_category: MarketCategory | None
    secondary_category: MarketCategory | None
    category_breakdown: tuple[CategoryStats, ...]
    total_trades: int
    total_volume: float
    unique_categories: int
    unique_markets: int
    is_specialist: bool
    flag_reasons: tuple[str, ...]
    analyzed_at: datetime
    from_cache: bool = False

    @property
    def has_data(self) -> bool:
        """False for the empty result returned on insufficient data."""
        return self.total_trades > 0

    def to_dict(self) -> dict[str, object]:
        return {
            "wallet_address": self.wallet_address,
            "concentration_level": self.concentration_level.value,
            "concentration_score": self.concentration_score,
            "herfindahl_index": self.herfindahl_index,
            "specialist_type": self.specialist_type.value,
            "suspicion_level": self.suspicion_level.value,
            "suspicion_score": self.suspicion_score,
            "primary_category": self.primary_category.value if self.primary_category else None,
            "secondary_category": (
                self.secondary_category.value if self.secondary_category else None
            ),
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "total_trades": self.total_trades,
            "total_volume": self.total_volume,
            "unique_categories": self.unique_categories,
            "unique_markets": self.unique_markets,
            "is_specialist": self.is_specialist,
            "flag_reasons": list(self.flag_reasons),
            "analyzed_at": self.analyzed_at.isoformat(),
            "from_cache": self.from_cache,
        }


@dataclass(frozen=True)
class BatchConcentrationResult:
    results: dict[str, ConcentrationResult]
    errors: dict[str, str]
    total_processed: int
    success_count: int
    error_count: int
    specialists_found: int
    processing_time_ms: float


@dataclass(frozen=True)
class ConcentrationSummary:
    total_wallets_analyzed: int
    specialists_count: int
    specialist_type_breakdown: dict[SpecialistType, int]
    concentration_level_breakdown: dict[ConcentrationLevel, int]
    suspicion_level_breakdown: dict[ConcentrationSuspicion, int]
    average_concentration_score: float
    top_primary_categories: tuple[tuple[MarketCategory, int], ...]
    cache_stats: dict[str, float | int] = field(default_factory=dict)
