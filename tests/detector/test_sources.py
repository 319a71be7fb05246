"""Tests for the built-in signal providers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from polymarket_insider_tracker.detector.models import SignalConfidence, SignalSource
from polymarket_insider_tracker.detector.sources import (
    FreshWalletProvider,
    MarketSelectionProvider,
    PositionSizingProvider,
    ProfitLossProvider,
    SignalProvider,
    TimingPatternProvider,
    TradingPatternProvider,
    WinRateProvider,
    confidence_from_quality,
    default_providers,
)
from polymarket_insider_tracker.profiler.behavior import WalletBehaviorProfiler
from polymarket_insider_tracker.profiler.concentration import WalletConcentrationAnalyzer
from polymarket_insider_tracker.profiler.models import (
    ConcentrationTrade,
    MarketCategory,
    ProfileTrade,
)

WALLET = "0x" + "1" * 40

BASE_TIME = datetime(2024, 5, 4, 15, 0, tzinfo=UTC)


def create_trade(
    index: int,
    *,
    size: float = 100.0,
    pnl: float | None = None,
    flags: tuple[str, ...] = (),
) -> ProfileTrade:
    return ProfileTrade(
        trade_id=f"trade-{index}",
        market_id=f"market-{index}",
        market_category="politics",
        side="buy",
        size_usd=size,
        price=0.5,
        timestamp=BASE_TIME + timedelta(days=index),
        is_winner=None if pnl is None else pnl > 0,
        pnl=pnl,
        flags=flags,
    )


@pytest.fixture
def profiler(clock) -> WalletBehaviorProfiler:
    return WalletBehaviorProfiler(clock=clock)


@pytest.fixture
def winning_profiler(profiler: WalletBehaviorProfiler) -> WalletBehaviorProfiler:
    """Profiler holding ten large, all-winning trades for WALLET."""
    profiler.build_profile(WALLET, [create_trade(i, size=1000.0, pnl=400.0) for i in range(10)])
    return profiler


class TestProfileProviders:
    """Tests for providers backed by behavior profiles."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "provider_type",
        [
            FreshWalletProvider,
            WinRateProvider,
            ProfitLossProvider,
            TimingPatternProvider,
            PositionSizingProvider,
            TradingPatternProvider,
        ],
    )
    async def test_no_profile_unavailable(
        self, profiler: WalletBehaviorProfiler, provider_type: type
    ) -> None:
        reading = await provider_type(profiler).evaluate(WALLET)

        assert not reading.available
        assert reading.reason == "No behavior profile available"

    @pytest.mark.asyncio
    async def test_win_rate(self, winning_profiler: WalletBehaviorProfiler) -> None:
        reading = await WinRateProvider(winning_profiler).evaluate(WALLET)

        assert reading.available
        assert reading.score == 100.0
        assert reading.data_quality == 100.0
        assert reading.confidence == SignalConfidence.HIGH
        assert reading.reason == "Exceptionally high win rate (100.0%)"
        assert reading.flags == ("Unusually high win rate",)

    @pytest.mark.asyncio
    async def test_win_rate_needs_resolved_trades(
        self, profiler: WalletBehaviorProfiler
    ) -> None:
        profiler.build_profile(WALLET, [create_trade(i, pnl=10.0) for i in range(4)])

        reading = await WinRateProvider(profiler).evaluate(WALLET)

        assert not reading.available
        assert reading.reason == "Insufficient trading history"

    @pytest.mark.asyncio
    async def test_profit_loss_without_losses(
        self, winning_profiler: WalletBehaviorProfiler
    ) -> None:
        reading = await ProfitLossProvider(winning_profiler).evaluate(WALLET)

        assert reading.score == 100.0
        assert reading.reason == "Total PnL $4,000.00 with no losing trades"
        assert reading.flags == ("Consistent profitability",)

    @pytest.mark.asyncio
    async def test_profit_loss_finite_factor(self, profiler: WalletBehaviorProfiler) -> None:
        pnls = [300.0, -100.0, 300.0, -100.0, 300.0]
        profiler.build_profile(WALLET, [create_trade(i, pnl=p) for i, p in enumerate(pnls)])

        reading = await ProfitLossProvider(profiler).evaluate(WALLET)

        # profit factor 4.5 on a 1-5 scale
        assert reading.score == pytest.approx(87.5)
        assert reading.confidence == SignalConfidence.MEDIUM

    @pytest.mark.asyncio
    async def test_profit_loss_losing_wallet(self, profiler: WalletBehaviorProfiler) -> None:
        profiler.build_profile(WALLET, [create_trade(i, pnl=-10.0) for i in range(5)])

        reading = await ProfitLossProvider(profiler).evaluate(WALLET)

        assert reading.score == 0.0

    @pytest.mark.asyncio
    async def test_fresh_wallet(self, profiler: WalletBehaviorProfiler) -> None:
        trades = [create_trade(0, size=20000.0), *[create_trade(i) for i in range(1, 5)]]
        profiler.build_profile(WALLET, trades)

        reading = await FreshWalletProvider(profiler).evaluate(WALLET)

        assert reading.score == 80.0
        assert reading.flags == ("Fresh wallet with large initial trade",)
        assert reading.reason == "Fresh wallet activity across 5 trades"

    @pytest.mark.asyncio
    async def test_established_wallet(self, winning_profiler: WalletBehaviorProfiler) -> None:
        reading = await FreshWalletProvider(winning_profiler).evaluate(WALLET)

        assert reading.score == 0.0
        assert reading.reason == "Established wallet with 10 trades"
        assert reading.confidence == SignalConfidence.LOW

    @pytest.mark.asyncio
    async def test_timing_pattern(self, winning_profiler: WalletBehaviorProfiler) -> None:
        reading = await TimingPatternProvider(winning_profiler).evaluate(WALLET)

        assert reading.score == 20.0
        assert reading.flags == ("Perfect timing on large trades",)
        assert reading.reason == "0% of trades outside market hours"

    @pytest.mark.asyncio
    async def test_position_sizing(self, winning_profiler: WalletBehaviorProfiler) -> None:
        reading = await PositionSizingProvider(winning_profiler).evaluate(WALLET)

        assert reading.score == 0.0
        assert reading.data_quality == 50.0
        assert reading.confidence == SignalConfidence.MEDIUM

    @pytest.mark.asyncio
    async def test_trading_pattern_insider(
        self, winning_profiler: WalletBehaviorProfiler
    ) -> None:
        reading = await TradingPatternProvider(winning_profiler).evaluate(WALLET)

        assert reading.score == 80.0
        assert reading.flags == ("Potential insider trading pattern",)
        assert reading.reason == "Trading style: POTENTIAL_INSIDER"

    @pytest.mark.asyncio
    async def test_trading_pattern_clean(self, profiler: WalletBehaviorProfiler) -> None:
        trades = [
            ProfileTrade(
                trade_id=f"t-{i}",
                market_id=f"m-{i}",
                market_category=category,
                side="buy",
                size_usd=100.0,
                price=0.5,
                timestamp=BASE_TIME + timedelta(days=i),
            )
            for i, category in enumerate(["politics", "crypto", "sports", "tech"])
        ]
        profiler.build_profile(WALLET, trades)

        reading = await TradingPatternProvider(profiler).evaluate(WALLET)

        assert reading.score == 0.0
        assert reading.flags == ()


class TestMarketSelectionProvider:
    """Tests for the concentration-backed provider."""

    @pytest.mark.asyncio
    async def test_no_trades_unavailable(self, clock) -> None:
        provider = MarketSelectionProvider(WalletConcentrationAnalyzer(clock=clock))

        reading = await provider.evaluate(WALLET)

        assert not reading.available

    @pytest.mark.asyncio
    async def test_critical_concentration(self, clock) -> None:
        analyzer = WalletConcentrationAnalyzer(clock=clock)
        analyzer.add_trades(
            WALLET,
            [
                ConcentrationTrade(
                    trade_id=f"t-{i}",
                    market_id=f"m-{i}",
                    category=MarketCategory.POLITICS,
                    size=100.0,
                    timestamp=BASE_TIME + timedelta(hours=i),
                )
                for i in range(5)
            ],
        )

        reading = await MarketSelectionProvider(analyzer).evaluate(WALLET)

        assert reading.score == 100.0
        assert reading.reason == "Insider-like market selection pattern"
        assert "Primary focus on high-value category: politics" in reading.flags
        assert reading.data_quality == 25.0
        assert reading.confidence == SignalConfidence.LOW


def test_default_providers(clock) -> None:
    providers = default_providers(
        WalletBehaviorProfiler(clock=clock), WalletConcentrationAnalyzer(clock=clock)
    )

    assert set(providers) == {
        SignalSource.FRESH_WALLET,
        SignalSource.WIN_RATE,
        SignalSource.PROFIT_LOSS,
        SignalSource.TIMING_PATTERN,
        SignalSource.POSITION_SIZING,
        SignalSource.TRADING_PATTERN,
        SignalSource.MARKET_SELECTION,
    }
    assert all(isinstance(p, SignalProvider) for p in providers.values())


@pytest.mark.parametrize(
    ("quality", "expected"),
    [
        (80.0, SignalConfidence.HIGH),
        (79.9, SignalConfidence.MEDIUM),
        (50.0, SignalConfidence.MEDIUM),
        (49.9, SignalConfidence.LOW),
    ],
)
def test_confidence_from_quality(quality: float, expected: SignalConfidence) -> None:
    assert confidence_from_quality(quality) == expected
