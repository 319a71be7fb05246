"""Tests for the wallet concentration analyzer."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from polymarket_insider_tracker.addresses import InvalidAddressError, to_checksum_address
from polymarket_insider_tracker.profiler.concentration import (
    DEFAULT_CACHE_TTL_SECONDS,
    WalletConcentrationAnalyzer,
    concentration_level,
    suspicion_level,
)
from polymarket_insider_tracker.profiler.models import (
    ConcentrationLevel,
    ConcentrationSuspicion,
    ConcentrationTrade,
    MarketCategory,
    ProfileTrade,
    SpecialistType,
)

WALLET = "0x" + "1" * 40
OTHER_WALLET = "0x" + "2" * 40
THIRD_WALLET = "0x" + "3" * 40

BASE_TIME = datetime(2024, 5, 4, 15, 0, tzinfo=UTC)


def create_trades(
    counts: dict[MarketCategory, int],
    *,
    size: float = 100.0,
    start: datetime = BASE_TIME,
    prefix: str = "trade",
) -> list[ConcentrationTrade]:
    """Create trades per category, one minute apart, each in its own market."""
    trades: list[ConcentrationTrade] = []
    for category, count in counts.items():
        for _ in range(count):
            index = len(trades)
            trades.append(
                ConcentrationTrade(
                    trade_id=f"{prefix}-{index}",
                    market_id=f"market-{index}",
                    category=category,
                    size=size,
                    timestamp=start + timedelta(minutes=index),
                )
            )
    return trades


@pytest.fixture
def analyzer(clock) -> WalletConcentrationAnalyzer:
    return WalletConcentrationAnalyzer(clock=clock)


class TestAnalyze:
    """Tests for the core concentration analysis."""

    def test_political_specialist(self, analyzer: WalletConcentrationAnalyzer) -> None:
        """Test 90 politics and 10 crypto trades."""
        trades = create_trades({MarketCategory.POLITICS: 90, MarketCategory.CRYPTO: 10})

        result = analyzer.analyze(WALLET, trades)

        assert result.concentration_level == ConcentrationLevel.EXTREME
        assert result.specialist_type == SpecialistType.POLITICAL_SPECIALIST
        assert result.is_specialist
        assert result.primary_category == MarketCategory.POLITICS
        assert result.secondary_category == MarketCategory.CRYPTO
        assert result.herfindahl_index == pytest.approx(0.82)
        assert result.suspicion_level == ConcentrationSuspicion.CRITICAL
        assert result.suspicion_score == 100.0
        assert result.total_trades == 100
        assert result.unique_categories == 2
        assert result.unique_markets == 100

    def test_flag_reasons(self, analyzer: WalletConcentrationAnalyzer) -> None:
        trades = create_trades({MarketCategory.POLITICS: 90, MarketCategory.CRYPTO: 10})

        result = analyzer.analyze(WALLET, trades)

        assert result.flag_reasons == (
            "Extreme concentration: 90.0% of trades in politics",
            "Primary focus on high-value category: politics",
            "Critical suspicion level due to concentration in insider-prone categories",
            "Volume concentration: 90.0% of volume in politics",
        )

    def test_single_category_hhi(self, analyzer: WalletConcentrationAnalyzer) -> None:
        result = analyzer.analyze(WALLET, create_trades({MarketCategory.SPORTS: 10}))

        assert result.herfindahl_index == pytest.approx(1.0)
        assert result.concentration_score == pytest.approx(100.0)
        assert result.specialist_type == SpecialistType.SPORTS_SPECIALIST

    def test_even_split_is_multi_specialist(self, analyzer: WalletConcentrationAnalyzer) -> None:
        trades = create_trades({MarketCategory.POLITICS: 5, MarketCategory.CRYPTO: 5})

        result = analyzer.analyze(WALLET, trades)

        assert result.herfindahl_index == pytest.approx(0.5)
        assert result.specialist_type == SpecialistType.MULTI_SPECIALIST
        assert result.primary_category == MarketCategory.POLITICS

    def test_diversified_wallet(self, analyzer: WalletConcentrationAnalyzer) -> None:
        categories = [
            MarketCategory.SPORTS,
            MarketCategory.WEATHER,
            MarketCategory.ENTERTAINMENT,
            MarketCategory.CULTURE,
            MarketCategory.OTHER,
            MarketCategory.SCIENCE,
            MarketCategory.TECH,
        ]
        result = analyzer.analyze(WALLET, create_trades({c: 2 for c in categories}))

        assert result.concentration_level == ConcentrationLevel.DIVERSIFIED
        assert result.specialist_type == SpecialistType.GENERALIST
        assert not result.is_specialist
        assert result.unique_categories == 7

    def test_breakdown_sorted_by_trade_count(
        self, analyzer: WalletConcentrationAnalyzer
    ) -> None:
        trades = create_trades(
            {MarketCategory.CRYPTO: 2, MarketCategory.LEGAL: 5, MarketCategory.HEALTH: 3}
        )

        result = analyzer.analyze(WALLET, trades)

        assert [s.category for s in result.category_breakdown] == [
            MarketCategory.LEGAL,
            MarketCategory.HEALTH,
            MarketCategory.CRYPTO,
        ]
        assert sum(s.trade_percentage for s in result.category_breakdown) == pytest.approx(100.0)

    def test_insufficient_trades(self, analyzer: WalletConcentrationAnalyzer) -> None:
        result = analyzer.analyze(WALLET, create_trades({MarketCategory.POLITICS: 4}))

        assert not result.has_data
        assert result.total_trades == 0
        assert result.concentration_level == ConcentrationLevel.DIVERSIFIED
        assert result.suspicion_level == ConcentrationSuspicion.MINIMAL
        assert result.primary_category is None

    def test_min_trades_override(self, analyzer: WalletConcentrationAnalyzer) -> None:
        trades = create_trades({MarketCategory.POLITICS: 2})

        result = analyzer.analyze(WALLET, trades, min_trades=2)

        assert result.total_trades == 2

    def test_trades_outside_window_ignored(
        self, analyzer: WalletConcentrationAnalyzer, clock
    ) -> None:
        old = create_trades(
            {MarketCategory.POLITICS: 10}, start=clock() - timedelta(days=100), prefix="old"
        )
        recent = create_trades({MarketCategory.CRYPTO: 5}, prefix="new")

        result = analyzer.analyze(WALLET, [*old, *recent])

        assert result.total_trades == 5
        assert result.primary_category == MarketCategory.CRYPTO

    def test_high_value_categories_override(
        self, analyzer: WalletConcentrationAnalyzer
    ) -> None:
        trades = create_trades({MarketCategory.SPORTS: 10})

        default = analyzer.analyze(WALLET, trades, bypass_cache=True)
        boosted = analyzer.analyze(
            WALLET,
            trades,
            high_value_categories=[MarketCategory.SPORTS],
            bypass_cache=True,
        )

        assert boosted.suspicion_score > default.suspicion_score
        assert "Primary focus on high-value category: sports" in boosted.flag_reasons

    def test_specialist_threshold_override(
        self, analyzer: WalletConcentrationAnalyzer
    ) -> None:
        trades = create_trades({MarketCategory.CRYPTO: 6, MarketCategory.SPORTS: 4})

        result = analyzer.analyze(WALLET, trades, specialist_threshold=90.0)

        assert result.specialist_type == SpecialistType.GENERALIST

    def test_invalid_address_raises(self, analyzer: WalletConcentrationAnalyzer) -> None:
        with pytest.raises(InvalidAddressError):
            analyzer.analyze("0xinvalid", create_trades({MarketCategory.POLITICS: 5}))

    def test_address_case_insensitive(self, analyzer: WalletConcentrationAnalyzer) -> None:
        address = "0x" + "ab" * 20
        analyzer.add_trades(to_checksum_address(address), create_trades({MarketCategory.LEGAL: 5}))

        result = analyzer.analyze(address)

        assert result.wallet_address == address
        assert result.total_trades == 5


class TestCaching:
    """Tests for result caching and the trade store."""

    def test_second_call_served_from_cache(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))

        first = analyzer.analyze(WALLET)
        second = analyzer.analyze(WALLET)

        assert not first.from_cache
        assert second.from_cache
        assert second.total_trades == first.total_trades

    def test_add_trades_invalidates_cache(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.analyze(WALLET)

        added = analyzer.add_trades(
            WALLET, create_trades({MarketCategory.CRYPTO: 5}, prefix="more")
        )
        result = analyzer.analyze(WALLET)

        assert added == 5
        assert not result.from_cache
        assert result.total_trades == 10

    def test_add_trades_skips_known_ids(self, analyzer: WalletConcentrationAnalyzer) -> None:
        trades = create_trades({MarketCategory.POLITICS: 5})

        assert analyzer.add_trades(WALLET, trades) == 5
        assert analyzer.add_trades(WALLET, trades) == 0
        assert len(analyzer.get_trades(WALLET)) == 5

    def test_cache_expires(self, analyzer: WalletConcentrationAnalyzer, clock) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        first = analyzer.analyze(WALLET)

        clock.advance(seconds=DEFAULT_CACHE_TTL_SECONDS + 1)
        result = analyzer.analyze(WALLET)

        assert not result.from_cache
        assert result.analyzed_at > first.analyzed_at

    def test_bypass_cache(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.analyze(WALLET)

        assert not analyzer.analyze(WALLET, bypass_cache=True).from_cache

    def test_clear_trades(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.analyze(WALLET)

        analyzer.clear_trades(WALLET)

        assert analyzer.get_trades(WALLET) == []
        assert analyzer.analyze(WALLET).total_trades == 0

    def test_profile_trade_conversion(self) -> None:
        trade = ProfileTrade(
            trade_id="t-1",
            market_id="m-1",
            market_category="Politics",
            side="buy",
            size_usd=250.0,
            price=0.4,
            timestamp=BASE_TIME,
        )

        converted = ConcentrationTrade.from_profile_trade(trade)

        assert converted.category == MarketCategory.POLITICS
        assert converted.size == 250.0

    def test_unknown_category_maps_to_other(self) -> None:
        assert MarketCategory.parse("astrology") == MarketCategory.OTHER
        assert MarketCategory.parse(None) == MarketCategory.OTHER
        assert MarketCategory.parse(" CRYPTO ") == MarketCategory.CRYPTO


class TestBatchAndQueries:
    """Tests for batch analysis and wallet queries."""

    @pytest.mark.asyncio
    async def test_batch_collects_errors(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.add_trades(OTHER_WALLET, create_trades({MarketCategory.SPORTS: 5}))

        batch = await analyzer.analyze_batch([WALLET, "0xInvalid", OTHER_WALLET])

        assert batch.total_processed == 3
        assert batch.success_count == 2
        assert batch.error_count == 1
        assert set(batch.results) == {WALLET, OTHER_WALLET}
        assert "0xinvalid" in batch.errors
        assert batch.specialists_found == 2

    def test_specialists_in_category(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.add_trades(OTHER_WALLET, create_trades({MarketCategory.SPORTS: 5}))

        assert analyzer.get_specialists_in_category(MarketCategory.POLITICS) == [WALLET]
        assert analyzer.is_specialist_in_category(OTHER_WALLET, MarketCategory.SPORTS)

    def test_flagged_wallets(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.add_trades(OTHER_WALLET, create_trades({MarketCategory.WEATHER: 1}))

        assert analyzer.get_flagged_wallets() == [WALLET]
        assert analyzer.get_flagged_wallets(ConcentrationSuspicion.MINIMAL) == [
            WALLET,
            OTHER_WALLET,
        ]

    def test_has_high_concentration(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(
            WALLET, create_trades({MarketCategory.CRYPTO: 3, MarketCategory.SPORTS: 2})
        )

        assert analyzer.has_high_concentration(WALLET)
        assert not analyzer.has_high_concentration(WALLET, threshold=70.0)
        assert not analyzer.has_high_concentration(OTHER_WALLET)

    def test_summary(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.add_trades(OTHER_WALLET, create_trades({MarketCategory.POLITICS: 5}))
        analyzer.add_trades(THIRD_WALLET, create_trades({MarketCategory.SPORTS: 2}))

        summary = analyzer.get_summary()

        assert summary.total_wallets_analyzed == 3
        assert summary.specialists_count == 2
        assert summary.specialist_type_breakdown[SpecialistType.POLITICAL_SPECIALIST] == 2
        assert summary.top_primary_categories[0] == (MarketCategory.POLITICS, 2)

    def test_clear(self, analyzer: WalletConcentrationAnalyzer) -> None:
        analyzer.add_trades(WALLET, create_trades({MarketCategory.POLITICS: 5}))

        analyzer.clear()

        assert analyzer.get_summary().total_wallets_analyzed == 0


@pytest.mark.parametrize(
    ("percentage", "expected"),
    [
        (80.0, ConcentrationLevel.EXTREME),
        (79.9, ConcentrationLevel.HIGH),
        (60.0, ConcentrationLevel.HIGH),
        (40.0, ConcentrationLevel.MODERATE),
        (20.0, ConcentrationLevel.LOW),
        (19.9, ConcentrationLevel.DIVERSIFIED),
    ],
)
def test_concentration_level_boundaries(percentage: float, expected: ConcentrationLevel) -> None:
    assert concentration_level(percentage) == expected


def test_suspicion_level_boundaries() -> None:
    assert suspicion_level(80) == ConcentrationSuspicion.CRITICAL
    assert suspicion_level(60) == ConcentrationSuspicion.HIGH
    assert suspicion_level(40) == ConcentrationSuspicion.MEDIUM
    assert suspicion_level(20) == ConcentrationSuspicion.LOW
    assert suspicion_level(19.99) == ConcentrationSuspicion.MINIMAL
