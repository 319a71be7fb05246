"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

FIXED_NOW = datetime(2024, 6, 3, 16, 0, tzinfo=UTC)  # Monday, inside market hours


class FakeClock:
    """Controllable UTC clock for cache TTL and cooldown tests."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at FIXED_NOW."""
    return FakeClock()


@pytest.fixture
def wallet_address() -> str:
    """Sample wallet address for testing."""
    return "0x" + "1" * 40


@pytest.fixture
def other_wallet_address() -> str:
    return "0x" + "2" * 40
