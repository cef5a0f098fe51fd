"""Pytest configuration and fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

# A Wednesday afternoon, outside the default 02:00-08:00 UTC dead hours.
WEEKDAY_AFTERNOON = datetime(2025, 3, 12, 15, 0, tzinfo=UTC)

SAMPLE_MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
SAMPLE_CREATOR = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


class FakeClock:
    """Manually advanced clock for deterministic tests."""

    def __init__(self, now: datetime = WEEKDAY_AFTERNOON) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at a weekday afternoon."""
    return FakeClock()


@pytest.fixture
def sample_mint() -> str:
    """Sample token mint address for testing."""
    return SAMPLE_MINT


@pytest.fixture
def sample_creator() -> str:
    """Sample creator address for testing."""
    return SAMPLE_CREATOR
