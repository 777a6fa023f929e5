from unittest.mock import AsyncMock

import pytest

from nowplaying.auth.models.tokens import TokenSet
from nowplaying.client.lifecycle import TokenLifecycleManager
from nowplaying.client.store import TokenStore


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return TokenStore()


@pytest.fixture
def grants():
    """Mocked relay token endpoints (exchange_token / refresh_token)."""
    return AsyncMock()


@pytest.fixture
def lifecycle(store, grants, clock):
    return TokenLifecycleManager(store, grants, clock=clock)


@pytest.fixture
def valid_tokens(clock):
    return TokenSet(
        access_token="AT1", expires_in=3600, refresh_token="RT1", issued_at=clock.now
    )
