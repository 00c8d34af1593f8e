"""Pytest configuration and fixtures."""

from datetime import datetime, timezone

import pytest

from apiauth.common.settings import Settings
from apiauth.hmac.models import HttpRequest
from apiauth.hmac.replay import InMemoryReplayCache
from apiauth.hmac.secrets import StaticSecretProvider

EPOCH_1977 = datetime(1977, 5, 4, 16, 0, 0, tzinfo=timezone.utc)
EXAMPLE_URL = "https://empire.gov/api/v1/droid/activate-restraining-bolt?id=r2d2"


class FixedClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    """Create test settings, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at the example scenario's timestamp."""
    return FixedClock(EPOCH_1977.timestamp())


@pytest.fixture
def secret_provider() -> StaticSecretProvider:
    """Registered principals."""
    return StaticSecretProvider({"dvader": "secret123", "lskywalker": "force"})


@pytest.fixture
def replay_cache(settings: Settings) -> InMemoryReplayCache:
    return InMemoryReplayCache(max_entries=settings.replay_cache_max_entries)


@pytest.fixture
def example_request() -> HttpRequest:
    """Unsigned POST from the example scenario."""
    return HttpRequest.create(
        "POST",
        EXAMPLE_URL,
        headers={"Content-Type": "application/json"},
        body=b'{"bolt":"on"}',
    )
