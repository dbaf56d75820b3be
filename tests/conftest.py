import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional

import httpx
import pytest
from typer.testing import CliRunner

from pixelclient.core.services.session_service import SessionService
from pixelclient.domain.interfaces.clock import Clock
from pixelclient.infrastructure.cache.caching_service import InFlightCache
from pixelclient.infrastructure.config import settings as settings_module
from pixelclient.infrastructure.http.api_client import ApiClient
from pixelclient.infrastructure.resilience.api_retry import ApiRetryService, RetryPolicy

BASE_URL = "http://api.test"
START_MS = 1_700_000_000_000


class FakeClock(Clock):
    """Virtual time: sleeping advances the clock instead of waiting."""

    def __init__(self, start_ms: int = START_MS):
        self.current_ms = start_ms
        self.sleeps: List[float] = []

    def now_ms(self) -> int:
        return self.current_ms

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.current_ms / 1000, tz=timezone.utc)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current_ms += int(round(seconds * 1000))
        # Still yield so other tasks get to run
        await asyncio.sleep(0)

    def advance(self, ms: int) -> None:
        self.current_ms += ms

    @property
    def slept_ms(self) -> List[int]:
        return [int(round(s * 1000)) for s in self.sleeps]


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cache(fake_clock):
    return InFlightCache(clock=fake_clock)


@pytest.fixture
def session(cache):
    return SessionService(cache_service=cache, token="secret-token", username="Alice")


@pytest.fixture
def make_client(fake_clock, session):
    """Builds an ApiClient whose network is the given httpx handler."""
    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        policy: Optional[RetryPolicy] = None,
        probe_policy: Optional[RetryPolicy] = None,
        with_session: bool = True,
    ) -> ApiClient:
        retry_service = ApiRetryService(policy=policy or RetryPolicy(), clock=fake_clock)
        client = ApiClient(
            base_url=BASE_URL,
            retry_service=retry_service,
            session=session if with_session else None,
            probe_policy=probe_policy,
            transport=httpx.MockTransport(handler),
        )
        return client

    return _make


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests away from the user's YAML/.env files and environment."""
    monkeypatch.setattr(settings_module, "_loaded", True)
    monkeypatch.setattr(settings_module, "_config", {})
    for key in (
        "PIXELCLIENT_API_URL", "API_BASE_URL", "PIXELCLIENT_HOSTING_DOMAIN",
        "PIXELCLIENT_AUTH_TOKEN", "PIXELCLIENT_TOKEN", "PIXELCLIENT_USERNAME",
        "PIXELCLIENT_RETRY_ATTEMPTS", "PIXELCLIENT_POLL_INTERVAL_MS", "LOGGING_LEVEL", "LOGGING_FILE",
    ):
        monkeypatch.delenv(key, raising=False)
    yield
    settings_module.clear_test_config()
