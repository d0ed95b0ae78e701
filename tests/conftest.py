"""Pytest configuration and shared fixtures."""
import asyncio
import os
import sys
from typing import Callable, List, Optional

import httpx
import pytest

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from opensens.circuit_breaker import CircuitBreaker
from opensens.connectors.base import Connector, ConnectorContext, UpstreamError
from opensens.core.config import OpensensConfig
from opensens.credentials import CredentialGate, TokenCache
from opensens.rate_limiter import RateLimiter
from opensens.registry import ConnectorRegistry
from opensens.signals import (
    ConnectorMetadata,
    OsintSignal,
    RateLimitPolicy,
    Sentiment,
    SourceTier,
)
from opensens.state import OsintState
from opensens.swr_cache import SWRCache


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingTransport:
    """httpx.MockTransport handler that records every outbound request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response], clock: Optional[FakeClock] = None):
        self._handler = handler
        self._clock = clock
        self.requests: List[httpx.Request] = []
        self.times: List[float] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._clock is not None:
            self.times.append(self._clock())
        return self._handler(request)

    @property
    def count(self) -> int:
        return len(self.requests)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class StubConnector(Connector):
    """Connector returning canned signals without touching the network."""

    def __init__(
        self,
        connector_id: str,
        credibility: float = 0.5,
        event_count: int = 1,
        keyword_counts=None,
        sentiment: Sentiment = Sentiment(neutral=1),
        countries=(),
        error: Optional[str] = None,
        tier: SourceTier = SourceTier.OFFICIAL_API,
        credential_sets=(),
        rate_limit: RateLimitPolicy = RateLimitPolicy(max_requests=1000, window_seconds=1),
        hang: bool = False,
    ):
        self.meta = ConnectorMetadata(
            id=connector_id,
            name=f"Stub {connector_id}",
            source_tier=tier,
            requires_opt_in=tier is SourceTier.GATED_OPT_IN,
            rate_limit=rate_limit,
            credibility=credibility,
            credential_sets=credential_sets,
        )
        self.event_count = event_count
        self.keyword_counts = keyword_counts or {}
        self.sentiment = sentiment
        self.countries = countries
        self.error = error
        self.hang = hang
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def _collect(self, region, time_range, ctx: ConnectorContext) -> OsintSignal:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hang:
                await asyncio.Event().wait()
            await asyncio.sleep(0)
            if self.error:
                raise UpstreamError(self.error)
            return self._signal(
                region,
                event_count=self.event_count,
                keyword_counts=self.keyword_counts,
                sentiment=self.sentiment,
                countries=self.countries,
            )
        finally:
            self.active -= 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Deterministic config: short watchlist, no secrets, no env lookups."""
    return OpensensConfig(
        connector_timeout=2.0,
        keywords=["protest", "blackout", "flood", "solar"],
        mastodon_instances=["mastodon.example", "backup.example"],
        reddit_subreddits=["worldnews"],
    )


@pytest.fixture
def make_state(clock):
    """Build an OsintState whose components all share the fake clock."""

    def _make(secrets=None, mode="defer", max_wait=5.0, fresh_ttl=300.0, stale_ttl=900.0,
              threshold=3, cooldown=60.0):
        return OsintState(
            rate_limiter=RateLimiter(mode=mode, max_wait=max_wait, clock=clock, sleep=clock.sleep),
            breaker=CircuitBreaker(failure_threshold=threshold, cooldown_seconds=cooldown, clock=clock),
            cache=SWRCache(fresh_ttl=fresh_ttl, stale_ttl=stale_ttl, clock=clock),
            gate=CredentialGate(secrets or {}),
            tokens=TokenCache(clock=clock),
        )

    return _make


@pytest.fixture
def make_context(config):
    """ConnectorContext around a RecordingTransport."""

    def _make(transport: RecordingTransport, secrets=None, retry_after: Optional[list] = None):
        return ConnectorContext(
            client=transport.client(),
            gate=CredentialGate(secrets or {}),
            tokens=TokenCache(),
            config=config,
            on_retry_after=(retry_after.append if retry_after is not None else (lambda seconds: None)),
        )

    return _make


@pytest.fixture
def registry_of():
    def _make(*connectors):
        registry = ConnectorRegistry()
        for connector in connectors:
            registry.register(connector)
        return registry.freeze()

    return _make


@pytest.fixture
def europe_bbox():
    return (-10.0, 35.0, 30.0, 60.0)
