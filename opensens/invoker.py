"""Wraps a single connector call.

Order of the guards around Connector.fetch():

    gate → SWR cache → circuit breaker → rate limiter → timeout → fetch

Every path returns an OsintSignal. Only cancellation propagates; a
cancelled call is recorded as neither success nor failure.
"""

import asyncio

import httpx

from .connectors.base import Connector, ConnectorContext
from .core.config import OpensensConfig
from .core.logger import connector_context, get_logger
from .signals import BBox, OsintSignal, error_signal
from .state import OsintState

logger = get_logger(__name__)


class ConnectorInvoker:
    def __init__(self, state: OsintState, client: httpx.AsyncClient, config: OpensensConfig):
        self.state = state
        self.client = client
        self.config = config

    def _context(self, connector_id: str) -> ConnectorContext:
        limiter = self.state.rate_limiter
        return ConnectorContext(
            client=self.client,
            gate=self.state.gate,
            tokens=self.state.tokens,
            config=self.config,
            on_retry_after=lambda seconds: limiter.defer(connector_id, seconds),
        )

    async def invoke(self, connector: Connector, region: BBox, time_range: str, enabled: bool) -> OsintSignal:
        """Run one connector for (region, time_range) behind every guard."""
        reason = self.state.gate.check(connector.meta, enabled)
        if reason is not None:
            logger.debug("connector_gated", connector=connector.id, reason=reason)
            return error_signal(connector.id, region, reason)

        key = self.state.cache.make_key(connector.id, region, time_range)
        return await self.state.cache.get(key, lambda: self._guarded_call(connector, region, time_range))

    async def _guarded_call(self, connector: Connector, region: BBox, time_range: str) -> OsintSignal:
        with connector_context(connector.id):
            return await self._call(connector, region, time_range)

    async def _call(self, connector: Connector, region: BBox, time_range: str) -> OsintSignal:
        cid = connector.id
        breaker = self.state.breaker

        if not breaker.allow(cid):
            cached = self.state.cache.peek(self.state.cache.make_key(cid, region, time_range))
            logger.info("circuit_open_fallback", connector=cid, cached=cached is not None)
            return cached.as_stale() if cached is not None else breaker.fallback(cid, region)

        timeout = self.config.connector_timeout
        try:
            if not await self.state.rate_limiter.acquire(cid, connector.meta.rate_limit):
                breaker.release(cid)
                return error_signal(cid, region, f"{cid} rate limited")
            signal = await asyncio.wait_for(
                connector.fetch(region, time_range, self._context(cid)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("connector_call_timeout", connector=cid, timeout=timeout)
            breaker.record_failure(cid, "timeout")
            return error_signal(cid, region, f"{cid} timed out after {timeout:g}s")
        except asyncio.CancelledError:
            breaker.release(cid)
            raise
        except Exception as e:
            logger.error("connector_call_crashed", connector=cid, error=f"{type(e).__name__}: {e}")
            breaker.record_failure(cid, type(e).__name__)
            return error_signal(cid, region, f"{cid} failed unexpectedly")

        if signal.error is None:
            breaker.record_success(cid, signal)
        else:
            breaker.record_failure(cid, signal.error)
        return signal
