"""Stale-while-revalidate cache with single-flight loading.

Entries are keyed by (connector_id, bbox, time_range):
  age < fresh_ttl              → cached signal, no upstream call
  fresh_ttl <= age < stale_ttl → cached signal marked stale; one background
                                 revalidation per key is started
  otherwise                    → blocking load; concurrent callers for the
                                 same key await one shared task

Only successful, live signals are stored. A blocking load is cancelled
when its last waiter is cancelled; background revalidations run until done
or until aclose().
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .core.logger import get_logger
from .signals import BBox, OsintSignal

logger = get_logger(__name__)

CacheKey = Tuple[str, BBox, str]
Loader = Callable[[], Awaitable[OsintSignal]]


@dataclass
class CacheEntry:
    value: OsintSignal
    stored_at: float


class _Flight:
    def __init__(self, task: asyncio.Task, background: bool):
        self.task = task
        self.background = background
        self.waiters = 0


class SWRCache:
    def __init__(
        self,
        fresh_ttl: float = 300.0,
        stale_ttl: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if stale_ttl < fresh_ttl:
            raise ValueError("stale_ttl must be >= fresh_ttl")
        self.fresh_ttl = fresh_ttl
        self.stale_ttl = stale_ttl
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, _Flight] = {}

    @staticmethod
    def make_key(connector_id: str, bbox: BBox, time_range: str) -> CacheKey:
        return (connector_id, tuple(bbox), time_range)

    async def get(self, key: CacheKey, loader: Loader) -> OsintSignal:
        entry = self._entries.get(key)
        if entry is not None:
            age = self._clock() - entry.stored_at
            if age < self.fresh_ttl:
                return entry.value
            if age < self.stale_ttl:
                self._start(key, loader, background=True)
                return entry.value.as_stale()
        return await self._join(key, loader)

    def peek(self, key: CacheKey) -> Optional[OsintSignal]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._inflight

    async def aclose(self) -> None:
        """Cancel outstanding loads (shutdown)."""
        flights = list(self._inflight.values())
        for flight in flights:
            flight.task.cancel()
        if flights:
            await asyncio.gather(*(f.task for f in flights), return_exceptions=True)
        self._inflight.clear()

    def _start(self, key: CacheKey, loader: Loader, background: bool) -> _Flight:
        flight = self._inflight.get(key)
        if flight is not None:
            return flight
        task = asyncio.create_task(self._load(key, loader))
        flight = _Flight(task, background)
        self._inflight[key] = flight

        def _done(t: asyncio.Task) -> None:
            if self._inflight.get(key) is flight:
                del self._inflight[key]
            if flight.background and not t.cancelled() and t.exception() is not None:
                logger.warning("swr_revalidate_failed", connector=key[0], error=str(t.exception()))

        task.add_done_callback(_done)
        if background:
            logger.debug("swr_revalidate_started", connector=key[0])
        return flight

    async def _join(self, key: CacheKey, loader: Loader) -> OsintSignal:
        flight = self._start(key, loader, background=False)
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.background and not flight.task.done():
                flight.task.cancel()

    async def _load(self, key: CacheKey, loader: Loader) -> OsintSignal:
        signal = await loader()
        if signal.error is None and not signal.stale:
            self._entries[key] = CacheEntry(value=signal, stored_at=self._clock())
        return signal
