"""Per-connector rate limiter.

Policies with max_requests == 1 are enforced as a fixed spacing between
calls; larger quotas use a sliding-window counter. Calls for one connector
are serialized behind an asyncio.Lock, so two callers can never both be
admitted inside the spacing interval. Upstream Retry-After hints push the
next eligible time further out.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Deque, Dict, Optional

from .core.logger import get_logger
from .signals import RateLimitPolicy

logger = get_logger(__name__)


@dataclass
class RateLimiterState:
    last_call: Optional[float] = None
    calls: Deque[float] = field(default_factory=deque)
    blocked_until: float = 0.0


class RateLimiter:
    """
    Admits or defers connector calls according to their RateLimitPolicy.

    mode="defer": the caller sleeps until eligible, unless the wait would
    exceed max_wait, in which case the call is rejected.
    mode="reject": any call that is not immediately eligible is rejected.
    """

    def __init__(
        self,
        mode: str = "defer",
        max_wait: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if mode not in ("defer", "reject"):
            raise ValueError("mode must be 'defer' or 'reject'")
        self.mode = mode
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._states: Dict[str, RateLimiterState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def acquire(self, connector_id: str, policy: RateLimitPolicy) -> bool:
        """Return True once the call may proceed, False if it was rejected."""
        lock = self._locks.setdefault(connector_id, asyncio.Lock())
        async with lock:
            state = self._states.setdefault(connector_id, RateLimiterState())
            waited = 0.0
            wait = self._wait_needed(state, policy, self._clock())
            while wait > 0:
                if self.mode == "reject" or waited + wait > self.max_wait:
                    logger.info(
                        "rate_limited",
                        connector=connector_id,
                        wait=round(wait, 3),
                        mode=self.mode,
                    )
                    return False
                await self._sleep(wait)
                waited += wait
                wait = self._wait_needed(state, policy, self._clock())

            now = self._clock()
            state.last_call = now
            if policy.max_requests > 1:
                state.calls.append(now)
            return True

    def defer(self, connector_id: str, seconds: float) -> None:
        """Honour an upstream Retry-After hint."""
        if seconds <= 0:
            return
        state = self._states.setdefault(connector_id, RateLimiterState())
        until = self._clock() + seconds
        if until > state.blocked_until:
            state.blocked_until = until
            logger.info("rate_limit_retry_after", connector=connector_id, seconds=seconds)

    def next_eligible_in(self, connector_id: str, policy: RateLimitPolicy) -> float:
        """Seconds until the next call would be admitted (0 if now)."""
        state = self._states.get(connector_id)
        if state is None:
            return 0.0
        return self._wait_needed(state, policy, self._clock())

    def _wait_needed(self, state: RateLimiterState, policy: RateLimitPolicy, now: float) -> float:
        wait = state.blocked_until - now
        if policy.max_requests == 1:
            if state.last_call is not None:
                wait = max(wait, state.last_call + policy.min_interval - now)
        else:
            cutoff = now - policy.window_seconds
            while state.calls and state.calls[0] <= cutoff:
                state.calls.popleft()
            if len(state.calls) >= policy.max_requests:
                wait = max(wait, state.calls[0] + policy.window_seconds - now)
        return max(0.0, wait)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        target = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (target - current).total_seconds())
