"""Per-connector circuit breaker with a last-known-good fallback.

closed     calls pass through; consecutive failures are counted
open       calls are short-circuited to the last-known-good signal (stale)
half_open  after the cool-down a single probe call is admitted; success
           closes the circuit, failure re-opens it and restarts the cool-down

All methods are synchronous so each state transition is atomic with
respect to the event loop.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .core.logger import get_logger
from .signals import GLOBAL_BBOX, BBox, OsintSignal, error_signal

logger = get_logger(__name__)


class CircuitStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    status: CircuitStatus = CircuitStatus.CLOSED
    consecutive_failures: int = 0
    last_trip: Optional[float] = None
    probe_in_flight: bool = False
    last_good: Optional[OsintSignal] = None
    last_good_at: Optional[float] = None


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._states: Dict[str, CircuitState] = {}

    def _state(self, key: str) -> CircuitState:
        return self._states.setdefault(key, CircuitState())

    def allow(self, key: str) -> bool:
        """True if a real upstream call may be made now."""
        state = self._state(key)
        if state.status is CircuitStatus.CLOSED:
            return True
        if state.status is CircuitStatus.OPEN:
            if self._clock() - (state.last_trip or 0.0) < self.cooldown_seconds:
                return False
            self._transition(key, state, CircuitStatus.HALF_OPEN, "cooldown_elapsed")
        if state.probe_in_flight:
            return False
        state.probe_in_flight = True
        return True

    def record_success(self, key: str, signal: OsintSignal) -> None:
        state = self._state(key)
        state.consecutive_failures = 0
        state.probe_in_flight = False
        state.last_good = signal
        state.last_good_at = self._clock()
        if state.status is not CircuitStatus.CLOSED:
            self._transition(key, state, CircuitStatus.CLOSED, "probe_success")

    def record_failure(self, key: str, reason: str = "") -> None:
        state = self._state(key)
        state.probe_in_flight = False
        if state.status is CircuitStatus.HALF_OPEN:
            state.last_trip = self._clock()
            self._transition(key, state, CircuitStatus.OPEN, f"probe_failure: {reason}")
            return
        state.consecutive_failures += 1
        if (
            state.status is CircuitStatus.CLOSED
            and state.consecutive_failures >= self.failure_threshold
        ):
            state.last_trip = self._clock()
            self._transition(key, state, CircuitStatus.OPEN, f"failure_threshold: {reason}")

    def release(self, key: str) -> None:
        """Give back a probe slot without recording an outcome (cancelled call)."""
        state = self._states.get(key)
        if state is not None:
            state.probe_in_flight = False

    def fallback(self, key: str, bbox: BBox) -> OsintSignal:
        """Last-known-good signal marked stale, or a zero-credibility signal.

        A last-known-good signal is only reused for the region it covers;
        global-scope signals cover every region.
        """
        state = self._state(key)
        good = state.last_good
        if good is not None and good.bbox in (tuple(float(v) for v in bbox), GLOBAL_BBOX):
            return good.as_stale()
        return error_signal(key, bbox, "circuit open and no cached signal available")

    def status(self, key: str) -> CircuitStatus:
        state = self._states.get(key)
        return state.status if state else CircuitStatus.CLOSED

    def last_good_age(self, key: str) -> Optional[float]:
        state = self._states.get(key)
        if state is None or state.last_good_at is None:
            return None
        return self._clock() - state.last_good_at

    def snapshot(self) -> Dict[str, dict]:
        return {
            key: {
                "status": state.status.value,
                "consecutiveFailures": state.consecutive_failures,
                "hasCachedSignal": state.last_good is not None,
            }
            for key, state in self._states.items()
        }

    def _transition(self, key: str, state: CircuitState, target: CircuitStatus, reason: str) -> None:
        previous = state.status
        state.status = target
        logger.info(
            "circuit_transition",
            connector=key,
            previous=previous.value,
            current=target.value,
            reason=reason,
        )
