import asyncio
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from loguru import logger

from recengine.core.config import settings
from recengine.core.errors import StoreUnavailable


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Per-resource breaker state machine.

    CLOSED -> OPEN after ``failure_threshold`` failed calls.
    OPEN -> HALF_OPEN once ``reset_timeout`` seconds have passed since opening.
    HALF_OPEN lets exactly one trial call through: success closes the circuit,
    failure re-opens it with a fresh timestamp.

    ``acquire`` tells the caller whether it holds the trial slot, and that flag
    goes back with the result. Only the trial decides a half-open verdict;
    results of calls admitted before the circuit opened are ignored while it is
    open or half-open.

    All transitions happen under the breaker's own lock.
    """

    def __init__(
        self,
        resource: str,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resource = resource
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None
        self._trial_in_flight = False

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self.state:
            return
        logger.info(f"Circuit '{self.resource}' {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state is CircuitState.OPEN:
            self.opened_at = self._clock()
        elif new_state is CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None

    async def acquire(self) -> bool:
        """Admit a call or raise ``StoreUnavailable`` without touching the store. Returns True for the trial call."""
        async with self._lock:
            if self.state is CircuitState.OPEN:
                elapsed = self._clock() - (self.opened_at or 0.0)
                if elapsed <= self.reset_timeout:
                    raise StoreUnavailable(self.resource, retry_in=self.reset_timeout - elapsed)
                self._transition(CircuitState.HALF_OPEN)

            if self.state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise StoreUnavailable(self.resource)
                self._trial_in_flight = True
                return True
            return False

    async def record_success(self, trial: bool = False) -> None:
        async with self._lock:
            if self.state is CircuitState.CLOSED:
                self.failure_count = 0
                return
            if self.state is CircuitState.HALF_OPEN and trial:
                self._trial_in_flight = False
                self._transition(CircuitState.CLOSED)

    async def record_failure(self, trial: bool = False) -> None:
        async with self._lock:
            if self.state is CircuitState.HALF_OPEN:
                if trial:
                    self._trial_in_flight = False
                    self._transition(CircuitState.OPEN)
                return
            if self.state is CircuitState.OPEN:
                return
            self.failure_count += 1
            if self.failure_count >= self.failure_threshold:
                logger.warning(f"Circuit '{self.resource}' tripped after {self.failure_count} failures")
                self._transition(CircuitState.OPEN)

    def release(self, trial: bool = False) -> None:
        """Give back a half-open trial slot when the call ended without a verdict."""
        if trial:
            self._trial_in_flight = False

    def snapshot(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
        }


class BreakerRegistry:
    """Lazily creates one breaker per logical resource."""

    def __init__(
        self,
        failure_threshold: int | None = None,
        reset_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold or settings.BREAKER_FAILURE_THRESHOLD
        self.reset_timeout = reset_timeout if reset_timeout is not None else settings.BREAKER_RESET_TIMEOUT_SECONDS
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, resource: str) -> CircuitBreaker:
        breaker = self._breakers.get(resource)
        if breaker is None:
            breaker = CircuitBreaker(resource, self.failure_threshold, self.reset_timeout, self._clock)
            self._breakers[resource] = breaker
        return breaker

    def snapshot(self) -> list[dict[str, Any]]:
        return [b.snapshot() for b in self._breakers.values()]
