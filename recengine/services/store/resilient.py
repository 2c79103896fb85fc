import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from recengine.core.config import settings
from recengine.core.errors import TransientStoreError, ValidationError
from recengine.services.store.base import Filters, RecordStore
from recengine.services.store.breaker import BreakerRegistry, CircuitBreaker

T = TypeVar("T")


class ResilientStoreClient:
    """
    Record store access guarded by a circuit breaker per resource and a bounded
    exponential-backoff retry per call.

    A call whose retries are exhausted counts as one breaker failure. Validation
    errors are neither retried nor counted. While a resource's circuit is open,
    calls fail with ``StoreUnavailable`` and the store is not touched.
    """

    def __init__(
        self,
        store: RecordStore,
        breakers: BreakerRegistry | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        attempt_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.breakers = breakers or BreakerRegistry(clock=clock)
        self.max_attempts = max_attempts or settings.STORE_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.STORE_RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else settings.STORE_RETRY_MAX_DELAY
        self.attempt_timeout = attempt_timeout or settings.STORE_TIMEOUT_SECONDS
        self._sleep = sleep

    def breaker(self, resource: str) -> CircuitBreaker:
        return self.breakers.get(resource)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    async def call(self, resource: str, operation: Callable[[], Awaitable[T]]) -> T:
        breaker = self.breaker(resource)
        trial = await breaker.acquire()
        try:
            result = await self._with_retry(resource, operation)
        except ValidationError:
            breaker.release(trial)
            raise
        except asyncio.CancelledError:
            breaker.release(trial)
            raise
        except Exception:
            await breaker.record_failure(trial)
            raise
        await breaker.record_success(trial)
        return result

    async def _with_retry(self, resource: str, operation: Callable[[], Awaitable[T]]) -> T:
        last_exception: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
            except (TransientStoreError, asyncio.TimeoutError, OSError) as e:
                last_exception = e
                if attempt + 1 < self.max_attempts:
                    wait_time = self.backoff_delay(attempt)
                    logger.warning(
                        f"Store call on '{resource}' failed: {e!r}. "
                        f"Retrying in {wait_time}s... (Attempt {attempt + 1}/{self.max_attempts})"
                    )
                    await self._sleep(wait_time)
                else:
                    logger.error(f"Store call on '{resource}' failed after {self.max_attempts} attempts: {e!r}")

        if isinstance(last_exception, TransientStoreError):
            raise last_exception
        raise TransientStoreError(f"Store call on '{resource}' failed: {last_exception!r}") from last_exception

    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return await self.call(
            collection,
            lambda: self.store.query(collection, filters, order_by=order_by, descending=descending, limit=limit),
        )

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        return await self.call(collection, lambda: self.store.insert(collection, record))

    async def update(self, collection: str, filters: Filters, changes: dict[str, Any]) -> int:
        return await self.call(collection, lambda: self.store.update(collection, filters, changes))

    def snapshot(self) -> list[dict[str, Any]]:
        return self.breakers.snapshot()

    async def close(self) -> None:
        await self.store.close()
