import asyncio

import pytest

from conftest import FakeClock, SleepRecorder
from recengine.core.errors import StoreUnavailable, TransientStoreError, ValidationError
from recengine.services.store import BreakerRegistry, CircuitState, InMemoryRecordStore, ResilientStoreClient


class FlakyStore(InMemoryRecordStore):
    """Fails the first ``failures`` queries with the given error."""

    def __init__(self, failures: int, error: Exception | None = None, data=None):
        super().__init__(data or {"products": [{"id": "P1", "rating": 4.0}]})
        self.failures = failures
        self.error = error or TransientStoreError("502 from upstream")
        self.calls = 0

    async def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await super().query(collection, filters, order_by=order_by, descending=descending, limit=limit)


def make_client(store, clock=None, sleep=None, **kwargs) -> ResilientStoreClient:
    clock = clock or FakeClock()
    return ResilientStoreClient(
        store,
        breakers=BreakerRegistry(failure_threshold=3, reset_timeout=30, clock=clock),
        max_attempts=3,
        base_delay=0.2,
        max_delay=2.0,
        attempt_timeout=1.0,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


def test_transient_failures_are_retried_with_backoff():
    async def run():
        store = FlakyStore(failures=2)
        sleep = SleepRecorder()
        client = make_client(store, sleep=sleep)
        rows = await client.query("products", {"id": "P1"})
        assert [r["id"] for r in rows] == ["P1"]
        assert store.calls == 3
        assert sleep.delays == [0.2, 0.4]
        assert client.breaker("products").failure_count == 0

    asyncio.run(run())


def test_backoff_is_capped():
    client = make_client(InMemoryRecordStore())
    assert [client.backoff_delay(a) for a in range(6)] == [0.2, 0.4, 0.8, 1.6, 2.0, 2.0]


def test_exhausted_retries_count_as_one_breaker_failure():
    async def run():
        store = FlakyStore(failures=100)
        client = make_client(store)
        with pytest.raises(TransientStoreError):
            await client.query("products")
        assert store.calls == 3
        assert client.breaker("products").failure_count == 1

    asyncio.run(run())


def test_open_circuit_short_circuits_without_touching_store():
    async def run():
        clock = FakeClock()
        store = FlakyStore(failures=9)
        client = make_client(store, clock=clock)
        for _ in range(3):
            with pytest.raises(TransientStoreError):
                await client.query("products")
        assert client.breaker("products").state is CircuitState.OPEN
        assert store.calls == 9

        with pytest.raises(StoreUnavailable):
            await client.query("products")
        assert store.calls == 9

        # other resources are unaffected
        assert await client.query("users") == []

        clock.advance(31)
        rows = await client.query("products")
        assert rows and store.calls == 10
        assert client.breaker("products").state is CircuitState.CLOSED

    asyncio.run(run())


def test_validation_errors_are_not_retried_or_counted():
    async def run():
        store = FlakyStore(failures=1, error=ValidationError("400 bad filter"))
        client = make_client(store)
        with pytest.raises(ValidationError):
            await client.query("products")
        assert store.calls == 1
        assert client.breaker("products").failure_count == 0

    asyncio.run(run())


def test_slow_attempt_times_out_and_is_retried():
    class SlowOnce(InMemoryRecordStore):
        calls = 0

        async def query(self, *args, **kwargs):
            self.calls += 1
            if self.calls == 1:
                await asyncio.sleep(10)
            return await super().query(*args, **kwargs)

    async def run():
        store = SlowOnce({"products": [{"id": "P1"}]})
        client = ResilientStoreClient(
            store, max_attempts=2, base_delay=0, attempt_timeout=0.05, sleep=SleepRecorder()
        )
        rows = await client.query("products")
        assert rows == [{"id": "P1"}]
        assert store.calls == 2

    asyncio.run(run())


def test_writes_go_through_the_breaker():
    async def run():
        client = make_client(InMemoryRecordStore({"products": [{"id": "P1", "embedding": None}]}))
        await client.insert("interactions", {"user_id": "u1", "item_id": "P1", "type": "view"})
        assert await client.update("products", {"id": "P1"}, {"embedding": [0.1]}) == 1
        assert (await client.query("products"))[0]["embedding"] == [0.1]
        resources = {s["resource"] for s in client.snapshot()}
        assert resources == {"interactions", "products"}

    asyncio.run(run())


def test_call_admitted_before_trip_cannot_close_the_circuit():
    class GatedStore(InMemoryRecordStore):
        def __init__(self):
            super().__init__({"products": [{"id": "P1"}]})
            self.gate = asyncio.Event()
            self.started = asyncio.Event()

        async def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
            if filters == {"id": "P1"}:
                self.started.set()
                await self.gate.wait()
                return await super().query(collection, filters, limit=limit)
            raise TransientStoreError("502 from upstream")

    async def run():
        store = GatedStore()
        client = make_client(store)
        slow = asyncio.create_task(client.query("products", {"id": "P1"}))
        await store.started.wait()

        for _ in range(3):
            with pytest.raises(TransientStoreError):
                await client.query("products")
        assert client.breaker("products").state is CircuitState.OPEN

        store.gate.set()
        assert await slow == [{"id": "P1"}]
        assert client.breaker("products").state is CircuitState.OPEN
        with pytest.raises(StoreUnavailable):
            await client.query("products")

    asyncio.run(run())
