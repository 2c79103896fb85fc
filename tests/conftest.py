from datetime import datetime, timedelta, timezone

import pytest

from recengine.core.cache import MemoryCacheBackend, SharedCache
from recengine.core.config import settings
from recengine.services.store import InMemoryRecordStore, ResilientStoreClient

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic-style clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for ``asyncio.sleep``: records delays and optionally moves a clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


def hours_ago(hours: float) -> str:
    return (NOW - timedelta(hours=hours)).isoformat()


def catalog() -> dict[str, list[dict]]:
    return {
        "products": [
            {"id": "P1", "name": "Blue mug", "category": "mug", "price": 20.0, "tags": ["ceramic", "coffee"], "rating": 4.0},
            {"id": "P2", "name": "Green mug", "category": "mug", "price": 22.0, "tags": ["ceramic", "coffee"], "rating": 3.5},
            {"id": "P3", "name": "Coffee poster", "category": "poster", "price": 5.0, "tags": ["coffee", "art"], "rating": 4.8},
            {"id": "P4", "name": "Large mug", "category": "mug", "price": 30.0, "tags": ["ceramic"], "rating": 4.2},
            {"id": "P5", "name": "Cork coaster", "category": "kitchen", "price": 8.0, "tags": ["coffee"], "rating": 4.5},
        ],
        "relations": [
            {"item_id": "P1", "related_id": "P5", "type": "cross_sell"},
            {"item_id": "P1", "related_id": "P3", "type": "bundle"},
        ],
        "users": [
            {"id": "u1", "segment": "students"},
            {"id": "u2", "segment": "students"},
            {"id": "u3", "segment": "pros"},
        ],
        "interactions": [
            {"user_id": "u1", "item_id": "P1", "type": "view", "session_id": "s1", "created_at": hours_ago(1)},
            {"user_id": "u1", "item_id": "P2", "type": "purchase", "created_at": hours_ago(2)},
            {"user_id": "u2", "item_id": "P1", "type": "view", "created_at": hours_ago(3)},
            {"user_id": "u2", "item_id": "P4", "type": "purchase", "created_at": hours_ago(3)},
            {"user_id": "u2", "item_id": "P5", "type": "add_to_cart", "created_at": hours_ago(5)},
            {"user_id": "u3", "item_id": "P3", "type": "view", "created_at": hours_ago(1)},
            {"user_id": "u3", "item_id": "P3", "type": "view", "created_at": hours_ago(2)},
            {"user_id": "u3", "item_id": "P4", "type": "view", "created_at": hours_ago(48)},
        ],
    }


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
    monkeypatch.setattr(settings, "STORE_URL", None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def data() -> dict[str, list[dict]]:
    return catalog()


@pytest.fixture
def make_store(data):
    """Factory: an in-memory store behind a resilient client that never really sleeps."""

    def _make(rows: dict[str, list[dict]] | None = None) -> ResilientStoreClient:
        return ResilientStoreClient(InMemoryRecordStore(rows if rows is not None else data), sleep=SleepRecorder())

    return _make


@pytest.fixture
def make_cache(clock):
    def _make(maxsize: int = 1_000) -> SharedCache:
        return SharedCache(MemoryCacheBackend(maxsize=maxsize, timer=clock), prefix="test:")

    return _make
