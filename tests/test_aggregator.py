import asyncio

import pytest

from conftest import NOW, SleepRecorder
from recengine.core.cache import MISS
from recengine.core.errors import TransientStoreError
from recengine.models.recommendation import RecommendationRequest, Strategy, StrategyParams
from recengine.services.embedding import EmbeddingService
from recengine.services.recommendation.aggregator import RecommendationAggregator, cache_key
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies import RecommendationStrategy, TrendingStrategy, build_strategies
from recengine.services.store import InMemoryRecordStore, ResilientStoreClient


def fixed_now():
    return NOW


def make_aggregator(store, cache, **kwargs) -> RecommendationAggregator:
    strategies = build_strategies(store, cache, EmbeddingService(dimension=8), clock=fixed_now)
    strategies.update(kwargs.pop("overrides", {}))
    return RecommendationAggregator(store, cache, strategies, **kwargs)


class BrokenStrategy(RecommendationStrategy):
    name = Strategy.CONTENT

    async def fetch(self, params):
        raise RuntimeError("index offline")


class SlowStrategy(RecommendationStrategy):
    name = Strategy.BUSINESS_RULE
    cancelled = False

    async def fetch(self, params):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            SlowStrategy.cancelled = True
            raise
        return []


class DownStore(InMemoryRecordStore):
    async def query(self, *args, **kwargs):
        raise TransientStoreError("503 from upstream")


def test_trending_only_request_matches_trending_list(make_store, make_cache):
    async def run():
        store = make_store()
        aggregator = make_aggregator(store, make_cache())
        response = await aggregator.get_recommendations(RecommendationRequest(limit=3))
        trending = await TrendingStrategy(store, clock=fixed_now).fetch(StrategyParams())
        return response, trending

    response, trending = asyncio.run(run())
    assert response.strategies == [Strategy.TRENDING]
    assert [i.item_id for i in response.items] == [c.item_id for c in trending[:3]]
    assert [i.final_score for i in response.items] == pytest.approx([c.raw_score for c in trending[:3]])
    assert not response.fallback and not response.degraded


def test_result_cache_round_trip(clock, make_store, make_cache):
    async def run():
        cache = make_cache()
        aggregator = make_aggregator(make_store(), cache)
        request = RecommendationRequest(user_id="u1", limit=5)

        first = await aggregator.get_recommendations(request)
        second = await aggregator.get_recommendations(request)
        short = await aggregator.get_recommendations(RecommendationRequest(user_id="u1", limit=1))
        clock.advance(301)
        expired = await aggregator.get_recommendations(request)
        return first, second, short, expired

    first, second, short, expired = asyncio.run(run())
    assert not first.cached
    assert second.cached
    assert second.items == first.items
    assert second.strategies == first.strategies
    assert short.cached and short.items == first.items[:1]
    assert not expired.cached


def test_multi_source_ranking_is_sorted_and_deterministic(make_store, make_cache):
    request = RecommendationRequest(user_id="u1", item_id="P1", session_id="s1", limit=10)

    async def run():
        return await make_aggregator(make_store(), make_cache()).get_recommendations(request)

    first = asyncio.run(run())
    second = asyncio.run(run())

    assert [(i.item_id, i.final_score) for i in first.items] == [(i.item_id, i.final_score) for i in second.items]
    assert first.items == sorted(first.items, key=RecommendationScoring.rank_key)
    assert "P1" not in [i.item_id for i in first.items]
    assert len({i.item_id for i in first.items}) == len(first.items)
    assert any(len(i.sources) > 1 for i in first.items)
    assert Strategy.CONTENT in first.strategies and Strategy.TRENDING in first.strategies


def test_failing_and_slow_strategies_are_isolated(make_store, make_cache):
    async def run():
        store = make_store()
        aggregator = make_aggregator(
            store,
            make_cache(),
            strategy_timeout=0.05,
            overrides={Strategy.CONTENT: BrokenStrategy(store), Strategy.BUSINESS_RULE: SlowStrategy(store)},
        )
        return await aggregator.get_recommendations(RecommendationRequest(item_id="P1", limit=10))

    response = asyncio.run(run())
    assert response.strategies == [Strategy.TRENDING]
    assert response.items
    assert all(i.sources == {Strategy.TRENDING} for i in response.items)
    assert not response.degraded


def test_request_deadline_cancels_pending_strategies(make_store, make_cache):
    SlowStrategy.cancelled = False

    async def run():
        store = make_store()
        aggregator = make_aggregator(
            store,
            make_cache(),
            strategy_timeout=30,
            request_timeout=0.1,
            overrides={Strategy.BUSINESS_RULE: SlowStrategy(store)},
        )
        return await aggregator.get_recommendations(RecommendationRequest(item_id="P1", limit=10))

    response = asyncio.run(run())
    assert SlowStrategy.cancelled
    assert Strategy.BUSINESS_RULE not in response.strategies
    assert Strategy.CONTENT in response.strategies


def test_cold_start_falls_back_to_highest_rated(data, make_store, make_cache):
    data["interactions"] = []

    async def run():
        aggregator = make_aggregator(make_store(data), make_cache())
        return await aggregator.get_recommendations(RecommendationRequest(user_id="newcomer", limit=3))

    response = asyncio.run(run())
    assert response.fallback
    assert not response.degraded
    assert [i.item_id for i in response.items] == ["P3", "P5", "P4"]
    assert all(not i.sources for i in response.items)


def test_store_outage_degrades_without_raising(make_cache):
    async def run():
        cache = make_cache()
        store = ResilientStoreClient(DownStore(), sleep=SleepRecorder())
        aggregator = make_aggregator(store, cache)
        request = RecommendationRequest(user_id="u1", limit=5)
        response = await aggregator.get_recommendations(request)
        return response, await cache.get(cache_key(request))

    response, cached = asyncio.run(run())
    assert response.degraded
    assert response.items == []
    assert cached is MISS


def test_context_filters(make_store, make_cache):
    async def run():
        aggregator = make_aggregator(make_store(), make_cache())
        excluded = await aggregator.get_recommendations(RecommendationRequest(context={"exclude": ["P2"]}, limit=10))
        mugs = await aggregator.get_recommendations(RecommendationRequest(context={"category": "mug"}, limit=10))
        return excluded, mugs

    excluded, mugs = asyncio.run(run())
    assert "P2" not in [i.item_id for i in excluded.items]
    assert mugs.items and all(i.category == "mug" for i in mugs.items)


def test_cache_key():
    base = RecommendationRequest(user_id="u1", context={"a": 1, "b": 2}, limit=5)
    assert cache_key(base) == cache_key(RecommendationRequest(user_id="u1", context={"b": 2, "a": 1}, limit=50))
    assert cache_key(base) != cache_key(RecommendationRequest(user_id="u1", context={"a": 2}, limit=5))
    assert cache_key(base) != cache_key(RecommendationRequest(user_id="u2", context={"a": 1, "b": 2}))
    assert cache_key(base).startswith("rec:")


def test_large_limit_is_filled_past_the_per_strategy_default(make_store, make_cache):
    rows = {
        "products": [
            {"id": f"T{n:02d}", "category": "mug", "price": 10.0, "rating": 3.0} for n in range(70)
        ],
        "interactions": [
            {"user_id": f"u{n}", "item_id": f"T{n:02d}", "type": "view", "created_at": NOW.isoformat()}
            for n in range(70)
        ],
    }

    async def run():
        store = make_store(rows)
        aggregator = make_aggregator(store, make_cache())
        response = await aggregator.get_recommendations(RecommendationRequest(limit=60))
        cached = await aggregator.get_recommendations(RecommendationRequest(limit=70))
        trending = await TrendingStrategy(store, clock=fixed_now).fetch(StrategyParams(limit=60))
        return response, cached, trending

    response, cached, trending = asyncio.run(run())
    assert len(trending) == 60
    assert [i.item_id for i in response.items] == [c.item_id for c in trending]
    assert cached.cached and len(cached.items) == 70
