import asyncio
import hashlib
import json
from collections.abc import Mapping
from typing import Any

from loguru import logger

from recengine.core.cache import MISS, SharedCache
from recengine.core.config import settings
from recengine.core.constants import PRODUCTS, RESULT_CACHE_KEY
from recengine.models.recommendation import (
    Candidate,
    MergedCandidate,
    RecommendationRequest,
    RecommendationResponse,
    Strategy,
    StrategyParams,
    WeightVector,
)
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy
from recengine.services.recommendation.weights import compute_weights
from recengine.services.store.resilient import ResilientStoreClient


def cache_key(request: RecommendationRequest) -> str:
    """Result cache key from the non-null identifiers and a hash of the context. ``limit`` is not part of it."""
    payload: dict[str, Any] = {
        name: value
        for name, value in (
            ("user_id", request.user_id),
            ("item_id", request.item_id),
            ("session_id", request.session_id),
        )
        if value
    }
    if request.context:
        context = json.dumps(request.context, sort_keys=True, default=str)
        payload["context"] = hashlib.sha256(context.encode("utf-8")).hexdigest()
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
    return RESULT_CACHE_KEY.format(digest=digest)


def apply_context_filters(items: list[MergedCandidate], request: RecommendationRequest) -> list[MergedCandidate]:
    excluded = {str(i) for i in request.context.get("exclude") or []}
    if request.item_id:
        excluded.add(request.item_id)
    category = request.context.get("category")
    return [
        item
        for item in items
        if item.item_id not in excluded and (not category or item.category == category)
    ]


class RecommendationAggregator:
    """
    Runs every applicable strategy concurrently and merges their candidates into one
    deterministic ranking.

    Flow:
    1. Result cache lookup (key excludes ``limit``; full result cached, truncated per call)
    2. Weights from which identifiers are present
    3. Strategy fan-out, each under its own timeout, all under a request deadline
    4. Merge, dedupe and rank, then apply context filters
    5. Highest-rated fallback when nothing survives; never raises
    """

    def __init__(
        self,
        store: ResilientStoreClient,
        cache: SharedCache,
        strategies: Mapping[Strategy, RecommendationStrategy],
        base_weights: WeightVector | None = None,
        strategy_timeout: float | None = None,
        request_timeout: float | None = None,
        diversity_bonus: float | None = None,
    ):
        self.store = store
        self.cache = cache
        self.strategies = dict(strategies)
        self.base_weights = base_weights
        self.strategy_timeout = strategy_timeout or settings.STRATEGY_TIMEOUT_SECONDS
        self.request_timeout = request_timeout or settings.REQUEST_TIMEOUT_SECONDS
        self.diversity_bonus = diversity_bonus if diversity_bonus is not None else settings.DIVERSITY_BONUS

    async def get_recommendations(self, request: RecommendationRequest) -> RecommendationResponse:
        limit = max(0, min(request.limit, settings.MAX_RECOMMENDATIONS))
        key = cache_key(request)

        cached = await self.cache.get(key)
        if cached is not MISS:
            try:
                return self._from_cache(cached, limit)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed cached recommendations: {e}")

        weights = compute_weights(request.available, self.base_weights)
        params = StrategyParams(
            user_id=request.user_id,
            item_id=request.item_id,
            session_id=request.session_id,
            context=request.context,
            # the cached list is truncated per call, so it must cover the largest allowed limit
            limit=max(settings.STRATEGY_CANDIDATE_LIMIT, settings.MAX_RECOMMENDATIONS),
        )
        batches = await self._collect(weights, params)

        merged = RecommendationScoring.merge(batches, weights, self.diversity_bonus)
        items = apply_context_filters(merged, request)
        contributed = [s for s in Strategy if batches.get(s)]

        if not items:
            logger.info(f"No strategy candidates for {key}; using highest-rated fallback")
            return await self._fallback(request, key, limit)

        await self.cache.set(
            key,
            {
                "items": [i.model_dump(mode="json") for i in items],
                "strategies": [s.value for s in contributed],
                "fallback": False,
            },
            ttl=settings.RESULT_CACHE_TTL_SECONDS,
        )
        return RecommendationResponse(items=items[:limit], strategies=contributed)

    @staticmethod
    def _from_cache(cached: dict[str, Any], limit: int) -> RecommendationResponse:
        items = [MergedCandidate.model_validate(i) for i in cached["items"]]
        return RecommendationResponse(
            items=items[:limit],
            strategies=[Strategy(s) for s in cached.get("strategies", [])],
            fallback=bool(cached.get("fallback")),
            cached=True,
        )

    async def _run_strategy(self, strategy: RecommendationStrategy, params: StrategyParams) -> list[Candidate]:
        try:
            return await asyncio.wait_for(strategy.fetch(params), timeout=self.strategy_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Strategy {strategy.name.value} timed out after {self.strategy_timeout}s")
        except Exception as e:
            logger.warning(f"Strategy {strategy.name.value} failed: {e!r}")
        return []

    async def _collect(self, weights: WeightVector, params: StrategyParams) -> dict[Strategy, list[Candidate]]:
        tasks = {
            name: asyncio.create_task(self._run_strategy(self.strategies[name], params))
            for name in Strategy
            if name in weights and name in self.strategies
        }
        if not tasks:
            return {}

        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=self.request_timeout)
            if pending:
                logger.warning(f"Request deadline hit; cancelling {len(pending)} pending strategies")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        return {name: task.result() for name, task in tasks.items() if task.done() and not task.cancelled()}

    async def _fallback(self, request: RecommendationRequest, key: str, limit: int) -> RecommendationResponse:
        try:
            rows = await self.store.query(
                PRODUCTS, {}, order_by="rating", descending=True, limit=settings.MAX_RECOMMENDATIONS
            )
            products = RecommendationStrategy.parse_products(rows)
        except Exception as e:
            logger.error(f"Fallback recommendations unavailable: {e!r}")
            return RecommendationResponse(degraded=True, fallback=True, error="store_unavailable")

        items = apply_context_filters(
            [
                MergedCandidate(
                    item_id=p.id,
                    final_score=p.rating,
                    category=p.category,
                    price=p.price,
                    tags=list(p.tags),
                )
                for p in products
            ],
            request,
        )
        items.sort(key=RecommendationScoring.rank_key)

        await self.cache.set(
            key,
            {"items": [i.model_dump(mode="json") for i in items], "strategies": [], "fallback": True},
            ttl=settings.RESULT_CACHE_TTL_SECONDS,
        )
        return RecommendationResponse(items=items[:limit], fallback=True)
