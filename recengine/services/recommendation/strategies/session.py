from collections import Counter

from loguru import logger

from recengine.core.cache import MISS, SharedCache
from recengine.core.config import settings
from recengine.core.constants import INTERACTIONS, SESSION_ITEMS_KEY
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.models.records import Product
from recengine.services.embedding import EmbeddingService, cosine_similarity
from recengine.services.recommendation.strategies.base import RecommendationStrategy


def centroid(vectors: list[list[float]]) -> list[float]:
    if not vectors:
        return []
    dimension = len(vectors[0])
    same_size = [v for v in vectors if len(v) == dimension]
    return [sum(v[i] for v in same_size) / len(same_size) for i in range(dimension)]


class SessionStrategy(RecommendationStrategy):
    """
    Recommends items similar to what was viewed in the current session.

    Session items come from the shared cache (kept fresh by the interaction recorder)
    and fall back to the session's stored interactions. Similarity is the cosine
    between each catalog item's embedding and the centroid of the session items'
    embeddings, or a provider embedding of their text. Without either, items score
    by the share of session items in their category.
    """

    name = Strategy.SESSION

    def __init__(self, *args, cache: SharedCache, embedding: EmbeddingService, **kwargs):
        super().__init__(*args, **kwargs)
        self.cache = cache
        self.embedding = embedding

    async def session_items(self, session_id: str) -> list[str]:
        cached = await self.cache.get(SESSION_ITEMS_KEY.format(session_id=session_id))
        if cached is not MISS and isinstance(cached, list):
            return [str(i) for i in cached]

        rows = await self.store.query(
            INTERACTIONS,
            {"session_id": session_id},
            order_by="created_at",
            descending=True,
            limit=settings.SESSION_ITEMS_LIMIT,
        )
        seen: list[str] = []
        for it in self.parse_interactions(rows):
            if it.item_id not in seen:
                seen.append(it.item_id)
        return seen

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.session_id:
            return []

        item_ids = await self.session_items(params.session_id)
        if not item_ids:
            return []

        viewed = await self.get_products(item_ids)
        if not viewed:
            return []

        seen = set(item_ids)
        pool = [p for p in await self.product_pool() if p.id not in seen]
        if not pool:
            return []

        target = centroid([p.embedding for p in viewed.values() if p.embedding])
        if not target and any(p.embedding for p in pool):
            text = " ".join(p.search_text() for p in viewed.values())
            # a hashed fallback vector is not comparable with provider vectors
            target = await self.embedding.provider_embed(text, kind="query") or []

        if target:
            candidates = self._by_similarity(target, pool)
        else:
            logger.debug(f"No embeddings for session {params.session_id}; scoring by category share")
            candidates = self._by_category(list(viewed.values()), pool)
        return self.top(candidates, params.limit)

    def _by_similarity(self, target: list[float], pool: list[Product]) -> list[Candidate]:
        candidates = []
        for product in pool:
            if not product.embedding:
                continue
            score = cosine_similarity(target, product.embedding)
            if score > 0:
                candidates.append(self.candidate(product, score))
        return candidates

    def _by_category(self, viewed: list[Product], pool: list[Product]) -> list[Candidate]:
        counts = Counter(p.category for p in viewed if p.category)
        total = sum(counts.values())
        if not total:
            return []
        return [
            self.candidate(product, counts[product.category] / total)
            for product in pool
            if product.category in counts
        ]
