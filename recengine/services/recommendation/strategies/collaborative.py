"""
Collaborative recommendations: "people who interacted with what you did also liked".
"""

from collections import defaultdict

from recengine.core.config import settings
from recengine.core.constants import INTERACTION_WEIGHTS, INTERACTIONS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy


class CollaborativeStrategy(RecommendationStrategy):
    """
    Strategy:
    1. Load the requester's interacted items
    2. Find peers who interacted with any of those items, weighted by overlap size
    3. Score the peers' other items by overlap x interaction weight
    4. Drop everything the requester already interacted with
    """

    name = Strategy.COLLABORATIVE

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.user_id:
            return []

        history = await self.user_interactions(params.user_id)
        own_items = {i.item_id for i in history}
        if not own_items:
            return []

        # Peers and how many of the requester's items they share
        rows = await self.store.query(
            INTERACTIONS, {"item_id": sorted(own_items)}, limit=settings.INTERACTION_SCAN_LIMIT
        )
        shared: dict[str, set[str]] = defaultdict(set)
        for it in self.parse_interactions(rows):
            if it.user_id != params.user_id:
                shared[it.user_id].add(it.item_id)
        if not shared:
            return []

        overlap = {peer: len(items) for peer, items in shared.items()}
        peers = sorted(overlap, key=lambda p: (-overlap[p], p))[: settings.PEER_LIMIT]

        rows = await self.store.query(INTERACTIONS, {"user_id": peers}, limit=settings.INTERACTION_SCAN_LIMIT)
        scores: dict[str, float] = defaultdict(float)
        for it in self.parse_interactions(rows):
            if it.item_id in own_items:
                continue
            scores[it.item_id] += overlap[it.user_id] * INTERACTION_WEIGHTS.get(it.type, 1.0)

        normalized = RecommendationScoring.normalize_by_max(scores)
        top_ids = sorted(normalized, key=lambda i: (-normalized[i], i))[: params.limit]
        products = await self.get_products(top_ids)

        candidates = [
            self.candidate(products[item_id], normalized[item_id], peers=len(peers))
            for item_id in top_ids
            if item_id in products
        ]
        return self.top(candidates, params.limit)
