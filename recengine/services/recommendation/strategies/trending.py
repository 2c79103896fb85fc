from collections import defaultdict
from datetime import timedelta

from recengine.core.config import settings
from recengine.core.constants import INTERACTION_WEIGHTS, INTERACTIONS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy


class TrendingStrategy(RecommendationStrategy):
    """
    Items with the most weighted, recency-decayed activity inside the trending window.

    Needs no identifiers, so it is the one strategy every request can use.
    """

    name = Strategy.TRENDING

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        since = self.clock() - timedelta(hours=settings.TRENDING_WINDOW_HOURS)
        rows = await self.store.query(
            INTERACTIONS,
            {"created_at__gte": since.isoformat()},
            order_by="created_at",
            descending=True,
            limit=settings.INTERACTION_SCAN_LIMIT,
        )

        activity: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        for it in self.parse_interactions(rows):
            decay = RecommendationScoring.decay(self.age_hours(it.created_at), settings.TRENDING_HALF_LIFE_HOURS)
            activity[it.item_id] += INTERACTION_WEIGHTS.get(it.type, 1.0) * decay
            counts[it.item_id] += 1

        scores = RecommendationScoring.normalize_by_max(activity)
        top_ids = sorted(scores, key=lambda i: (-scores[i], i))[: params.limit]
        products = await self.get_products(top_ids)

        candidates = [
            self.candidate(products[item_id], scores[item_id], interactions=counts[item_id])
            for item_id in top_ids
            if item_id in products
        ]
        return self.top(candidates, params.limit)
