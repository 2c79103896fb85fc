from collections import defaultdict

from recengine.core.config import settings
from recengine.core.constants import INTERACTION_WEIGHTS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy

CATEGORY_SHARE = 0.7
TAG_SHARE = 0.3
TOP_CATEGORIES = 3


class BehavioralStrategy(RecommendationStrategy):
    """
    Recommends from the user's own history.

    Each past interaction adds ``type weight x recency decay`` to the affinity of the
    item's category and tags. Catalog items in the strongest categories are then scored
    by the normalized category affinity and their average tag affinity.
    Items the user already purchased are never returned.
    """

    name = Strategy.BEHAVIORAL

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.user_id:
            return []

        history = await self.user_interactions(params.user_id)
        if not history:
            return []

        products = await self.get_products(i.item_id for i in history)
        category_affinity: dict[str, float] = defaultdict(float)
        tag_affinity: dict[str, float] = defaultdict(float)
        purchased: set[str] = set()

        for it in history:
            if it.type == "purchase":
                purchased.add(it.item_id)
            product = products.get(it.item_id)
            if product is None:
                continue
            weight = INTERACTION_WEIGHTS.get(it.type, 1.0) * RecommendationScoring.decay(
                self.age_hours(it.created_at), settings.BEHAVIOR_HALF_LIFE_HOURS
            )
            if product.category:
                category_affinity[product.category] += weight
            for tag in product.tags:
                tag_affinity[tag] += weight

        categories = RecommendationScoring.normalize_by_max(category_affinity)
        tags = RecommendationScoring.normalize_by_max(tag_affinity)
        if not categories:
            return []

        top_categories = sorted(categories, key=lambda c: (-categories[c], c))[:TOP_CATEGORIES]
        pool = await self.product_pool({"category": top_categories})

        candidates = []
        for product in pool:
            if product.id in purchased:
                continue
            tag_score = sum(tags.get(t, 0.0) for t in product.tags) / len(product.tags) if product.tags else 0.0
            score = CATEGORY_SHARE * categories.get(product.category or "", 0.0) + TAG_SHARE * tag_score
            if score > 0:
                candidates.append(self.candidate(product, score))
        return self.top(candidates, params.limit)
