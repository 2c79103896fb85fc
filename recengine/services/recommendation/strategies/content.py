"""
Content-similarity recommendations for a reference item.

Fixed rubric, not normalized (max 0.9):
- same category:                         0.4
- tag overlap (Jaccard) x                0.3
- price within CONTENT_PRICE_BAND:       0.2
"""

from recengine.core.config import settings
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.models.records import Product
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy

CATEGORY_WEIGHT = 0.4
TAGS_WEIGHT = 0.3
PRICE_WEIGHT = 0.2


def content_similarity(reference: Product, other: Product, price_band: float) -> float:
    score = 0.0
    if reference.category and reference.category == other.category:
        score += CATEGORY_WEIGHT
    score += TAGS_WEIGHT * RecommendationScoring.jaccard(reference.tags, other.tags)
    if reference.price is not None and other.price is not None:
        if abs(reference.price - other.price) <= price_band:
            score += PRICE_WEIGHT
    return score


class ContentSimilarityStrategy(RecommendationStrategy):
    name = Strategy.CONTENT

    def __init__(self, *args, price_band: float | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.price_band = price_band if price_band is not None else settings.CONTENT_PRICE_BAND

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.item_id:
            return []

        reference = await self.get_product(params.item_id)
        if reference is None:
            return []

        candidates = []
        for product in await self.product_pool():
            if product.id == reference.id:
                continue
            score = content_similarity(reference, product, self.price_band)
            if score > 0:
                candidates.append(self.candidate(product, score))
        return self.top(candidates, params.limit)
