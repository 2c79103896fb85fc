"""
Merchandising rules for a reference item.

- Upsell: same category, priced above ``UPSELL_PRICE_MULTIPLIER`` x the reference.
  Cheaper upsells score higher (0.6 x threshold / price).
- Cross-sell: explicit ``cross_sell`` relations, fixed 0.8.

An item matched by both rules keeps the higher score.
"""

from loguru import logger
from pydantic import ValidationError as SchemaError

from recengine.core.config import settings
from recengine.core.constants import CROSS_SELL_RELATION, RELATIONS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.models.records import Product, Relation
from recengine.services.recommendation.strategies.base import RecommendationStrategy

UPSELL_WEIGHT = 0.6
CROSS_SELL_SCORE = 0.8


class BusinessRulesStrategy(RecommendationStrategy):
    name = Strategy.BUSINESS_RULE

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.item_id:
            return []

        reference = await self.get_product(params.item_id)
        if reference is None:
            return []

        best: dict[str, Candidate] = {}
        for candidate in await self._upsells(reference) + await self._cross_sells(reference):
            current = best.get(candidate.item_id)
            if current is None or candidate.raw_score > current.raw_score:
                best[candidate.item_id] = candidate
        return self.top(best.values(), params.limit)

    async def _upsells(self, reference: Product) -> list[Candidate]:
        if not reference.category or not reference.price or reference.price <= 0:
            return []
        threshold = reference.price * settings.UPSELL_PRICE_MULTIPLIER
        pool = await self.product_pool({"category": reference.category, "price__gt": threshold})
        return [
            self.candidate(p, UPSELL_WEIGHT * threshold / p.price, rule="upsell")
            for p in pool
            if p.id != reference.id and p.price and p.price > threshold
        ]

    async def _cross_sells(self, reference: Product) -> list[Candidate]:
        rows = await self.store.query(RELATIONS, {"item_id": reference.id, "type": CROSS_SELL_RELATION})
        related = []
        for row in rows:
            try:
                related.append(Relation.model_validate(row).related_id)
            except SchemaError as e:
                logger.debug(f"Skipping malformed relation for item {reference.id}: {e}")
        products = await self.get_products(related)
        return [
            self.candidate(products[item_id], CROSS_SELL_SCORE, rule="cross_sell")
            for item_id in sorted(set(related))
            if item_id in products and item_id != reference.id
        ]
