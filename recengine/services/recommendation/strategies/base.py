from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import ValidationError as SchemaError

from recengine.core.config import settings
from recengine.core.constants import INTERACTIONS, PRODUCTS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.models.records import Interaction, Product, utcnow
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.store.resilient import ResilientStoreClient


class RecommendationStrategy(ABC):
    """
    Interface for a candidate-generation strategy.

    Strategies read through the resilient store client and let store errors
    propagate; the aggregator turns any failure into an empty candidate list.
    """

    name: Strategy

    def __init__(self, store: ResilientStoreClient, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @abstractmethod
    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        """
        Produce candidates sorted by raw score (desc), then item id.
        """
        pass

    def candidate(self, product: Product, score: float, **attributes: Any) -> Candidate:
        return Candidate(
            item_id=product.id,
            raw_score=score,
            source=self.name,
            category=product.category,
            price=product.price,
            tags=list(product.tags),
            attributes=attributes,
        )

    @staticmethod
    def top(candidates: Iterable[Candidate], limit: int) -> list[Candidate]:
        ranked = sorted(candidates, key=RecommendationScoring.candidate_key)
        return ranked[:limit]

    @staticmethod
    def parse_products(rows: list[dict[str, Any]]) -> list[Product]:
        products = []
        for row in rows:
            try:
                products.append(Product.model_validate(row))
            except SchemaError as e:
                logger.debug(f"Skipping malformed product {row.get('id')}: {e}")
        return products

    @staticmethod
    def parse_interactions(rows: list[dict[str, Any]]) -> list[Interaction]:
        interactions = []
        for row in rows:
            try:
                interactions.append(Interaction.model_validate(row))
            except SchemaError as e:
                logger.debug(f"Skipping malformed interaction for item {row.get('item_id')}: {e}")
        return interactions

    async def get_product(self, item_id: str) -> Product | None:
        rows = await self.store.query(PRODUCTS, {"id": item_id}, limit=1)
        products = self.parse_products(rows)
        return products[0] if products else None

    async def get_products(self, item_ids: Iterable[str]) -> dict[str, Product]:
        ids = sorted(set(item_ids))
        if not ids:
            return {}
        rows = await self.store.query(PRODUCTS, {"id": ids})
        return {p.id: p for p in self.parse_products(rows)}

    async def product_pool(self, filters: dict[str, Any] | None = None) -> list[Product]:
        """Catalog slice to score against, best-rated first."""
        rows = await self.store.query(
            PRODUCTS, filters or {}, order_by="rating", descending=True, limit=settings.CANDIDATE_POOL_LIMIT
        )
        return self.parse_products(rows)

    async def user_interactions(self, user_id: str, limit: int | None = None) -> list[Interaction]:
        rows = await self.store.query(
            INTERACTIONS,
            {"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=limit or settings.BEHAVIOR_HISTORY_LIMIT,
        )
        return self.parse_interactions(rows)

    def age_hours(self, moment: datetime) -> float:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return (self.clock() - moment).total_seconds() / 3600.0
