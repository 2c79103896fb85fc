from collections import defaultdict

from recengine.core.config import settings
from recengine.core.constants import INTERACTION_WEIGHTS, INTERACTIONS, USERS
from recengine.models.recommendation import Candidate, Strategy, StrategyParams
from recengine.models.records import UserProfile
from recengine.services.recommendation.scoring import RecommendationScoring
from recengine.services.recommendation.strategies.base import RecommendationStrategy

# Only strong signals count towards what a segment "likes"
SEGMENT_SIGNALS = ["purchase", "add_to_cart"]


class DemographicStrategy(RecommendationStrategy):
    """Popular purchases among other users of the requester's segment."""

    name = Strategy.DEMOGRAPHIC

    async def fetch(self, params: StrategyParams) -> list[Candidate]:
        if not params.user_id:
            return []

        rows = await self.store.query(USERS, {"id": params.user_id}, limit=1)
        if not rows:
            return []
        profile = UserProfile.model_validate(rows[0])
        if not profile.segment:
            return []

        peers = await self.store.query(
            USERS,
            {"segment": profile.segment, "id__neq": params.user_id},
            limit=settings.SEGMENT_SCAN_LIMIT,
        )
        peer_ids = sorted({str(row["id"]) for row in peers if row.get("id")})
        if not peer_ids:
            return []

        rows = await self.store.query(
            INTERACTIONS,
            {"user_id": peer_ids, "type": SEGMENT_SIGNALS},
            limit=settings.INTERACTION_SCAN_LIMIT,
        )
        popularity: dict[str, float] = defaultdict(float)
        for it in self.parse_interactions(rows):
            popularity[it.item_id] += INTERACTION_WEIGHTS.get(it.type, 1.0)

        scores = RecommendationScoring.normalize_by_max(popularity)
        top_ids = sorted(scores, key=lambda i: (-scores[i], i))[: params.limit]
        products = await self.get_products(top_ids)
        candidates = [
            self.candidate(products[item_id], scores[item_id], segment=profile.segment)
            for item_id in top_ids
            if item_id in products
        ]
        return self.top(candidates, params.limit)
