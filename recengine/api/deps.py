from fastapi import Request

from recengine.core.errors import RateLimitExceeded
from recengine.services.recommendation_service import RecommendationService


def client_identity(request: Request, *candidates: str | None) -> str:
    """First non-empty caller identifier, falling back to the client address."""
    for candidate in candidates:
        if candidate:
            return candidate
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


async def enforce_rate_limit(service: RecommendationService, identity: str, endpoint_class: str) -> None:
    decision = await service.check_rate_limit(identity, endpoint_class)
    if not decision.permitted:
        raise RateLimitExceeded(endpoint_class, decision.reset_at, decision.retry_after)
