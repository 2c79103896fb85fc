from fastapi import APIRouter, Depends, Request

from recengine.api.deps import client_identity, enforce_rate_limit
from recengine.models.recommendation import RecommendationRequest, RecommendationResponse
from recengine.services.recommendation_service import RecommendationService, get_recommendation_service

router = APIRouter(tags=["recommendations"])


@router.post("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(
    payload: RecommendationRequest,
    request: Request,
    service: RecommendationService = Depends(get_recommendation_service),
) -> RecommendationResponse:
    identity = client_identity(request, payload.user_id, payload.session_id)
    await enforce_rate_limit(service, identity, "recommendations")
    return await service.get_recommendations(payload)
