from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from recengine.api.deps import client_identity, enforce_rate_limit
from recengine.models.results import InteractionResult
from recengine.services.recommendation_service import RecommendationService, get_recommendation_service

router = APIRouter(prefix="/interactions", tags=["interactions"])


class InteractionRequest(BaseModel):
    user_id: str = Field(description="Caller identity the interaction belongs to")
    item_id: str
    type: str = Field(description="view, add_to_cart, purchase or rating")
    session_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("", response_model=InteractionResult, status_code=201)
async def record_interaction(
    payload: InteractionRequest,
    request: Request,
    service: RecommendationService = Depends(get_recommendation_service),
) -> InteractionResult:
    await enforce_rate_limit(service, client_identity(request, payload.user_id), "interactions")

    result = await service.record_interaction(
        payload.user_id, payload.item_id, payload.type, payload.metadata, session_id=payload.session_id
    )
    if result.ok:
        return result
    if result.error == "validation_error":
        raise HTTPException(status_code=422, detail=result.detail or "Invalid interaction.")
    # store_unavailable / store_error: tell the caller nothing was recorded
    raise HTTPException(status_code=503, detail="Interaction could not be recorded. Try again later.")
