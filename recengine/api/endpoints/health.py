from fastapi import APIRouter, Depends

from recengine.services.recommendation_service import RecommendationService, get_recommendation_service

router = APIRouter(tags=["health"])


@router.get("/health", summary="Simple readiness probe")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics", summary="Circuit breaker and job runner state")
async def metrics(service: RecommendationService = Depends(get_recommendation_service)) -> dict:
    return service.snapshot()
