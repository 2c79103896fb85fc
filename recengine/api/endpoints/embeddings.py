from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from recengine.api.deps import client_identity, enforce_rate_limit
from recengine.models.results import JobReceipt, JobRecord
from recengine.services.recommendation_service import RecommendationService, get_recommendation_service

router = APIRouter(prefix="/embeddings", tags=["embeddings"])


class EmbeddingJobRequest(BaseModel):
    item_id: str
    text: str


@router.post("/jobs", response_model=JobReceipt, status_code=202)
async def enqueue_embedding_job(
    payload: EmbeddingJobRequest,
    request: Request,
    service: RecommendationService = Depends(get_recommendation_service),
) -> JobReceipt:
    await enforce_rate_limit(service, client_identity(request), "embeddings")

    receipt = service.enqueue_embedding_job(payload.item_id, payload.text)
    if receipt.accepted:
        return receipt
    if receipt.error == "queue_full":
        raise HTTPException(status_code=503, detail="Job queue is full. Try again later.")
    raise HTTPException(status_code=422, detail=receipt.detail or "Invalid embedding job.")


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_embedding_job(
    job_id: str,
    service: RecommendationService = Depends(get_recommendation_service),
) -> JobRecord:
    record = service.job_status(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return record
