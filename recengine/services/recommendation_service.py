from typing import Any

from loguru import logger

from recengine.core.cache import SharedCache, shared_cache
from recengine.core.config import settings
from recengine.core.constants import EMBEDDING_JOB, PRODUCTS
from recengine.core.errors import JobQueueFull, ValidationError
from recengine.models.recommendation import RecommendationRequest, RecommendationResponse
from recengine.models.results import InteractionResult, JobReceipt, JobRecord, RateLimitDecision
from recengine.services.embedding import EmbeddingService
from recengine.services.interactions import InteractionRecorder
from recengine.services.jobs import JobRunner
from recengine.services.rate_limiter import RateLimiter
from recengine.services.recommendation.aggregator import RecommendationAggregator
from recengine.services.recommendation.strategies import build_strategies
from recengine.services.store import InMemoryRecordStore, RecordStore, ResilientStoreClient, RestRecordStore


class RecommendationService:
    """
    Public operation surface of the engine.

    Wires the store, cache, strategies, rate limiter and job runner together.
    No operation raises for expected failures (cache miss, open circuit, rate
    limit, bad input); each returns an explicit result model instead.
    """

    def __init__(
        self,
        store: RecordStore | ResilientStoreClient,
        cache: SharedCache | None = None,
        embedding: EmbeddingService | None = None,
        rate_limiter: RateLimiter | None = None,
        job_runner: JobRunner | None = None,
        aggregator: RecommendationAggregator | None = None,
    ):
        self.store = store if isinstance(store, ResilientStoreClient) else ResilientStoreClient(store)
        self.cache = cache or shared_cache
        self.embedding = embedding or EmbeddingService()
        self.rate_limiter = rate_limiter or RateLimiter(self.cache)
        self.jobs = job_runner or JobRunner()
        self.jobs.register(EMBEDDING_JOB, self._embedding_job)
        self.aggregator = aggregator or RecommendationAggregator(
            self.store, self.cache, build_strategies(self.store, self.cache, self.embedding)
        )
        self.interactions = InteractionRecorder(self.store, self.cache)

    @classmethod
    def from_settings(cls) -> "RecommendationService":
        if settings.STORE_URL:
            store: RecordStore = RestRecordStore()
        else:
            logger.warning("STORE_URL not set. Using in-memory record store.")
            store = InMemoryRecordStore()
        return cls(store)

    async def start(self) -> None:
        await self.jobs.start()

    async def close(self) -> None:
        await self.jobs.stop()
        await self.store.close()

    async def get_recommendations(self, request: RecommendationRequest) -> RecommendationResponse:
        try:
            return await self.aggregator.get_recommendations(request)
        except Exception as e:
            logger.exception(f"Recommendation request failed unexpectedly: {e}")
            return RecommendationResponse(ok=False, degraded=True, error="internal_error")

    async def record_interaction(
        self,
        identity: str,
        item_id: str,
        type: str,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> InteractionResult:
        return await self.interactions.record(identity, item_id, type, metadata, session_id=session_id)

    def enqueue_embedding_job(self, item_id: str, text: str) -> JobReceipt:
        if not item_id or not text or not text.strip():
            return JobReceipt(accepted=False, error="validation_error", detail="item_id and text are required")
        try:
            job_id = self.jobs.enqueue(EMBEDDING_JOB, {"item_id": item_id, "text": text})
        except JobQueueFull as e:
            return JobReceipt(accepted=False, error="queue_full", detail=str(e))
        except ValidationError as e:
            return JobReceipt(accepted=False, error="validation_error", detail=str(e))
        return JobReceipt(accepted=True, job_id=job_id)

    def job_status(self, job_id: str) -> JobRecord | None:
        return self.jobs.get_status(job_id)

    async def check_rate_limit(self, identity: str, endpoint_class: str) -> RateLimitDecision:
        return await self.rate_limiter.check(identity, endpoint_class)

    async def _embedding_job(self, payload: dict[str, Any]) -> dict[str, Any]:
        item_id = payload["item_id"]
        vector = await self.embedding.embed(payload["text"], kind="document")
        updated = await self.store.update(PRODUCTS, {"id": item_id}, {"embedding": vector})
        if not updated:
            logger.warning(f"Embedding computed for unknown product {item_id}")
        return {"item_id": item_id, "dimension": len(vector), "updated": updated}

    def snapshot(self) -> dict[str, Any]:
        return {"breakers": self.store.snapshot(), "jobs_running": self.jobs.running}


_service: RecommendationService | None = None


def get_recommendation_service() -> RecommendationService:
    global _service
    if _service is None:
        _service = RecommendationService.from_settings()
    return _service
