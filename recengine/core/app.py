from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from recengine.api.main import api_router
from recengine.core.cache import shared_cache
from recengine.core.errors import RateLimitExceeded
from recengine.services.recommendation_service import get_recommendation_service

from .config import settings
from .version import __version__


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events (startup/shutdown).
    """
    service = get_recommendation_service()
    await service.start()
    yield
    try:
        await service.close()
        logger.info("Recommendation service stopped")
    except Exception as exc:
        logger.warning(f"Failed to stop recommendation service: {exc}")
    try:
        await shared_cache.close()
    except Exception as exc:
        logger.warning(f"Failed to close shared cache: {exc}")


app = FastAPI(
    title="recengine",
    description="Multi-source recommendation aggregation engine",
    version=__version__,
    lifespan=lifespan,
    docs_url=None if settings.APP_ENV != "development" else "/docs",
    redoc_url=None if settings.APP_ENV != "development" else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded. Retry after {exc.retry_after}s."},
        headers={"Retry-After": str(exc.retry_after), "X-RateLimit-Reset": exc.reset_at.isoformat()},
    )


app.include_router(api_router)
