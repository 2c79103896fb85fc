from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    PORT: int = 8000
    APP_ENV: Literal["development", "production", "test"] = "production"

    # Shared cache
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://redis:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "recengine:"
    # Capacity of the in-process cache backend; LRU eviction beyond this
    CACHE_MAX_ENTRIES: int = 10_000
    RESULT_CACHE_TTL_SECONDS: int = 300
    SESSION_ITEMS_TTL_SECONDS: int = 1800
    SESSION_ITEMS_LIMIT: int = 20

    # Record store (PostgREST / Supabase compatible)
    STORE_URL: str | None = None
    STORE_API_KEY: str | None = None
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Circuit breaker + retry
    BREAKER_FAILURE_THRESHOLD: int = 3
    BREAKER_RESET_TIMEOUT_SECONDS: float = 30.0
    STORE_MAX_ATTEMPTS: int = 3
    STORE_RETRY_BASE_DELAY: float = 0.2
    STORE_RETRY_MAX_DELAY: float = 2.0

    # Aggregation
    STRATEGY_TIMEOUT_SECONDS: float = 3.0
    REQUEST_TIMEOUT_SECONDS: float = 5.0
    STRATEGY_CANDIDATE_LIMIT: int = 50
    MAX_RECOMMENDATIONS: int = 100
    DIVERSITY_BONUS: float = 0.05
    WEIGHT_COLLABORATIVE: float = 0.25
    WEIGHT_CONTENT: float = 0.20
    WEIGHT_BEHAVIORAL: float = 0.15
    WEIGHT_TRENDING: float = 0.10
    WEIGHT_SESSION: float = 0.15
    WEIGHT_DEMOGRAPHIC: float = 0.05
    WEIGHT_BUSINESS_RULE: float = 0.10

    # Strategy tuning
    TRENDING_WINDOW_HOURS: int = 24
    TRENDING_HALF_LIFE_HOURS: float = 6.0
    CONTENT_PRICE_BAND: float = 10.0
    UPSELL_PRICE_MULTIPLIER: float = 1.2
    BEHAVIOR_HISTORY_LIMIT: int = 200
    CANDIDATE_POOL_LIMIT: int = 500
    INTERACTION_SCAN_LIMIT: int = 5000
    PEER_LIMIT: int = 50
    BEHAVIOR_HALF_LIFE_HOURS: float = 168.0
    SEGMENT_SCAN_LIMIT: int = 500

    # Rate limiting: endpoint class -> (window in ms, max requests)
    RATE_LIMITS: dict[str, tuple[int, int]] = {
        "recommendations": (60_000, 60),
        "interactions": (60_000, 120),
        "embeddings": (60_000, 20),
        "default": (60_000, 100),
    }

    # Background jobs
    JOB_CONCURRENCY: int = 5
    JOB_MAX_ATTEMPTS: int = 5
    JOB_BACKOFF_BASE_SECONDS: float = 2.0
    JOB_BACKOFF_MAX_SECONDS: float = 60.0
    JOB_RATE_PER_SECOND: float = 100.0
    JOB_QUEUE_SIZE: int = 10_000
    JOB_HISTORY_SIZE: int = 10_000
    JOB_HISTORY_TTL_SECONDS: int = 3600

    # Embeddings
    GEMINI_API_KEY: str | None = None
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_DIMENSION: int = 256
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0


settings = Settings()
