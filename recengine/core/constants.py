"""
Core constants used across the application. Keep these simple and documented.
"""

# Cache key templates (prefixed by settings.REDIS_KEY_PREFIX in the cache wrapper)
RESULT_CACHE_KEY: str = "rec:{digest}"
RATE_LIMIT_KEY: str = "ratelimit:{endpoint_class}:{identity}"
SESSION_ITEMS_KEY: str = "session:{session_id}:items"

# Record store collections
PRODUCTS: str = "products"
INTERACTIONS: str = "interactions"
RELATIONS: str = "relations"
USERS: str = "users"

# Interaction weights (purchase > add-to-cart > view)
INTERACTION_WEIGHTS: dict[str, float] = {
    "view": 1.0,
    "add_to_cart": 3.0,
    "purchase": 5.0,
    "rating": 2.0,
}

CROSS_SELL_RELATION: str = "cross_sell"
EMBEDDING_JOB: str = "embedding"
