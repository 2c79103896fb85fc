import math
import time
from collections.abc import Callable
from datetime import datetime, timezone

from loguru import logger

from recengine.core.cache import SharedCache, shared_cache
from recengine.core.config import settings
from recengine.core.constants import RATE_LIMIT_KEY
from recengine.core.errors import CacheUnavailable
from recengine.core.security import redact_identity
from recengine.models.results import RateLimitDecision


class RateLimiter:
    """
    Per-identity request counter backed by the shared cache.

    The first request of a window creates the counter with a TTL equal to the
    window; later requests increment it. A window ends only when its key expires.
    Every attempt is counted, including rejected ones. If the cache cannot be
    reached the limiter fails open.
    """

    def __init__(
        self,
        cache: SharedCache | None = None,
        limits: dict[str, tuple[int, int]] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache or shared_cache
        self.limits = limits or settings.RATE_LIMITS
        self._clock = clock

    def limits_for(self, endpoint_class: str) -> tuple[int, int]:
        return self.limits.get(endpoint_class) or self.limits.get("default") or (60_000, 100)

    async def allow(self, identity: str, endpoint_class: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        key = RATE_LIMIT_KEY.format(endpoint_class=endpoint_class, identity=identity)
        window = window_ms / 1000.0
        now = self._clock()

        try:
            count = await self.cache.increment(key, ttl=window)
            remaining_ttl = await self.cache.ttl(key)
        except CacheUnavailable as e:
            logger.warning(f"Rate limiter cache unavailable, allowing {redact_identity(identity)}: {e}")
            return RateLimitDecision(
                permitted=True,
                remaining=max_requests,
                reset_at=datetime.fromtimestamp(now + window, tz=timezone.utc),
                limit=max_requests,
            )

        if remaining_ttl is None:
            remaining_ttl = window

        permitted = count <= max_requests
        decision = RateLimitDecision(
            permitted=permitted,
            remaining=max(0, max_requests - count),
            reset_at=datetime.fromtimestamp(now + remaining_ttl, tz=timezone.utc),
            retry_after=0 if permitted else max(1, math.ceil(remaining_ttl)),
            limit=max_requests,
        )
        if not permitted:
            logger.info(
                f"[{redact_identity(identity)}] Rate limit hit for {endpoint_class} "
                f"({count}/{max_requests}), retry in {decision.retry_after}s"
            )
        return decision

    async def check(self, identity: str, endpoint_class: str) -> RateLimitDecision:
        """Apply the configured limits for ``endpoint_class``."""
        window_ms, max_requests = self.limits_for(endpoint_class)
        return await self.allow(identity, endpoint_class, window_ms, max_requests)
