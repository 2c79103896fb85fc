from datetime import datetime


class RecEngineError(Exception):
    """Base class for all engine errors."""


class TransientStoreError(RecEngineError):
    """A store call failed in a way that may succeed on retry."""


class StoreUnavailable(RecEngineError):
    """The circuit for a store resource is open; no call was attempted."""

    def __init__(self, resource: str, retry_in: float | None = None):
        self.resource = resource
        self.retry_in = retry_in
        super().__init__(f"Store resource '{resource}' is unavailable")


class ValidationError(RecEngineError):
    """Bad input. Rejected immediately and never retried."""


class RateLimitExceeded(RecEngineError):
    def __init__(self, endpoint_class: str, reset_at: datetime, retry_after: int):
        self.endpoint_class = endpoint_class
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for '{endpoint_class}', retry after {retry_after}s")


class EmbeddingUnavailable(RecEngineError):
    """The embedding provider could not produce a vector. Callers fall back locally."""


class CacheUnavailable(RecEngineError):
    """The shared cache could not be reached."""


class JobQueueFull(RecEngineError):
    """The background job queue has no room for another job."""
