"""
Record store access: raw stores plus the breaker/retry wrapper the engine talks to.
"""

from recengine.services.store.base import InMemoryRecordStore, RecordStore
from recengine.services.store.breaker import BreakerRegistry, CircuitBreaker, CircuitState
from recengine.services.store.resilient import ResilientStoreClient
from recengine.services.store.rest import RestRecordStore

__all__ = [
    "RecordStore",
    "InMemoryRecordStore",
    "RestRecordStore",
    "CircuitBreaker",
    "CircuitState",
    "BreakerRegistry",
    "ResilientStoreClient",
]
