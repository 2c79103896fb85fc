from typing import Any

from loguru import logger
from pydantic import ValidationError as SchemaError

from recengine.core.cache import MISS, SharedCache
from recengine.core.config import settings
from recengine.core.constants import INTERACTIONS, SESSION_ITEMS_KEY
from recengine.core.errors import StoreUnavailable, TransientStoreError, ValidationError
from recengine.core.security import redact_identity
from recengine.models.records import Interaction
from recengine.models.results import InteractionResult
from recengine.services.store.resilient import ResilientStoreClient


class InteractionRecorder:
    """
    Validates and stores user interactions.

    A write that fails is reported as failed, never silently dropped. Interactions
    carrying a session id also refresh the session's recent-items list in the
    shared cache, which the session strategy reads.
    """

    def __init__(self, store: ResilientStoreClient, cache: SharedCache):
        self.store = store
        self.cache = cache

    async def record(
        self,
        identity: str,
        item_id: str,
        type: str,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> InteractionResult:
        try:
            interaction = Interaction(
                user_id=identity,
                item_id=item_id,
                type=type,
                session_id=session_id,
                metadata=metadata or {},
            )
        except SchemaError as e:
            return InteractionResult(ok=False, error="validation_error", detail=str(e))
        if not interaction.user_id or not interaction.item_id:
            return InteractionResult(ok=False, error="validation_error", detail="identity and item_id are required")

        try:
            await self.store.insert(INTERACTIONS, interaction.model_dump(mode="json"))
        except StoreUnavailable as e:
            logger.warning(f"[{redact_identity(identity)}] Interaction not recorded: {e}")
            return InteractionResult(ok=False, error="store_unavailable", detail=str(e))
        except ValidationError as e:
            return InteractionResult(ok=False, error="validation_error", detail=str(e))
        except TransientStoreError as e:
            logger.error(f"[{redact_identity(identity)}] Interaction write failed: {e}")
            return InteractionResult(ok=False, error="store_error", detail=str(e))
        except Exception as e:
            logger.exception(f"[{redact_identity(identity)}] Unexpected error recording interaction: {e!r}")
            return InteractionResult(ok=False, error="store_error", detail=str(e))

        if interaction.session_id:
            await self._remember_session_item(interaction.session_id, interaction.item_id)
        return InteractionResult(ok=True, interaction=interaction)

    async def _remember_session_item(self, session_id: str, item_id: str) -> None:
        key = SESSION_ITEMS_KEY.format(session_id=session_id)
        current = await self.cache.get(key)
        items = [i for i in current if i != item_id] if current is not MISS and isinstance(current, list) else []
        items.insert(0, item_id)
        await self.cache.set(key, items[: settings.SESSION_ITEMS_LIMIT], ttl=settings.SESSION_ITEMS_TTL_SECONDS)
