from typing import Any

from loguru import logger

from recengine.core.base_client import BaseClient
from recengine.core.config import settings
from recengine.core.version import __version__
from recengine.services.store.base import Filters, RecordStore, split_filter_key


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filter_params(filters: Filters | None) -> list[tuple[str, str]]:
    """Translate engine filters into PostgREST query parameters."""
    params: list[tuple[str, str]] = []
    for key, value in (filters or {}).items():
        field, op = split_filter_key(key)
        if op == "eq" and isinstance(value, (list, tuple, set)):
            joined = ",".join(f'"{_encode_value(v)}"' for v in value)
            params.append((field, f"in.({joined})"))
        elif value is None and op == "eq":
            params.append((field, "is.null"))
        else:
            params.append((field, f"{op}.{_encode_value(value)}"))
    return params


class RestRecordStore(BaseClient, RecordStore):
    """
    Record store backed by a PostgREST-compatible HTTP API (e.g. Supabase).
    """

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        api_key = api_key or settings.STORE_API_KEY or ""
        headers = {
            "User-Agent": f"recengine/{__version__}",
            "Accept": "application/json",
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
        }
        base_url = (base_url or settings.STORE_URL or "").rstrip("/")
        if not base_url:
            logger.warning("STORE_URL is not set. Record store calls will fail until configured.")
        super().__init__(
            base_url=f"{base_url}/rest/v1" if base_url else "",
            timeout=timeout or settings.STORE_TIMEOUT_SECONDS,
            headers=headers,
        )

    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = [("select", "*")] + build_filter_params(filters)
        if order_by:
            direction = "desc" if descending else "asc"
            params.append(("order", f"{order_by}.{direction}.nullslast"))
        if limit is not None:
            params.append(("limit", str(limit)))
        rows = await self.get(f"/{collection}", params=params)
        return rows or []

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self.post(f"/{collection}", json=record, headers={"Prefer": "return=representation"})
        if isinstance(rows, list) and rows:
            return rows[0]
        return record

    async def update(self, collection: str, filters: Filters, changes: dict[str, Any]) -> int:
        rows = await self.patch(
            f"/{collection}",
            json=changes,
            params=build_filter_params(filters),
            headers={"Prefer": "return=representation"},
        )
        return len(rows) if isinstance(rows, list) else 0
