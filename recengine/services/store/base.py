import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from loguru import logger

Filters = dict[str, Any]

_OPERATORS = ("gte", "gt", "lte", "lt", "neq")


def split_filter_key(key: str) -> tuple[str, str]:
    """Split ``created_at__gte`` into ``("created_at", "gte")``. Plain keys mean equality."""
    field, sep, op = key.rpartition("__")
    if sep and op in _OPERATORS:
        return field, op
    return key, "eq"


def _comparable(value: Any) -> Any:
    if isinstance(value, str) and len(value) >= 10 and value[4:5] == "-" and value[7:8] == "-":
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _matches(record: dict[str, Any], filters: Filters) -> bool:
    for key, expected in filters.items():
        field, op = split_filter_key(key)
        actual = record.get(field)
        if op == "eq":
            if isinstance(expected, (list, tuple, set)):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
            continue
        if op == "neq":
            if actual == expected:
                return False
            continue
        if actual is None:
            return False
        left, right = _comparable(actual), _comparable(expected)
        try:
            ok = {
                "gte": lambda: left >= right,
                "gt": lambda: left > right,
                "lte": lambda: left <= right,
                "lt": lambda: left < right,
            }[op]()
        except TypeError:
            return False
        if not ok:
            return False
    return True


class RecordStore(ABC):
    """
    Generic record store: filtered query, insert and update on named collections.

    Filter keys are field names for equality (a list value means "one of"), or
    ``field__gte`` / ``__gt`` / ``__lte`` / ``__lt`` / ``__neq`` for comparisons.
    """

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def update(self, collection: str, filters: Filters, changes: dict[str, Any]) -> int: ...

    async def close(self) -> None:
        return None


class InMemoryRecordStore(RecordStore):
    """Process-local store used for tests and local development."""

    def __init__(self, data: dict[str, list[dict[str, Any]]] | None = None):
        self._collections: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (data or {}).items()
        }

    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [row for row in self._collections.get(collection, []) if _matches(row, filters or {})]
        if order_by:
            # rows missing the field sort last in either direction
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: _comparable(r[order_by]), reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(record)
        self._collections.setdefault(collection, []).append(row)
        logger.debug(f"Inserted record into {collection}")
        return copy.deepcopy(row)

    async def update(self, collection: str, filters: Filters, changes: dict[str, Any]) -> int:
        updated = 0
        for row in self._collections.get(collection, []):
            if _matches(row, filters):
                row.update(copy.deepcopy(changes))
                updated += 1
        return updated
