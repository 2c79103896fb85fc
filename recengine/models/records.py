from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

InteractionType = Literal["view", "add_to_cart", "purchase", "rating"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(BaseModel):
    """Item record as stored in the ``products`` collection."""

    id: str
    name: str = ""
    category: str | None = None
    price: float | None = None
    tags: list[str] = Field(default_factory=list)
    rating: float = 0.0
    description: str = ""
    embedding: list[float] | None = None

    def search_text(self) -> str:
        return " ".join(part for part in [self.name, self.category or "", " ".join(self.tags), self.description] if part)


class Interaction(BaseModel):
    user_id: str
    item_id: str
    type: InteractionType
    session_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Relation(BaseModel):
    """Explicit item-to-item association (e.g. cross-sell)."""

    item_id: str
    related_id: str
    type: str


class UserProfile(BaseModel):
    id: str
    segment: str | None = None
