from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Strategy(str, Enum):
    COLLABORATIVE = "collaborative"
    CONTENT = "content"
    BEHAVIORAL = "behavioral"
    TRENDING = "trending"
    SESSION = "session"
    DEMOGRAPHIC = "demographic"
    BUSINESS_RULE = "business_rule"


WeightVector = dict[Strategy, float]


class AvailableContext(BaseModel):
    """Which identifiers a request carries. Drives strategy selection and weighting."""

    model_config = ConfigDict(frozen=True)

    has_user: bool = False
    has_item: bool = False
    has_session: bool = False


class Candidate(BaseModel):
    """One item proposed by one strategy, scored on that strategy's own scale."""

    item_id: str
    raw_score: float
    source: Strategy
    category: str | None = None
    price: float | None = None
    tags: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class MergedCandidate(BaseModel):
    item_id: str
    sources: set[Strategy] = Field(default_factory=set)
    final_score: float = 0.0
    category: str | None = None
    price: float | None = None
    tags: list[str] = Field(default_factory=list)

    @field_serializer("sources")
    def _ordered_sources(self, sources: set[Strategy]) -> list[Strategy]:
        order = list(Strategy)
        return sorted(sources, key=order.index)


class StrategyParams(BaseModel):
    """Inputs handed to every strategy's ``fetch``."""

    user_id: str | None = None
    item_id: str | None = None
    session_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    limit: int = 50


class RecommendationRequest(BaseModel):
    user_id: str | None = None
    item_id: str | None = None
    session_id: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=10, ge=1)

    @property
    def available(self) -> AvailableContext:
        return AvailableContext(
            has_user=bool(self.user_id),
            has_item=bool(self.item_id),
            has_session=bool(self.session_id),
        )


class RecommendationResponse(BaseModel):
    ok: bool = True
    items: list[MergedCandidate] = Field(default_factory=list)
    strategies: list[Strategy] = Field(default_factory=list)
    cached: bool = False
    degraded: bool = False
    fallback: bool = False
    error: str | None = None
