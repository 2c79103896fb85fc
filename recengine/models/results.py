from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from recengine.models.records import Interaction, utcnow


class RateLimitDecision(BaseModel):
    permitted: bool
    remaining: int
    reset_at: datetime
    retry_after: int = 0
    limit: int = 0


class InteractionResult(BaseModel):
    ok: bool
    interaction: Interaction | None = None
    error: str | None = None
    detail: str | None = None


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobRecord(BaseModel):
    job_id: str
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    last_error: str | None = None
    result: Any = None
    created_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class JobReceipt(BaseModel):
    accepted: bool
    job_id: str | None = None
    error: str | None = None
    detail: str | None = None
