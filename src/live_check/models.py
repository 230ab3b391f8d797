"""Check data model."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(str, Enum):
    confirmed = "CONFIRMED"
    absent = "ABSENT"
    failed = "FAILED"


class Target(BaseModel):
    resource_id: str
    url: str
    hint: str | None = None

    @field_validator("url", mode="before")
    @classmethod
    def strip_url(cls, v: str) -> str:
        return (v or "").strip()


class Task(BaseModel):
    resource_id: str
    payload: Target
    retry_count: int = 0

    @classmethod
    def for_target(cls, target: Target) -> Task:
        return cls(resource_id=target.resource_id, payload=target)


class Verdict(BaseModel):
    """Outcome of one inspection attempt. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    outcome: Outcome
    timestamp: datetime = Field(default_factory=utcnow)
    evidence: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, resource_id: str, error: str) -> Verdict:
        return cls(resource_id=resource_id, outcome=Outcome.failed, error=error)


class Lock(BaseModel):
    resource_id: str
    principal: str
    display_name: str
    acquired_at: float


# ── Request bodies ────────────────────────────────────────────────────────

class StartRequest(BaseModel):
    resource_ids: list[str] = Field(min_length=1)
    principal: str = Field(min_length=1)
    concurrency: int | None = None


class StopRequest(BaseModel):
    principal: str = Field(min_length=1)


class ConcurrencyRequest(BaseModel):
    concurrency: int


class LockRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    principal: str = Field(min_length=1)
    display_name: str = "Worker"


class ReleaseRequest(BaseModel):
    resource_id: str = Field(min_length=1)
    principal: str = Field(min_length=1)


class ForceReleaseRequest(BaseModel):
    resource_id: str = Field(min_length=1)
