"""Generation job schema and status."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    CAMPAIGN = "campaign"
    DEEP_RESEARCH = "deep_research"
    PROMPT_SCORING = "prompt_scoring"
    IMAGE_SET = "image_set"
    VIDEO = "video"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PARTIAL)

    @property
    def is_usable(self) -> bool:
        """Terminal with a result worth reviewing."""
        return self in (JobStatus.COMPLETED, JobStatus.PARTIAL)

    @property
    def rank(self) -> int:
        if self is JobStatus.QUEUED:
            return 0
        if self is JobStatus.RUNNING:
            return 1
        return 2

    @classmethod
    def from_wire(cls, value: str) -> "JobStatus":
        """Map the service's status vocabulary onto ours."""
        key = (value or "").strip().lower()
        try:
            return cls(key)
        except ValueError:
            pass
        if key in _WIRE_ALIASES:
            return _WIRE_ALIASES[key]
        raise ValueError(f"Unknown job status: {value!r}")


_WIRE_ALIASES = {
    "pending": JobStatus.QUEUED,
    "generating": JobStatus.RUNNING,
    "processing": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
    "succeeded": JobStatus.COMPLETED,
    "success": JobStatus.COMPLETED,
    "done": JobStatus.COMPLETED,
    "error": JobStatus.FAILED,
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """queued -> running -> {completed | failed | partial}; terminal states are final."""
    if current.is_terminal:
        return False
    return new.rank >= current.rank


class PollResult(BaseModel):
    """One poll response, tagged with the request's sequence number."""

    status: JobStatus
    progress_message: str = ""
    result: dict[str, Any] | None = None
    error: str | None = None
    seq: int = 0

    @classmethod
    def from_wire(cls, body: dict[str, Any], seq: int) -> "PollResult":
        result = body.get("result")
        if result is not None and not isinstance(result, dict):
            result = {"items": result}
        return cls(
            status=JobStatus.from_wire(str(body.get("status", ""))),
            progress_message=str(body.get("progress") or body.get("progressMessage") or ""),
            result=result,
            error=body.get("error") or None,
            seq=seq,
        )


class GenerationJob(BaseModel):
    """Client-side view of a server-tracked generation job."""

    id: str
    kind: JobKind
    status: JobStatus = JobStatus.QUEUED
    progress_message: str = ""
    result: dict[str, Any] | None = None
    error: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_applied_seq: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
