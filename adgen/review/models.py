"""Candidate and review-queue schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Disposition(str, Enum):
    UNDECIDED = "undecided"
    SAVED = "saved"
    REJECTED = "rejected"


class Direction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"

    @classmethod
    def parse(cls, value: "Direction | str") -> "Direction":
        """Accept swipe directions too: right saves, left rejects."""
        if isinstance(value, Direction):
            return value
        key = value.strip().lower()
        if key in ("right", "save", "saved"):
            return cls.ACCEPT
        if key in ("left", "rejected"):
            return cls.REJECT
        return cls(key)

    @property
    def disposition(self) -> Disposition:
        return Disposition.SAVED if self is Direction.ACCEPT else Disposition.REJECTED


class Candidate(BaseModel):
    """One generated creative awaiting a decision."""

    id: str
    job_id: str = ""
    ordinal: int = 0
    score: float | None = None
    media_ref: str = ""
    title: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    disposition: Disposition = Disposition.UNDECIDED
    created_at: datetime | None = None


class ReviewQueueState(BaseModel):
    """Snapshot of a ReviewQueue."""

    remaining: list[Candidate] = Field(default_factory=list)
    saved: list[Candidate] = Field(default_factory=list)
    rejected: list[Candidate] = Field(default_factory=list)
    cursor: int = -1


class ReviewSummary(BaseModel):
    """Terminal "reviewed" view, surfaced once every candidate has a decision."""

    saved: list[Candidate] = Field(default_factory=list)
    saved_count: int = 0
    rejected_count: int = 0
