"""Which generated items a non-paying user sees obscured.

Within each job, generated items are ordered by creation time; the first
``free_per_job`` stay visible and the rest are locked. Accepting or rejecting
an item does not change its rank, so decisions never unlock further items.
Items whose generation is still pending or failed take no slot and are not
locked. Nothing here is cached: call ``apply`` again whenever the items or the
entitlement change.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Mapping, Sequence

from pydantic import BaseModel

from adgen.entitlements import Entitlement
from adgen.review.models import Candidate

DEFAULT_FREE_PER_JOB = 2

# Item-level generation states (``metadata["status"]``) that are not a finished creative
_NOT_GENERATED = {"pending", "queued", "generating", "processing", "failed", "error"}

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


class Route(str, Enum):
    OPEN = "open"
    UPGRADE = "upgrade"


class GatedItem(BaseModel):
    candidate: Candidate
    locked: bool = False


def _is_entitled(entitled: bool | Entitlement) -> bool:
    if isinstance(entitled, Entitlement):
        return entitled.entitled
    return bool(entitled)


def _sort_key(candidate: Candidate) -> datetime:
    ts = candidate.created_at
    if ts is None:
        return _LATEST
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def is_generated(candidate: Candidate) -> bool:
    status = candidate.metadata.get("status")
    return not (isinstance(status, str) and status.strip().lower() in _NOT_GENERATED)


class GatingPolicy:
    def __init__(self, free_per_job: int = DEFAULT_FREE_PER_JOB):
        if free_per_job < 0:
            raise ValueError("free_per_job must be >= 0")
        self.free_per_job = free_per_job

    def apply(
        self,
        items_by_job: Mapping[str, Sequence[Candidate]],
        entitled: bool | Entitlement,
    ) -> set[str]:
        """Ids of the locked candidates."""
        if _is_entitled(entitled):
            return set()
        locked: set[str] = set()
        for group in items_by_job.values():
            ordered = sorted((c for c in group if is_generated(c)), key=_sort_key)
            locked.update(c.id for c in ordered[self.free_per_job:])
        return locked

    def render(
        self,
        items_by_job: Mapping[str, Sequence[Candidate]],
        entitled: bool | Entitlement,
    ) -> list[GatedItem]:
        """Every candidate, in job then delivery order, with its lock flag."""
        locked = self.apply(items_by_job, entitled)
        return [
            GatedItem(candidate=c, locked=c.id in locked)
            for group in items_by_job.values()
            for c in group
        ]

    @staticmethod
    def route(candidate_id: str, locked_ids: Iterable[str]) -> Route:
        """Interacting with a locked item leads to the upgrade flow, never the content."""
        return Route.UPGRADE if candidate_id in set(locked_ids) else Route.OPEN


def group_by_job(candidates: Iterable[Candidate]) -> dict[str, list[Candidate]]:
    grouped: dict[str, list[Candidate]] = {}
    for c in candidates:
        grouped.setdefault(c.job_id, []).append(c)
    return grouped


def apply(
    items_by_job: Mapping[str, Sequence[Candidate]],
    entitled: bool | Entitlement,
    free_per_job: int = DEFAULT_FREE_PER_JOB,
) -> set[str]:
    return GatingPolicy(free_per_job).apply(items_by_job, entitled)
