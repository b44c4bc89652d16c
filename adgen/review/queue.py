"""Swipe-style triage over a job's candidates.

Candidates live in an arena keyed by their stable id; ``remaining`` is an
ordered key list whose last element is the top of the stack. Decisions are
applied locally first and then acknowledged to the service in the
background. If an acknowledgment fails the candidate goes back on top of the
stack and a ``DisposalAckFailure`` notice is raised to the caller so the
decision can be retried.

Invariants, for the lifetime of one ``initialize``:

* every candidate id is in exactly one of remaining / saved / rejected
* len(remaining) + len(saved) + len(rejected) == initial count
* cursor == len(remaining) - 1
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional, Protocol

from adgen.client import ApiClient
from adgen.errors import DisposalAckFailure, ValidationError
from adgen.review.models import (
    Candidate,
    Direction,
    Disposition,
    ReviewQueueState,
    ReviewSummary,
)

logger = logging.getLogger(__name__)


class Acknowledger(Protocol):
    async def acknowledge(self, candidate: Candidate, direction: Direction) -> None: ...


class HttpAcknowledger:
    """POST {itemId, action} to the job's dispositions endpoint."""

    def __init__(self, client: ApiClient, job_id: str, path: str = "/api/jobs/{job_id}/dispositions"):
        self._client = client
        self._path = path.format(job_id=job_id)

    async def acknowledge(self, candidate: Candidate, direction: Direction) -> None:
        await self._client.post_json(self._path, {"itemId": candidate.id, "action": direction.value})


class ReviewQueue:
    def __init__(
        self,
        acknowledger: Optional[Acknowledger] = None,
        *,
        rollback_on_ack_failure: bool = True,
        on_notice: Optional[Callable[[DisposalAckFailure], None]] = None,
    ):
        self._acknowledger = acknowledger
        self._rollback_on_ack_failure = rollback_on_ack_failure
        self._on_notice = on_notice
        self._arena: dict[str, Candidate] = {}
        self._remaining: list[str] = []
        self._saved: list[str] = []
        self._rejected: list[str] = []
        self._history: list[tuple[str, Direction]] = []
        self._decisions: dict[str, int] = {}
        self._decision_seq = 0
        self._initial_count = 0
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._closed = False
        self.notices: list[DisposalAckFailure] = []

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self, candidates: Iterable[Candidate]) -> None:
        """Load a result set. Delivery order is kept; the last candidate is on top."""
        items = list(candidates)
        ids = [c.id for c in items]
        if len(set(ids)) != len(ids):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValidationError(f"Duplicate candidate ids: {', '.join(dupes)}")
        self._cancel_pending()
        self._generation += 1
        self._arena = {c.id: c.model_copy(update={"disposition": Disposition.UNDECIDED}) for c in items}
        self._remaining = ids
        self._saved = []
        self._rejected = []
        self._history = []
        self._decisions = {}
        self._initial_count = len(items)
        self.notices = []
        self._closed = False

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        return len(self._remaining) - 1

    @property
    def initial_count(self) -> int:
        return self._initial_count

    @property
    def remaining_count(self) -> int:
        return len(self._remaining)

    @property
    def saved_count(self) -> int:
        return len(self._saved)

    @property
    def rejected_count(self) -> int:
        return len(self._rejected)

    @property
    def remaining(self) -> list[Candidate]:
        return [self._arena[i] for i in self._remaining]

    @property
    def saved(self) -> list[Candidate]:
        return [self._arena[i] for i in self._saved]

    @property
    def rejected(self) -> list[Candidate]:
        return [self._arena[i] for i in self._rejected]

    @property
    def top(self) -> Optional[Candidate]:
        """Candidate under the cursor, or None when the stack is empty."""
        if not self._remaining:
            return None
        return self._arena[self._remaining[self.cursor]]

    @property
    def pending_acks(self) -> int:
        return len(self._pending)

    @property
    def is_reviewed(self) -> bool:
        return not self._remaining and bool(self._saved or self._rejected)

    def reviewed_view(self) -> Optional[ReviewSummary]:
        if not self.is_reviewed:
            return None
        return ReviewSummary(saved=self.saved, saved_count=self.saved_count, rejected_count=self.rejected_count)

    def state(self) -> ReviewQueueState:
        return ReviewQueueState(
            remaining=self.remaining,
            saved=self.saved,
            rejected=self.rejected,
            cursor=self.cursor,
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def dispose(self, candidate_id: str, direction: Direction | str) -> Optional[asyncio.Task]:
        """Accept or reject a remaining candidate.

        Returns the acknowledgment task, or None if nothing changed (unknown or
        already-decided id, closed queue) or no acknowledger is configured.
        """
        direction = Direction.parse(direction)
        if self._closed or candidate_id not in self._remaining:
            logger.debug("dispose(%s) ignored: not remaining", candidate_id)
            return None
        self._remaining.remove(candidate_id)
        self._bucket(direction).append(candidate_id)
        self._set_disposition(candidate_id, direction.disposition)
        self._history.append((candidate_id, direction))
        self._decision_seq += 1
        decision = self._decision_seq
        self._decisions[candidate_id] = decision

        if self._acknowledger is None:
            return None
        task = asyncio.get_running_loop().create_task(
            self._acknowledge(self._generation, decision, self._arena[candidate_id], direction)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def restore(self) -> Optional[Candidate]:
        """Undo the most recent decision, putting that candidate back on top."""
        if self._closed or not self._history:
            return None
        candidate_id, direction = self._history.pop()
        bucket = self._bucket(direction)
        if candidate_id not in bucket:
            return None
        bucket.remove(candidate_id)
        self._remaining.insert(self.cursor + 1, candidate_id)
        self._decisions.pop(candidate_id, None)
        self._set_disposition(candidate_id, Disposition.UNDECIDED)
        return self._arena[candidate_id]

    async def _acknowledge(
        self, generation: int, decision: int, candidate: Candidate, direction: Direction
    ) -> bool:
        candidate_id = candidate.id
        try:
            await self._acknowledger.acknowledge(candidate, direction)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = DisposalAckFailure(candidate_id, direction.value, e)
            logger.warning("%s", failure.message)
            if self._closed or generation != self._generation:
                return False
            if self._decisions.get(candidate_id) != decision:
                logger.debug("Ack failure for %s superseded by a newer decision", candidate_id)
                return False
            if self._rollback_on_ack_failure:
                self._roll_back(candidate_id, direction)
            self.notices.append(failure)
            if self._on_notice is not None:
                self._on_notice(failure)
            return False

    def _roll_back(self, candidate_id: str, direction: Direction) -> None:
        bucket = self._bucket(direction)
        if candidate_id not in bucket:
            return
        bucket.remove(candidate_id)
        self._remaining.append(candidate_id)
        self._decisions.pop(candidate_id, None)
        self._set_disposition(candidate_id, Disposition.UNDECIDED)
        for i in range(len(self._history) - 1, -1, -1):
            if self._history[i][0] == candidate_id:
                del self._history[i]
                break

    def _bucket(self, direction: Direction) -> list[str]:
        return self._saved if direction is Direction.ACCEPT else self._rejected

    def _set_disposition(self, candidate_id: str, disposition: Disposition) -> None:
        self._arena[candidate_id] = self._arena[candidate_id].model_copy(update={"disposition": disposition})

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for every in-flight acknowledgment."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    async def aclose(self) -> None:
        """Cancel in-flight acknowledgments and freeze the queue."""
        self._closed = True
        pending = list(self._pending)
        self._cancel_pending()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
