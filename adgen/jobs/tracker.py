"""Job lifecycle: start a remote generation job and poll it to a terminal state.

POST /api/jobs             {kind, parameters}  -> {jobId}
GET  /api/jobs/{job_id}                        -> {status, progress, result?, error?}

Every poll request is tagged with a per-job sequence number. A response is
applied only if its sequence is newer than the last applied one, so a slow
response to an earlier poll can never overwrite newer state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel

from adgen.client import ApiClient, unwrap
from adgen.errors import (
    ApiError,
    JobFailed,
    QuotaExceeded,
    TransientNetworkError,
    UnknownJob,
)
from adgen.jobs.kinds import handler_for
from adgen.jobs.models import GenerationJob, JobKind, JobStatus, PollResult, can_transition
from adgen.review.models import Candidate
from adgen.stream.reducer import Stage, StreamState

logger = logging.getLogger(__name__)

JOBS_PATH = "/api/jobs"
CREDIT_CHECK_PATH = "/api/credits/check"


class JobTracker:
    """Tracks the jobs started from one screen. Not shared across screens."""

    def __init__(
        self,
        client: ApiClient,
        *,
        poll_interval: float = 3.0,
        retry_budget: int = 10,
    ):
        self._client = client
        self.poll_interval = poll_interval
        self.retry_budget = retry_budget
        self._jobs: dict[str, GenerationJob] = {}
        self._next_seq: dict[str, int] = {}
        self._cancelled: set[str] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> GenerationJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise UnknownJob(f"Unknown job: {job_id}") from None

    @property
    def jobs(self) -> list[GenerationJob]:
        return list(self._jobs.values())

    def candidates(self, job_id: str) -> list[Candidate]:
        """Result candidates of a completed or partial job."""
        job = self.get(job_id)
        if not job.status.is_usable:
            return []
        return handler_for(job.kind).candidates(job.id, job.result)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def preflight(self, kind: JobKind | str, estimate: int | None = None) -> None:
        """Best-effort credit check. Only a 402 is surfaced; the server re-checks on start."""
        handler = handler_for(kind)
        body = {"kind": handler.kind.value, "estimateFor": handler.credit_estimate if estimate is None else estimate}
        try:
            await self._client.post_json(CREDIT_CHECK_PATH, body)
        except QuotaExceeded:
            raise
        except (TransientNetworkError, ApiError) as e:
            logger.info("Credit pre-check skipped for %s: %s", handler.kind.value, e)

    async def start(self, kind: JobKind | str, payload: dict[str, Any] | BaseModel) -> str:
        """Validate locally, then ask the service to start the job. Returns the job id."""
        handler = handler_for(kind)
        parameters = handler.validate(payload)
        body = unwrap(
            await self._client.post_json(JOBS_PATH, {"kind": handler.kind.value, "parameters": parameters})
        )
        job_id = None
        if isinstance(body, dict):
            job_id = body.get("jobId") or body.get("job_id") or body.get("id")
        if not job_id:
            raise ApiError("Service did not return a job id", status_code=200)
        job_id = str(job_id)
        self._jobs[job_id] = GenerationJob(id=job_id, kind=handler.kind, parameters=parameters)
        self._next_seq[job_id] = 0
        self._cancelled.discard(job_id)
        logger.info("Started %s job %s", handler.kind.value, job_id)
        return job_id

    def track(self, job_id: str, kind: JobKind | str) -> GenerationJob:
        """Adopt a job started elsewhere (another session, a redirect) so it can be polled."""
        if job_id in self._jobs:
            return self._jobs[job_id]
        job = GenerationJob(id=job_id, kind=handler_for(kind).kind)
        self._jobs[job_id] = job
        self._next_seq[job_id] = 0
        self._cancelled.discard(job_id)
        return job

    async def restart(self, job_id: str) -> str:
        """Start the same job again from scratch. Jobs are never resumed."""
        old = self.get(job_id)
        self.cancel(job_id)
        return await self.start(old.kind, old.parameters)

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def poll(self, job_id: str) -> PollResult:
        """Fetch the job's status once and apply it if it is the newest response."""
        self.get(job_id)
        seq = self._next_seq.get(job_id, 0) + 1
        self._next_seq[job_id] = seq
        body = unwrap(await self._client.get_json(f"{JOBS_PATH}/{job_id}"))
        if not isinstance(body, dict):
            raise TransientNetworkError(f"Unexpected poll body for {job_id}")
        try:
            result = PollResult.from_wire(body, seq)
        except ValueError as e:
            raise TransientNetworkError(f"Unreadable poll response for {job_id}: {e}") from e
        self._apply(job_id, result)
        return result

    def _apply(self, job_id: str, result: PollResult) -> bool:
        if self._closed or job_id in self._cancelled:
            logger.debug("Dropping poll #%d for cancelled job %s", result.seq, job_id)
            return False
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if result.seq <= job.last_applied_seq:
            logger.debug(
                "Discarding stale poll #%d for %s (applied #%d)", result.seq, job_id, job.last_applied_seq
            )
            return False
        job.last_applied_seq = result.seq
        if job.is_terminal:
            return False
        if job.status != result.status and not can_transition(job.status, result.status):
            logger.warning(
                "Ignoring illegal transition %s -> %s for job %s",
                job.status.value, result.status.value, job_id,
            )
            return False
        job.status = result.status
        job.progress_message = result.progress_message or job.progress_message
        if result.status.is_usable:
            job.result = result.result
        if result.status is JobStatus.FAILED:
            job.error = result.error or "Generation failed"
        job.updated_at = datetime.now(timezone.utc)
        return True

    async def watch(self, job_id: str) -> AsyncIterator[GenerationJob]:
        """Poll at ``poll_interval`` and yield the job after every applied tick.

        Stops after the first terminal snapshot. Transient failures are
        swallowed until ``retry_budget`` consecutive ones have occurred.
        """
        failures = 0
        while True:
            if self._closed or job_id in self._cancelled:
                return
            try:
                await self.poll(job_id)
            except TransientNetworkError as e:
                failures += 1
                logger.info("Transient poll failure %d/%d for %s: %s", failures, self.retry_budget, job_id, e)
                if failures >= self.retry_budget:
                    raise
            else:
                failures = 0
                job = self.get(job_id)
                yield job
                if job.is_terminal:
                    return
            await asyncio.sleep(self.poll_interval)

    async def wait(
        self,
        job_id: str,
        on_update: Callable[[GenerationJob], None] | None = None,
    ) -> GenerationJob:
        """Poll until terminal.

        Returns completed/partial jobs (or the last applied state if the job was
        cancelled meanwhile) and raises JobFailed for failed ones.
        """
        async for job in self.watch(job_id):
            if on_update is not None:
                on_update(job)
        job = self.get(job_id)
        if job.status is JobStatus.FAILED:
            raise JobFailed(job_id, job.error or "Generation failed")
        return job

    # ------------------------------------------------------------------
    # Stream-delivered jobs
    # ------------------------------------------------------------------

    def record_stream_result(self, job_id: str, state: StreamState) -> GenerationJob:
        """Fold a finished progress stream into the job record."""
        job = self.get(job_id)
        if self._closed or job_id in self._cancelled or job.is_terminal or not state.done:
            return job
        if state.stage is Stage.FAILED:
            job.status = JobStatus.FAILED
            job.error = state.error or "Generation failed"
        else:
            job.status = JobStatus.COMPLETED
            job.result = state.result
        job.progress_message = state.current_item or job.progress_message
        job.updated_at = datetime.now(timezone.utc)
        return job

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cancel(self, job_id: str) -> None:
        """Stop applying updates for ``job_id``; running watch loops exit."""
        self._cancelled.add(job_id)

    def forget(self, job_id: str) -> None:
        self.cancel(job_id)
        self._jobs.pop(job_id, None)
        self._next_seq.pop(job_id, None)

    def close(self) -> None:
        self._closed = True
