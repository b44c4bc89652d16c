"""Screen-level orchestration: start a job, follow it by polling or streaming,
and hand its candidates to a ReviewQueue."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

from adgen.client import ApiClient
from adgen.errors import StreamError
from adgen.jobs.kinds import Delivery, handler_for
from adgen.jobs.models import GenerationJob, JobKind, JobStatus
from adgen.jobs.tracker import JobTracker
from adgen.review.models import Candidate
from adgen.review.queue import HttpAcknowledger, ReviewQueue
from adgen.stream.consumer import ProgressStreamConsumer, StreamHandle
from adgen.stream.reducer import StreamState

logger = logging.getLogger(__name__)


class GenerationFlow:
    """One generation screen. Call ``cancel()`` on teardown."""

    def __init__(
        self,
        tracker: JobTracker,
        consumer: ProgressStreamConsumer,
        *,
        on_job: Optional[Callable[[GenerationJob], None]] = None,
        on_stream: Optional[Callable[[StreamState], None]] = None,
    ):
        self.tracker = tracker
        self.consumer = consumer
        self._on_job = on_job
        self._on_stream = on_stream
        self.handle: Optional[StreamHandle] = None

    async def run(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | BaseModel,
        *,
        preflight: bool = True,
    ) -> tuple[GenerationJob, list[Candidate]]:
        """Start ``kind`` and follow it to a terminal state.

        Raises JobFailed (polled jobs) or StreamError (streamed jobs) on failure.
        """
        handler = handler_for(kind)
        parameters = handler.validate(payload)
        if preflight:
            await self.tracker.preflight(handler.kind)
        job_id = await self.tracker.start(handler.kind, parameters)

        if handler.delivery is Delivery.STREAM:
            job = await self._follow_stream(job_id, handler.stream_path or "", parameters)
        else:
            job = await self.tracker.wait(job_id, on_update=self._on_job)
        return job, self.tracker.candidates(job_id)

    async def _follow_stream(self, job_id: str, endpoint: str, parameters: dict[str, Any]) -> GenerationJob:
        self.handle = self.consumer.subscribe(endpoint, {"jobId": job_id, **parameters}, on_state=self._on_stream)
        state = await self.handle.wait()
        job = self.tracker.record_stream_result(job_id, state)
        if job.status is JobStatus.FAILED:
            if isinstance(self.handle.exception, StreamError) or self.handle.exception is None:
                raise StreamError(job.error or "Generation failed")
            raise self.handle.exception
        if self._on_job is not None:
            self._on_job(job)
        return job

    def review_queue(self, client: ApiClient, job_id: str, **kwargs: Any) -> ReviewQueue:
        """A ReviewQueue seeded with the job's candidates, acknowledging to the service."""
        queue = ReviewQueue(HttpAcknowledger(client, job_id), **kwargs)
        queue.initialize(self.tracker.candidates(job_id))
        return queue

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
        self.consumer.cancel_all()
        self.tracker.close()
