"""Generation job lifecycle: kinds, status, and the tracker."""

from adgen.jobs.kinds import HANDLERS, Delivery, KindHandler, handler_for
from adgen.jobs.models import GenerationJob, JobKind, JobStatus, PollResult
from adgen.jobs.tracker import JobTracker

__all__ = [
    "Delivery",
    "GenerationJob",
    "HANDLERS",
    "JobKind",
    "JobStatus",
    "JobTracker",
    "KindHandler",
    "PollResult",
    "handler_for",
]
