"""Error taxonomy for the generation client.

Every failure a caller has to branch on gets its own class. ``Unauthenticated``
and ``QuotaExceeded`` are never retried automatically; ``TransientNetworkError``
is retried silently by poll loops until the retry budget runs out.
"""

from __future__ import annotations

from typing import Any


class AdGenError(Exception):
    """Base class for all client errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(AdGenError):
    """Payload rejected locally, before any network call."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class Unauthenticated(AdGenError):
    """No credential available, or the service rejected it."""


class QuotaExceeded(AdGenError):
    """The service reported insufficient credits (HTTP 402)."""

    def __init__(self, message: str = "Insufficient credits. Please top up.", details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class TransientNetworkError(AdGenError):
    """Timeout, dropped connection or 5xx; safe to retry on the next tick."""


class ApiError(AdGenError):
    """Non-2xx response that is neither auth, quota nor transient."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class UnknownJob(AdGenError, KeyError):
    """Job id not tracked by this tracker."""

    def __str__(self) -> str:
        return self.message


class JobFailed(AdGenError):
    """Terminal failure reported by the backend. Restart, never resume."""

    def __init__(self, job_id: str, message: str):
        super().__init__(message or "Generation failed. Please try again.")
        self.job_id = job_id


class StreamError(AdGenError):
    """Mid-stream error event or dropped connection; terminal for that stream."""


class DisposalAckFailure(AdGenError):
    """The backend did not acknowledge an accept/reject decision."""

    def __init__(self, candidate_id: str, action: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not save {action} for {candidate_id}{detail}")
        self.candidate_id = candidate_id
        self.action = action
        self.cause = cause
