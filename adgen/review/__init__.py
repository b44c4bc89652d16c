"""Candidate triage: review queue, models, export."""

from adgen.review.export import ExportReport, export_saved
from adgen.review.models import (
    Candidate,
    Direction,
    Disposition,
    ReviewQueueState,
    ReviewSummary,
)
from adgen.review.queue import Acknowledger, HttpAcknowledger, ReviewQueue

__all__ = [
    "Acknowledger",
    "Candidate",
    "Direction",
    "Disposition",
    "ExportReport",
    "HttpAcknowledger",
    "ReviewQueue",
    "ReviewQueueState",
    "ReviewSummary",
    "export_saved",
]
