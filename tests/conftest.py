"""Pytest configuration and shared fixtures."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from adgen.auth import StaticCredentials
from adgen.client import ApiClient
from adgen.review.models import Candidate

BASE_URL = "http://testserver"
T0 = datetime(2025, 7, 28, 9, 0, tzinfo=timezone.utc)

VALID_CAMPAIGN = {
    "product": "TrailRunner 2",
    "brand_name": "Stride",
    "target_audience": "weekend hikers",
    "call_to_action": "Shop now",
    "selected_strategy": {
        "id": "s1",
        "title": "Mud test",
        "description": "Show the shoe surviving a muddy trail",
        "estimated_impact": "high",
    },
}


def body_of(request: httpx.Request) -> dict:
    """Decoded JSON body of a captured request."""
    return json.loads(request.content or b"{}")


def make_candidates(n: int, job_id: str = "job-1") -> list[Candidate]:
    """c1..cn, created one minute apart."""
    return [
        Candidate(
            id=f"c{i}",
            job_id=job_id,
            ordinal=i - 1,
            score=90 - i,
            media_ref=f"/media/c{i}.png",
            created_at=T0 + timedelta(minutes=i),
        )
        for i in range(1, n + 1)
    ]


@pytest.fixture
def make_client():
    """Factory: ApiClient whose requests are answered by ``handler``."""

    def _make(handler, token: str | None = "test-token") -> ApiClient:
        return ApiClient(BASE_URL, StaticCredentials(token), transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def five_candidates():
    return make_candidates(5)
