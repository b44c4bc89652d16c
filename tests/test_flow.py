"""End-to-end: start a job, follow it, review its candidates."""

import json

import httpx
import pytest

from adgen.errors import QuotaExceeded, StreamError
from adgen.flow import GenerationFlow
from adgen.jobs import JobKind, JobStatus, JobTracker
from adgen.stream import ProgressStreamConsumer

from conftest import VALID_CAMPAIGN

IMAGE_SET = {"brandId": "b1", "productId": "p1", "angles": ["fomo", "social proof"]}

CAMPAIGN_RESULT = {"imageAd": {"_id": "ad1", "createdAt": "2025-07-30T10:00:00Z", "imageVariations": [
    {"styleKey": "bold", "imageUrl": "/img/bold.png"},
    {"styleKey": "calm", "imageUrl": "/img/calm.png"},
    {"styleKey": "retro", "imageUrl": "/img/retro.png"},
]}}


def _sse(*frames):
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in frames).encode()


class FakeService:
    """Answers the job, credit and stream endpoints; records every request."""

    def __init__(self, polls=(), stream=b"", credits_status=200):
        self.polls = list(polls)
        self.stream = stream
        self.credits_status = credits_status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/api/credits/check":
            return httpx.Response(self.credits_status, json={"message": "Insufficient credits"})
        if path == "/api/jobs" and request.method == "POST":
            return httpx.Response(201, json={"success": True, "data": {"jobId": "job-7"}})
        if path == "/api/jobs/job-7":
            body = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
            return httpx.Response(200, json=body)
        if path == "/api/image-ads/generate-complete-campaign-stream":
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self.stream)
        if path == "/api/jobs/job-7/dispositions":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"message": f"no route {path}"})

    def paths(self):
        return [r.url.path for r in self.requests]


def _flow(client, **kwargs):
    return GenerationFlow(JobTracker(client, poll_interval=0), ProgressStreamConsumer(client), **kwargs)


@pytest.mark.asyncio
async def test_polled_job_to_review(make_client):
    service = FakeService(polls=[
        {"status": "queued"},
        {"status": "running", "progress": "Scoring prompts"},
        {"status": "completed", "result": {"generatedImages": [
            {"_id": "g1", "imageUrl": "/g1.png"}, {"_id": "g2", "imageUrl": "/g2.png"}]}},
    ])
    updates = []
    async with make_client(service) as client:
        flow = _flow(client, on_job=lambda j: updates.append(j.status))
        job, candidates = await flow.run(JobKind.IMAGE_SET, IMAGE_SET)

        assert job.status is JobStatus.COMPLETED
        assert updates == [JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.COMPLETED]
        assert [c.id for c in candidates] == ["g1", "g2"]

        queue = flow.review_queue(client, job.id)
        await queue.dispose("g2", "accept")
        await queue.dispose("g1", "reject")
        assert queue.reviewed_view().saved_count == 1
        flow.cancel()

    assert service.paths()[:2] == ["/api/credits/check", "/api/jobs"]
    assert service.paths()[-1] == "/api/jobs/job-7/dispositions"


@pytest.mark.asyncio
async def test_streamed_campaign(make_client):
    service = FakeService(stream=_sse(
        ("start", {}),
        ("scripts_start", {}),
        ("scripts_complete", {"count": 3}),
        ("images_start", {}),
        ("image_start", {"scriptName": "Bold", "scriptNumber": 1}),
        ("image_complete", {"progress": {"completed": 1, "total": 3}}),
        ("complete", CAMPAIGN_RESULT),
    ))
    stages = []
    async with make_client(service) as client:
        flow = _flow(client, on_stream=lambda s: stages.append(s.stage.value))
        job, candidates = await flow.run("campaign", VALID_CAMPAIGN)
        flow.cancel()

    assert job.status is JobStatus.COMPLETED
    assert [c.id for c in candidates] == ["bold", "calm", "retro"]
    assert stages[-1] == "complete"

    stream_request = service.requests[-1]
    params = json.loads(stream_request.url.params["data"])
    assert params["jobId"] == "job-7"
    assert params["product"] == "TrailRunner 2"


@pytest.mark.asyncio
async def test_stream_error_raises_and_marks_job_failed(make_client):
    service = FakeService(stream=_sse(("start", {}), ("error", {"message": "Image model unavailable"})))
    async with make_client(service) as client:
        flow = _flow(client)
        with pytest.raises(StreamError, match="Image model unavailable"):
            await flow.run(JobKind.CAMPAIGN, VALID_CAMPAIGN, preflight=False)
        job = flow.tracker.get("job-7")
        flow.cancel()

    assert job.status is JobStatus.FAILED
    assert flow.tracker.candidates("job-7") == []
    assert "/api/credits/check" not in service.paths()


@pytest.mark.asyncio
async def test_quota_stops_before_start(make_client):
    service = FakeService(credits_status=402)
    async with make_client(service) as client:
        with pytest.raises(QuotaExceeded):
            await _flow(client).run(JobKind.VIDEO, {"ugcAdId": "ugc-1"})
    assert service.paths() == ["/api/credits/check"]
