"""Tests for the job tracker: start, poll ordering, poll loop, restart."""

import asyncio

import httpx
import pytest

from adgen.errors import (
    JobFailed,
    QuotaExceeded,
    TransientNetworkError,
    Unauthenticated,
    UnknownJob,
    ValidationError,
)
from adgen.jobs import JobKind, JobStatus, JobTracker
from adgen.stream import Stage, StreamState

from conftest import VALID_CAMPAIGN, body_of


def _scripted(poll_responses, job_id="job-1", requests=None):
    """Handler that starts ``job_id`` and answers polls from a list."""
    polls = list(poll_responses)

    def handler(request: httpx.Request):
        if requests is not None:
            requests.append(request)
        if request.method == "POST" and request.url.path == "/api/jobs":
            return httpx.Response(200, json={"jobId": job_id})
        if request.method == "GET" and request.url.path == f"/api/jobs/{job_id}":
            item = polls.pop(0) if len(polls) > 1 else polls[0]
            if isinstance(item, Exception):
                raise item
            return httpx.Response(200, json=item)
        return httpx.Response(404, json={"message": "not found"})

    return handler


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------

class TestStart:

    @pytest.mark.asyncio
    async def test_start_returns_job_id_and_sends_kind_and_parameters(self, make_client):
        requests = []
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}], requests=requests)))
        job_id = await tracker.start(JobKind.CAMPAIGN, VALID_CAMPAIGN)

        assert job_id == "job-1"
        body = body_of(requests[0])
        assert body["kind"] == "campaign"
        assert body["parameters"]["brand_name"] == "Stride"
        assert body["parameters"]["selected_strategy"]["id"] == "s1"
        job = tracker.get(job_id)
        assert job.status is JobStatus.QUEUED
        assert job.submitted_at is not None

    @pytest.mark.asyncio
    async def test_malformed_payload_fails_before_any_request(self, make_client):
        requests = []
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}], requests=requests)))
        bad = {k: v for k, v in VALID_CAMPAIGN.items() if k != "selected_strategy"}

        with pytest.raises(ValidationError) as exc:
            await tracker.start(JobKind.CAMPAIGN, bad)

        assert requests == []
        assert tracker.jobs == []
        assert any("selected_strategy" in e for e in exc.value.errors)

    @pytest.mark.asyncio
    async def test_unknown_kind_is_validation_error(self, make_client):
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}])))
        with pytest.raises(ValidationError):
            await tracker.start("podcast", {})

    @pytest.mark.asyncio
    async def test_quota_exceeded_is_distinct_error(self, make_client):
        def handler(request):
            return httpx.Response(402, json={"message": "Insufficient LiPiCoins. Please top up."})

        tracker = JobTracker(make_client(handler))
        with pytest.raises(QuotaExceeded) as exc:
            await tracker.start(JobKind.IMAGE_SET, {"brandId": "b1", "productId": "p1", "angles": ["humor"]})
        assert "LiPiCoins" in exc.value.message
        assert tracker.jobs == []

    @pytest.mark.asyncio
    async def test_missing_credential_is_unauthenticated_without_request(self, make_client):
        requests = []
        client = make_client(_scripted([{"status": "queued"}], requests=requests), token=None)
        with pytest.raises(Unauthenticated):
            await JobTracker(client).start(JobKind.CAMPAIGN, VALID_CAMPAIGN)
        assert requests == []

    @pytest.mark.asyncio
    async def test_preflight_surfaces_402_only(self, make_client):
        def quota(request):
            return httpx.Response(402, json={"message": "No credits"})

        with pytest.raises(QuotaExceeded):
            await JobTracker(make_client(quota)).preflight(JobKind.CAMPAIGN)

        def broken(request):
            return httpx.Response(503)

        await JobTracker(make_client(broken)).preflight(JobKind.CAMPAIGN)


# ---------------------------------------------------------------------------
# poll
# ---------------------------------------------------------------------------

class TestPoll:

    @pytest.mark.asyncio
    async def test_campaign_polls_to_completion(self, make_client):
        handler = _scripted([
            {"status": "queued", "progress": "Initializing"},
            {"status": "running", "progress": "Generating images"},
            {"status": "completed", "progress": "Done", "result": {"imageAd": {"imageVariations": [
                {"styleKey": "bold", "imageUrl": "/a.png"},
            ]}}},
        ])
        tracker = JobTracker(make_client(handler), poll_interval=0)
        job_id = await tracker.start(JobKind.CAMPAIGN, VALID_CAMPAIGN)

        seen = []
        job = await tracker.wait(job_id, on_update=lambda j: seen.append(j.status))

        assert job.status is JobStatus.COMPLETED
        assert job.result is not None
        assert seen == [JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.COMPLETED]
        assert [c.id for c in tracker.candidates(job_id)] == ["bold"]

    @pytest.mark.asyncio
    async def test_wire_status_aliases(self, make_client):
        handler = _scripted([{"status": "generating", "progress": "Crafting visual narratives..."}])
        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.IMAGE_SET)
        result = await tracker.poll("job-1")
        assert result.status is JobStatus.RUNNING
        assert tracker.get("job-1").progress_message == "Crafting visual narratives..."

    @pytest.mark.asyncio
    async def test_envelope_is_unwrapped(self, make_client):
        handler = _scripted([{"success": True, "data": {"status": "partial", "result": {"generatedImages": []}}}])
        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.IMAGE_SET)
        await tracker.poll("job-1")
        assert tracker.get("job-1").status is JobStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_stale_response_does_not_overwrite_newer_state(self, make_client):
        release_first = asyncio.Event()
        calls = 0

        async def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                await release_first.wait()
                return httpx.Response(200, json={"status": "running", "progress": "stale"})
            return httpx.Response(200, json={"status": "completed", "progress": "fresh", "result": {"images": []}})

        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.DEEP_RESEARCH)

        first = asyncio.create_task(tracker.poll("job-1"))
        while calls < 1:
            await asyncio.sleep(0)
        second = await tracker.poll("job-1")
        release_first.set()
        stale = await first

        assert second.seq == 2
        assert stale.seq == 1
        job = tracker.get("job-1")
        assert job.status is JobStatus.COMPLETED
        assert job.progress_message == "fresh"
        assert job.last_applied_seq == 2

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, make_client):
        handler = _scripted([
            {"status": "completed", "result": {"images": [{"_id": "i1"}]}},
            {"status": "running"},
        ])
        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.DEEP_RESEARCH)
        await tracker.poll("job-1")
        await tracker.poll("job-1")
        job = tracker.get("job-1")
        assert job.status is JobStatus.COMPLETED
        assert job.result == {"images": [{"_id": "i1"}]}

    @pytest.mark.asyncio
    async def test_regression_to_queued_is_ignored(self, make_client):
        handler = _scripted([{"status": "running"}, {"status": "pending"}])
        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.VIDEO)
        await tracker.poll("job-1")
        await tracker.poll("job-1")
        assert tracker.get("job-1").status is JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_poll_unknown_job(self, make_client):
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}])))
        with pytest.raises(UnknownJob):
            await tracker.poll("nope")

    @pytest.mark.asyncio
    async def test_transient_failure_leaves_state_untouched(self, make_client):
        handler = _scripted([{"status": "running"}, httpx.ConnectError("reset"), {"status": "running"}])
        tracker = JobTracker(make_client(handler))
        tracker.track("job-1", JobKind.IMAGE_SET)
        await tracker.poll("job-1")
        with pytest.raises(TransientNetworkError):
            await tracker.poll("job-1")
        assert tracker.get("job-1").status is JobStatus.RUNNING


# ---------------------------------------------------------------------------
# poll loop
# ---------------------------------------------------------------------------

class TestWait:

    @pytest.mark.asyncio
    async def test_transient_errors_are_invisible(self, make_client):
        handler = _scripted([
            {"status": "running"},
            httpx.ConnectError("reset"),
            httpx.ReadTimeout("slow"),
            {"status": "completed", "result": {"generatedImages": [{"_id": "g1"}]}},
        ])
        tracker = JobTracker(make_client(handler), poll_interval=0, retry_budget=3)
        tracker.track("job-1", JobKind.IMAGE_SET)
        job = await tracker.wait("job-1")
        assert job.status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_server_errors_count_as_transient(self, make_client):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"status": "completed", "result": {}})])

        def handler(request):
            return next(responses)

        tracker = JobTracker(make_client(handler), poll_interval=0)
        tracker.track("job-1", JobKind.VIDEO)
        job = await tracker.wait("job-1")
        assert job.status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, make_client):
        handler = _scripted([httpx.ConnectError("down")])
        tracker = JobTracker(make_client(handler), poll_interval=0, retry_budget=3)
        tracker.track("job-1", JobKind.IMAGE_SET)
        with pytest.raises(TransientNetworkError):
            await tracker.wait("job-1")
        assert tracker.get("job-1").status is JobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_failed_job_raises_job_failed(self, make_client):
        handler = _scripted([{"status": "running"}, {"status": "failed", "error": "Model overloaded"}])
        tracker = JobTracker(make_client(handler), poll_interval=0)
        tracker.track("job-1", JobKind.DEEP_RESEARCH)
        with pytest.raises(JobFailed) as exc:
            await tracker.wait("job-1")
        assert exc.value.message == "Model overloaded"
        assert tracker.get("job-1").status is JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_stops_loop_and_mutation(self, make_client):
        handler = _scripted([{"status": "running"}])
        tracker = JobTracker(make_client(handler), poll_interval=0)
        tracker.track("job-1", JobKind.IMAGE_SET)

        seen = []

        def on_update(job):
            seen.append(job.status)
            tracker.cancel("job-1")

        job = await tracker.wait("job-1", on_update=on_update)
        assert seen == [JobStatus.RUNNING]
        assert job.status is JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_restart_starts_fresh_job(self, make_client):
        ids = iter(["job-1", "job-2"])
        bodies = []

        def handler(request):
            if request.method == "POST":
                bodies.append(body_of(request))
                return httpx.Response(200, json={"jobId": next(ids)})
            return httpx.Response(200, json={"status": "failed", "error": "boom"})

        tracker = JobTracker(make_client(handler), poll_interval=0)
        first = await tracker.start(JobKind.CAMPAIGN, VALID_CAMPAIGN)
        with pytest.raises(JobFailed):
            await tracker.wait(first)

        second = await tracker.restart(first)
        assert second == "job-2"
        assert tracker.get(second).status is JobStatus.QUEUED
        assert bodies[0] == bodies[1]


class TestStreamResult:

    @pytest.mark.asyncio
    async def test_record_completed_stream(self, make_client):
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}])))
        job_id = await tracker.start(JobKind.CAMPAIGN, VALID_CAMPAIGN)
        state = StreamState(stage=Stage.COMPLETE, result={"imageAd": {"imageUrl": "/x.png"}}, done=True)
        job = tracker.record_stream_result(job_id, state)
        assert job.status is JobStatus.COMPLETED
        assert len(tracker.candidates(job_id)) == 1

    @pytest.mark.asyncio
    async def test_record_failed_stream(self, make_client):
        tracker = JobTracker(make_client(_scripted([{"status": "queued"}])))
        job_id = await tracker.start(JobKind.CAMPAIGN, VALID_CAMPAIGN)
        state = StreamState(stage=Stage.FAILED, error="Connection lost. Please try again.", done=True)
        job = tracker.record_stream_result(job_id, state)
        assert job.status is JobStatus.FAILED
        assert tracker.candidates(job_id) == []
