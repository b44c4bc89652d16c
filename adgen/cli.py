"""CLI entry-point: start, follow and review generation jobs."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from adgen.assets import AssetStore
from adgen.client import ApiClient
from adgen.config import Settings, get_settings
from adgen.entitlements import Entitlement, PlanTier, SubscriptionEntitlements
from adgen.errors import (
    AdGenError,
    JobFailed,
    QuotaExceeded,
    StreamError,
    TransientNetworkError,
    Unauthenticated,
    ValidationError,
)
from adgen.flow import GenerationFlow
from adgen.gating import GatingPolicy, group_by_job
from adgen.jobs import Delivery, GenerationJob, JobKind, JobStatus, JobTracker, handler_for
from adgen.review import Direction, HttpAcknowledger, ReviewQueue, export_saved
from adgen.stream import ProgressStreamConsumer, StreamState

app = typer.Typer(help="Ad creative generation client")
console = Console()
logger = logging.getLogger(__name__)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


def _tracker(client: ApiClient, settings: Settings) -> JobTracker:
    return JobTracker(
        client,
        poll_interval=settings.adgen_poll_interval,
        retry_budget=settings.adgen_poll_retry_budget,
    )


def _load_params(params: Optional[str]) -> dict:
    if not params:
        return {}
    path = Path(params)
    try:
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        return json.loads(params)
    except ValueError as e:
        console.print(f"[red]Invalid JSON parameters: {e}[/red]")
        raise typer.Exit(1)


def _run(coro):
    """Run a command coroutine, mapping client errors to exit codes."""
    try:
        return asyncio.run(coro)
    except ValidationError as e:
        console.print(f"[red]{e.message}[/red]")
        for err in e.errors:
            console.print(f"  [red]- {err}[/red]")
        raise typer.Exit(2)
    except Unauthenticated as e:
        console.print(f"[red]{e.message or 'Authentication required'}. Set ADGEN_API_TOKEN or log in again.[/red]")
        raise typer.Exit(3)
    except QuotaExceeded as e:
        console.print(f"[yellow]{e.message}[/yellow] Upgrade your plan or top up credits to continue.")
        raise typer.Exit(4)
    except (JobFailed, StreamError) as e:
        console.print(f"[red]{e.message}[/red] Run the command again to restart the job.")
        raise typer.Exit(5)
    except TransientNetworkError as e:
        console.print(f"[red]Service unreachable: {e.message}[/red]")
        raise typer.Exit(6)
    except AdGenError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)


def _print_job(job: GenerationJob) -> None:
    colour = {"completed": "green", "partial": "yellow", "failed": "red"}.get(job.status.value, "cyan")
    line = f"[{colour}]{job.status.value}[/{colour}] {job.kind.value} {job.id}"
    if job.progress_message:
        line += f": {job.progress_message}"
    console.print(line)
    if job.error:
        console.print(f"  [red]{job.error}[/red]")


def _print_stream(state: StreamState) -> None:
    detail = state.current_item
    if state.items_total:
        detail = f"{detail} ({state.items_completed}/{state.items_total})".strip()
    console.print(f"[cyan]{state.stage.value}[/cyan] {detail}")


@app.command()
def start(
    kind: JobKind = typer.Argument(..., help="Job kind"),
    params: str = typer.Option(None, "--params", "-p", help="JSON file or inline JSON with job parameters"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Follow the job until it finishes"),
    preflight: bool = typer.Option(True, "--preflight/--no-preflight", help="Check credits before starting"),
):
    """Start a generation job and (by default) follow it to completion."""
    settings = get_settings()
    payload = _load_params(params)

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            if not wait:
                if preflight:
                    await tracker.preflight(kind)
                job_id = await tracker.start(kind, payload)
                console.print(f"Started {kind.value} job [bold]{job_id}[/bold]")
                return
            consumer = ProgressStreamConsumer(client, token_in_query=settings.adgen_stream_token_in_query)
            flow = GenerationFlow(tracker, consumer, on_job=_print_job, on_stream=_print_stream)
            try:
                job, candidates = await flow.run(kind, payload, preflight=preflight)
            finally:
                flow.cancel()
            _print_job(job)
            console.print(f"{len(candidates)} candidate(s) ready for review: adgen review {job.id} --kind {kind.value}")

    _run(_go())


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id"),
    kind: JobKind = typer.Option(JobKind.IMAGE_SET, help="Job kind"),
):
    """Poll a job once."""
    settings = get_settings()

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            tracker.track(job_id, kind)
            await tracker.poll(job_id)
            _print_job(tracker.get(job_id))

    _run(_go())


@app.command()
def watch(
    job_id: str = typer.Argument(..., help="Job id"),
    kind: JobKind = typer.Option(JobKind.IMAGE_SET, help="Job kind"),
):
    """Poll a job until it reaches a terminal state."""
    settings = get_settings()

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            tracker.track(job_id, kind)
            job = await tracker.wait(job_id, on_update=_print_job)
            console.print(f"{len(tracker.candidates(job.id))} candidate(s)")

    _run(_go())


@app.command()
def stream(
    job_id: str = typer.Argument(..., help="Job id"),
    kind: JobKind = typer.Option(JobKind.CAMPAIGN, help="Job kind (must be stream-delivered)"),
    params: str = typer.Option(None, "--params", "-p", help="JSON file or inline JSON the job was started with"),
):
    """Attach to a running job's progress stream and follow it to the end."""
    settings = get_settings()
    payload = _load_params(params)
    handler = handler_for(kind)
    if handler.delivery is not Delivery.STREAM:
        console.print(f"[red]{kind.value} jobs are polled, not streamed. Use: adgen watch {job_id}[/red]")
        raise typer.Exit(2)

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            tracker.track(job_id, kind)
            consumer = ProgressStreamConsumer(client, token_in_query=settings.adgen_stream_token_in_query)
            handle = consumer.subscribe(handler.stream_path or "", {"jobId": job_id, **payload}, on_state=_print_stream)
            try:
                state = await handle.wait()
            finally:
                consumer.cancel_all()
            job = tracker.record_stream_result(job_id, state)
            _print_job(job)
            if job.status is JobStatus.FAILED:
                raise handle.exception or StreamError(job.error or "Generation failed")
            console.print(f"{len(tracker.candidates(job_id))} candidate(s) ready for review")

    _run(_go())


async def _load_candidates(tracker: JobTracker, job_id: str, kind: JobKind):
    tracker.track(job_id, kind)
    await tracker.poll(job_id)
    job = tracker.get(job_id)
    if not job.status.is_usable:
        _print_job(job)
        console.print("[yellow]Job has no reviewable results yet.[/yellow]")
        raise typer.Exit(1)
    return tracker.candidates(job_id)


@app.command()
def review(
    job_id: str = typer.Argument(..., help="Job id"),
    kind: JobKind = typer.Option(JobKind.IMAGE_SET, help="Job kind"),
    download: bool = typer.Option(True, "--download/--no-download", help="Download saved creatives at the end"),
    output: str = typer.Option(None, help="Download directory (default from ADGEN_DOWNLOAD_DIR)"),
):
    """Accept or reject a finished job's candidates one at a time."""
    settings = get_settings()

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            candidates = await _load_candidates(tracker, job_id, kind)
            queue = ReviewQueue(
                HttpAcknowledger(client, job_id),
                on_notice=lambda n: console.print(f"[yellow]{n.message}: it is back on the stack.[/yellow]"),
            )
            queue.initialize(candidates)
            try:
                while queue.top is not None:
                    top = queue.top
                    console.print(
                        f"\n[bold]{top.title or top.id}[/bold] score={top.score} "
                        f"({queue.remaining_count} left, {queue.saved_count} saved, {queue.rejected_count} rejected)"
                    )
                    if top.media_ref:
                        console.print(f"  {client.build_url(top.media_ref)}")
                    choice = await asyncio.to_thread(
                        Prompt.ask, "[a]ccept / [r]eject / [u]ndo / [q]uit", choices=["a", "r", "u", "q"], default="a"
                    )
                    if choice == "q":
                        break
                    if choice == "u":
                        if queue.restore() is None:
                            console.print("Nothing to undo.")
                        continue
                    queue.dispose(top.id, Direction.ACCEPT if choice == "a" else Direction.REJECT)
                await queue.flush()
            finally:
                await queue.aclose()

            summary = queue.reviewed_view()
            if summary is None:
                console.print("Review paused.")
                return
            console.print(f"Reviewed: {summary.saved_count} saved, {summary.rejected_count} rejected")
            if download and summary.saved:
                out_dir = Path(output) if output else settings.download_dir / job_id
                report = await export_saved(summary.saved, client, out_dir)
                console.print(f"Wrote {len(report.written)} file(s) to {report.directory}")
                for cid, reason in report.failed.items():
                    console.print(f"  [yellow]{cid}: {reason}[/yellow]")

    _run(_go())


@app.command()
def gallery(
    job_ids: list[str] = typer.Argument(..., help="One or more job ids"),
    kind: JobKind = typer.Option(JobKind.IMAGE_SET, help="Job kind"),
    entitled: Optional[bool] = typer.Option(None, "--entitled/--not-entitled", help="Override subscription lookup"),
):
    """List candidates of finished jobs, marking items locked for the current plan."""
    settings = get_settings()

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            tracker = _tracker(client, settings)
            candidates = []
            for job_id in job_ids:
                candidates.extend(await _load_candidates(tracker, job_id, kind))
            if entitled is None:
                entitlement = await SubscriptionEntitlements(client).current()
            else:
                entitlement = Entitlement(tier=PlanTier.PAID if entitled else PlanTier.FREE, active=entitled)
            policy = GatingPolicy(settings.adgen_free_items_per_job)
            table = Table(title=f"Creatives ({entitlement.tier.value} plan)")
            table.add_column("Job")
            table.add_column("Candidate")
            table.add_column("Created")
            table.add_column("Media")
            for item in policy.render(group_by_job(candidates), entitlement):
                c = item.candidate
                media = "[dim]locked: upgrade to view[/dim]" if item.locked else client.build_url(c.media_ref)
                table.add_row(c.job_id, c.title or c.id, str(c.created_at or ""), media)
            console.print(table)

    _run(_go())


@app.command()
def upload(
    source: str = typer.Argument(..., help="Local file path or http(s) URL"),
    folder: str = typer.Option("uploads", help="Destination folder in the asset store"),
):
    """Upload a product image to the asset store."""
    settings = get_settings()

    async def _go():
        async with ApiClient.from_settings(settings) as client:
            result = await AssetStore(client).upload(source, folder)
            console.print(f"{result.url} ({result.object_key})")

    _run(_go())


if __name__ == "__main__":
    app()
