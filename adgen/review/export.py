"""Bulk download of saved candidates."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from adgen.client import ApiClient
from adgen.errors import AdGenError
from adgen.review.models import Candidate

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ExportReport(BaseModel):
    directory: str
    written: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    manifest: str = ""


def _filename(index: int, candidate: Candidate) -> str:
    suffix = Path(urlparse(candidate.media_ref).path).suffix or ".png"
    stem = _UNSAFE.sub("-", candidate.title or candidate.id).strip("-")[:60] or candidate.id
    return f"{index + 1:02d}-{stem}{suffix}"


async def export_saved(
    candidates: Iterable[Candidate],
    client: ApiClient,
    dest_dir: Path,
) -> ExportReport:
    """Download each candidate's media into ``dest_dir`` and write ``manifest.json``.

    A failed download is recorded in the report and does not stop the others.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    report = ExportReport(directory=str(dest_dir))
    manifest = []
    for i, candidate in enumerate(candidates):
        entry = candidate.model_dump(mode="json")
        if not candidate.media_ref:
            report.failed[candidate.id] = "no media"
            manifest.append(entry)
            continue
        name = _filename(i, candidate)
        try:
            data = await client.download(candidate.media_ref)
        except AdGenError as e:
            logger.warning("Download failed for %s: %s", candidate.id, e)
            report.failed[candidate.id] = e.message or type(e).__name__
        else:
            (dest_dir / name).write_bytes(data)
            report.written.append(name)
            entry["file"] = name
        manifest.append(entry)

    manifest_path = dest_dir / "manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, default=str)
    report.manifest = str(manifest_path)
    return report
