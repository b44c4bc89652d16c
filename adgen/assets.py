"""Binary asset store: upload product images by file or by URL."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from adgen.client import ApiClient
from adgen.errors import ApiError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "uploads"


class UploadResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str
    object_key: str = Field(default="", alias="objectKey")
    original_name: str | None = Field(default=None, alias="originalName")
    original_url: str | None = Field(default=None, alias="originalUrl")
    size: int | None = None


def _parse(body: Any) -> UploadResult:
    data = body.get("data") if isinstance(body, dict) and "data" in body else body
    if not isinstance(data, dict) or not data.get("url"):
        raise ApiError("Upload response missing url", status_code=200)
    return UploadResult.model_validate(data)


class AssetStore:
    def __init__(self, client: ApiClient):
        self._client = client

    async def upload_file(self, path: str | Path, folder: str = DEFAULT_FOLDER) -> UploadResult:
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"File not found: {path}")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        body = await self._client.request_json(
            "POST",
            "/api/upload/image",
            files={"image": (path.name, path.read_bytes(), content_type)},
            data={"folder": folder},
        )
        result = _parse(body)
        logger.info("Uploaded %s -> %s", path.name, result.object_key or result.url)
        return result

    async def upload_url(self, url: str, folder: str = DEFAULT_FOLDER) -> UploadResult:
        if not url.startswith(("http://", "https://")):
            raise ValidationError(f"Not an http(s) URL: {url}")
        body = await self._client.post_json("/api/upload/url", {"url": url, "folder": folder})
        return _parse(body)

    async def upload(self, source: str | Path, folder: str = DEFAULT_FOLDER) -> UploadResult:
        """Upload a local file or re-host a remote URL."""
        if isinstance(source, str) and source.startswith(("http://", "https://")):
            return await self.upload_url(source, folder)
        return await self.upload_file(source, folder)
