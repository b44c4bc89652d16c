"""HTTP client for the generation service.

Thin wrapper over ``httpx.AsyncClient`` that attaches the bearer credential and
maps HTTP failures onto the error taxonomy in ``adgen.errors``:

* 401 / 403            -> Unauthenticated
* 402                  -> QuotaExceeded
* 408 / 425 / 429 / 5xx, timeouts, dropped connections -> TransientNetworkError
* any other non-2xx    -> ApiError
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from adgen.auth import CredentialStore, SettingsCredentials, require_token
from adgen.config import Settings
from adgen.errors import (
    ApiError,
    QuotaExceeded,
    TransientNetworkError,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429}


def _error_message(response: httpx.Response) -> tuple[str, dict[str, Any]]:
    """Best-effort human-readable message from an error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:300], {}
    if isinstance(body, dict):
        msg = body.get("message") or body.get("detail") or body.get("error") or ""
        return str(msg)[:300], body
    return str(body)[:300], {}


def raise_for_status(response: httpx.Response) -> None:
    """Raise the taxonomy error matching a non-2xx response."""
    code = response.status_code
    if code < 400:
        return
    message, body = _error_message(response)
    if code in (401, 403):
        raise Unauthenticated(message or "Authentication required")
    if code == 402:
        raise QuotaExceeded(message or "Insufficient credits. Please top up.", details=body)
    if code in _TRANSIENT_STATUS or code >= 500:
        raise TransientNetworkError(f"HTTP {code}: {message}" if message else f"HTTP {code}")
    raise ApiError(message or f"HTTP {code}", status_code=code)


class ApiClient:
    """Authenticated JSON/SSE client. Owns one ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialStore,
        *,
        timeout: float = 30.0,
        stream_read_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        # Progress streams can sit idle for minutes between events; None waits indefinitely
        self._stream_timeout = httpx.Timeout(timeout, read=stream_read_timeout)
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credentials: CredentialStore | None = None,
        **kwargs: Any,
    ) -> "ApiClient":
        return cls(
            settings.api_base_url,
            credentials or SettingsCredentials(settings),
            timeout=settings.adgen_request_timeout,
            stream_read_timeout=settings.adgen_stream_read_timeout,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self._base_url}{endpoint if endpoint.startswith('/') else '/' + endpoint}"

    def token(self) -> str:
        return require_token(self._credentials)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}"}

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body ({} for empty bodies)."""
        headers = self._auth_headers()
        try:
            response = await self._http.request(
                method,
                self.build_url(path),
                json=json,
                params=params,
                data=data,
                files=files,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {path} failed: {e}") from e
        raise_for_status(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Malformed JSON from {path}") from e

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request_json("GET", path, params=params)

    async def post_json(self, path: str, body: Any) -> Any:
        return await self.request_json("POST", path, json=body)

    @asynccontextmanager
    async def stream_lines(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Open a ``text/event-stream`` response and yield its line iterator."""
        headers = {**self._auth_headers(), "Accept": "text/event-stream", "Cache-Control": "no-cache"}
        try:
            async with self._http.stream(
                "GET", self.build_url(path), params=params, headers=headers, timeout=self._stream_timeout
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_status(response)
                yield response.aiter_lines()
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Stream {path} dropped: {e}") from e

    async def download(self, url: str) -> bytes:
        """Fetch raw bytes. Credentials are only sent to the service's own host."""
        full = self.build_url(url)
        headers = self._auth_headers() if full.startswith(self._base_url) else {}
        try:
            response = await self._http.get(full, headers=headers)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Download {url} failed: {e}") from e
        raise_for_status(response)
        return response.content

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def unwrap(body: Any) -> Any:
    """Strip the service's optional ``{success, data}`` envelope."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict) and "status" not in body:
        return body["data"]
    return body
