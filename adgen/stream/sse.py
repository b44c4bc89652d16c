"""text/event-stream framing over an async line iterator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Yield one event per blank-line-terminated frame.

    Comment lines (leading ``:``) are skipped, multiple ``data`` lines are
    joined with newlines, frames with neither a name nor data are dropped. A
    frame cut off by the end of the stream (no closing blank line) is
    incomplete and never dispatched.
    """
    event = ""
    data: list[str] = []
    last_id: str | None = None
    retry: int | None = None

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data or event:
                yield ServerSentEvent(event=event or "message", data="\n".join(data), id=last_id, retry=retry)
            event, data, retry = "", [], None
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
        elif field == "id":
            last_id = value
        elif field == "retry" and value.isdigit():
            retry = int(value)

    if data or event:
        logger.debug("Discarding unterminated event %r at end of stream", event or "message")
