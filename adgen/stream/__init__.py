"""Progress streams: SSE framing, event model, stage reducer, consumer."""

from adgen.stream.consumer import (
    CONNECTION_LOST,
    ProgressStreamConsumer,
    SseEventSource,
    StreamHandle,
)
from adgen.stream.events import EventName, ProgressEvent
from adgen.stream.reducer import Stage, StreamState, reduce
from adgen.stream.sse import ServerSentEvent, iter_sse

__all__ = [
    "CONNECTION_LOST",
    "EventName",
    "ProgressEvent",
    "ProgressStreamConsumer",
    "ServerSentEvent",
    "SseEventSource",
    "Stage",
    "StreamHandle",
    "StreamState",
    "iter_sse",
    "reduce",
]
