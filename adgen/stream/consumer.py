"""Subscribe to a job's progress stream and fold it into a StreamState.

Events are applied strictly in arrival order. ``StreamHandle.cancel()`` stops
all further state mutation immediately, whether or not the underlying
connection has finished closing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional

from adgen.client import ApiClient
from adgen.errors import AdGenError, StreamError, TransientNetworkError
from adgen.stream.events import ProgressEvent
from adgen.stream.reducer import Stage, StreamState, reduce
from adgen.stream.sse import iter_sse

logger = logging.getLogger(__name__)

CONNECTION_LOST = "Connection lost. Please try again."

EventSource = Callable[[str, dict[str, Any]], AsyncIterator[ProgressEvent]]
StateCallback = Callable[[StreamState], None]


class SseEventSource:
    """Reads ProgressEvents from a ``text/event-stream`` endpoint."""

    def __init__(self, client: ApiClient, *, token_in_query: bool = True):
        self._client = client
        self._token_in_query = token_in_query

    async def __call__(self, endpoint: str, params: dict[str, Any]) -> AsyncIterator[ProgressEvent]:
        query = {"data": json.dumps(params)}
        if self._token_in_query:
            query["token"] = self._client.token()
        async with self._client.stream_lines(endpoint, query) as lines:
            async for sse in iter_sse(lines):
                yield ProgressEvent.parse(sse.event, sse.data)


class StreamHandle:
    """A live subscription. Cancel it on teardown."""

    def __init__(self, on_state: Optional[StateCallback] = None):
        self._state = StreamState()
        self._on_state = on_state
        self._cancelled = False
        self._finished = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.exception: Optional[AdGenError] = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state.done

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """No state mutation happens after this returns."""
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._finished.set()

    async def wait(self) -> StreamState:
        await self._finished.wait()
        return self._state

    def result(self) -> dict[str, Any]:
        """Result payload of a completed stream; raises for failed or unfinished ones."""
        if self._state.stage is Stage.FAILED:
            if self.exception is not None:
                raise self.exception
            raise StreamError(self._state.error or "Generation failed")
        if not self._state.done or self._state.result is None:
            raise StreamError("Stream has not completed")
        return self._state.result

    def _set(self, new: StreamState) -> None:
        if self._cancelled or new is self._state:
            return
        self._state = new
        if self._on_state is not None:
            self._on_state(new)

    def _fail(self, message: str) -> None:
        self._set(self._state.model_copy(update={"stage": Stage.FAILED, "error": message, "done": True}))

    async def _run(self, events: AsyncIterator[ProgressEvent]) -> None:
        try:
            async for event in events:
                if self._cancelled:
                    break
                self._set(reduce(self._state, event))
                if self._state.done:
                    if self._state.stage is Stage.FAILED:
                        self.cancel()
                    break
            else:
                if not self._cancelled and not self._state.done:
                    logger.warning("Progress stream ended before a terminal event")
                    self.exception = StreamError(CONNECTION_LOST)
                    self._fail(CONNECTION_LOST)
        except asyncio.CancelledError:
            self._cancelled = True
            raise
        except TransientNetworkError as e:
            logger.warning("Progress stream dropped: %s", e)
            self.exception = StreamError(CONNECTION_LOST)
            self._fail(CONNECTION_LOST)
        except AdGenError as e:
            logger.warning("Progress stream failed: %s", e)
            self.exception = e
            self._fail(e.message or CONNECTION_LOST)
        except Exception as e:
            logger.exception("Progress stream consumer crashed")
            self.exception = StreamError(str(e)[:300])
            self._fail(CONNECTION_LOST)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("Error closing progress stream", exc_info=True)
            self._finished.set()


class ProgressStreamConsumer:
    """Starts stream subscriptions. Owns no state beyond its live handles."""

    def __init__(
        self,
        client: Optional[ApiClient] = None,
        *,
        source: Optional[EventSource] = None,
        token_in_query: bool = True,
    ):
        if source is None:
            if client is None:
                raise ValueError("ProgressStreamConsumer needs a client or an event source")
            source = SseEventSource(client, token_in_query=token_in_query)
        self._source = source
        self._handles: set[StreamHandle] = set()

    def subscribe(
        self,
        endpoint: str,
        params: dict[str, Any],
        on_state: Optional[StateCallback] = None,
    ) -> StreamHandle:
        """Open ``endpoint`` and start folding its events. Must run inside an event loop."""
        handle = StreamHandle(on_state)
        handle._task = asyncio.get_running_loop().create_task(handle._run(self._source(endpoint, params)))
        self._handles.add(handle)
        handle._task.add_done_callback(lambda _t: self._handles.discard(handle))
        return handle

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
