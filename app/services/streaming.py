from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any, AsyncGenerator, AsyncIterator, Callable, TypeVar

from loguru import logger
from sse_starlette.sse import EventSourceResponse

from app.errors import ChatError
from app.models.events import END_EVENT_NAME, EventType, StreamEvent
from app.tools.web_search import ToolInvocation

T = TypeVar("T")

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def reasoning(content: str) -> StreamEvent:
    return StreamEvent(type=EventType.REASONING, data={"content": content})


def tool_call(invocation: ToolInvocation) -> StreamEvent:
    return StreamEvent(
        type=EventType.TOOL_CALL,
        data={
            "tool": invocation.tool,
            "input": invocation.input,
            "output": invocation.output,
        },
    )


def response(content: str) -> StreamEvent:
    return StreamEvent(type=EventType.RESPONSE, data={"content": content})


def error(message: str, kind: str = "internal_error") -> StreamEvent:
    return StreamEvent(type=EventType.ERROR, data={"message": message, "kind": kind})


async def bounded(
    stream: AsyncIterator[T],
    timeout: float,
    on_timeout: Callable[[], Exception],
) -> AsyncGenerator[T, None]:
    """Re-yield ``stream`` with a ceiling on how long each item may take.

    The wrapped stream is closed when this generator finishes or is closed.
    """
    iterator = aiter(stream)
    try:
        while True:
            try:
                item = await asyncio.wait_for(anext(iterator), timeout=timeout)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                raise on_timeout() from None
            yield item
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class EventStreamer:
    """Writes one orchestrator run to the client as server-sent events.

    Every event becomes one ``data: <json>`` frame with no event name, and the
    stream always finishes with a single ``event: end`` frame, whether the run
    succeeded or failed. A client disconnect cancels ``frames`` and with it any
    pending model or tool await.
    """

    def __init__(self, events: AsyncGenerator[StreamEvent, None], *, label: str = "chat"):
        self._events = events
        self._label = label
        self._closed = False
        self.sent = 0

    def open(self) -> EventSourceResponse:
        return EventSourceResponse(self.frames(), headers=dict(STREAM_HEADERS), sep="\n")

    def emit(self, event: StreamEvent) -> dict[str, Any]:
        if self._closed:
            raise RuntimeError("Cannot emit on a closed event stream")
        self.sent += 1
        data = event.to_json()
        logger.debug(f"SSE[{self._label}] #{self.sent}: {data}")
        return {"data": data}

    def close(self) -> dict[str, Any]:
        if self._closed:
            raise RuntimeError("Event stream already closed")
        self._closed = True
        logger.debug(f"SSE[{self._label}] end after {self.sent} events")
        return {"event": END_EVENT_NAME, "data": "{}"}

    async def frames(self) -> AsyncGenerator[dict[str, Any], None]:
        try:
            async with aclosing(self._events) as events:
                async for event in events:
                    yield self.emit(event)
        except ChatError as e:
            logger.warning(f"SSE[{self._label}] {e.kind}: {e.message}")
            yield self.emit(error(e.message, e.kind))
        except Exception as e:
            logger.exception(f"SSE[{self._label}] unhandled error in chat stream: {e}")
            yield self.emit(error("Chat stream failed unexpectedly."))
        yield self.close()
