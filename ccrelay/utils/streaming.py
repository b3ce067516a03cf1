"""Streaming response utilities

Upstream SSE lines are parsed into events, and upstream events are re-framed
into the SSE frames written to the caller.
"""
import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Optional

from ccrelay.core.error_types import ERROR_TYPE_STREAM
from ccrelay.core.exceptions import UpstreamStreamError, build_error_envelope
from ccrelay.core.logging import get_logger
from ccrelay.core.metrics import CLIENT_DISCONNECTS, STREAM_EVENTS, event_type_label

logger = get_logger()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

DONE_EVENT = "done"
ERROR_EVENT = "error"


@dataclass
class SseEvent:
    """SSE event parsed from stream."""

    event: Optional[str] = None
    data: Optional[str] = None
    id: Optional[str] = None


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[SseEvent]:
    """Group SSE lines into events. A blank line ends an event."""
    current = SseEvent()

    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if current.data is not None or current.event is not None:
                yield current
            current = SseEvent()
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        value = value.lstrip(" ")

        if field == "event":
            current.event = value
        elif field == "data":
            if current.data is not None:
                current.data += "\n" + value
            else:
                current.data = value
        elif field == "id":
            current.id = value

    # Feed ended without a trailing blank line
    if current.data is not None or current.event is not None:
        yield current


@dataclass(frozen=True)
class OutboundFrame:
    """One SSE record written to the caller"""

    event: str
    data: Any

    def encode(self) -> bytes:
        payload = json.dumps(self.data, ensure_ascii=False, separators=(",", ":"))
        return f"event: {self.event}\ndata: {payload}\n\n".encode("utf-8")


def error_frame(message: str, error_type: str = ERROR_TYPE_STREAM) -> OutboundFrame:
    return OutboundFrame(event=ERROR_EVENT, data=build_error_envelope(message, error_type))


def done_frame() -> OutboundFrame:
    return OutboundFrame(event=DONE_EVENT, data={"type": DONE_EVENT})


def is_valid_event_type(event_type) -> bool:
    """A type must be a non-empty string that fits on one SSE line"""
    return (
        isinstance(event_type, str)
        and bool(event_type)
        and "\n" not in event_type
        and "\r" not in event_type
    )


async def _client_disconnected(disconnect_check: Callable[[], Awaitable[bool]]) -> bool:
    try:
        return await disconnect_check()
    except Exception as e:
        logger.debug(f"Error checking client disconnect: {e}")
        return False


async def translate_events(
    events: AsyncIterable[dict],
    disconnect_check: Optional[Callable[[], Awaitable[bool]]] = None,
    emit_done: bool = True,
) -> AsyncIterator[OutboundFrame]:
    """Re-frame upstream events as outbound SSE frames.

    Each event is turned into exactly one frame, in arrival order, and the next
    event is only pulled once the consumer asks for the next frame. The
    sequence ends with a ``done`` frame (when ``emit_done``), or with a single
    ``error`` frame if pulling from upstream fails. A reported client
    disconnect stops the translation without pulling or emitting anything
    further.

    Args:
        events: Upstream event objects, each carrying a ``type``
        disconnect_check: Optional async callable that returns True if the client went away
        emit_done: Whether to close a completed stream with a ``done`` frame
    """
    iterator = events.__aiter__()
    try:
        while True:
            if disconnect_check is not None and await _client_disconnected(disconnect_check):
                logger.debug("Client disconnected, stopping upstream stream")
                CLIENT_DISCONNECTS.inc()
                return

            try:
                event = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except UpstreamStreamError as e:
                logger.warning(f"Upstream stream failed: {e.error_type}: {e.message}")
                yield error_frame(e.message, e.error_type)
                return
            except Exception as e:
                logger.exception("Unexpected error while reading upstream stream")
                yield error_frame(str(e) or type(e).__name__)
                return

            event_type = event.get("type") if isinstance(event, dict) else None
            if not is_valid_event_type(event_type):
                logger.warning(f"Dropping stream: upstream event has an invalid type {event_type!r}")
                yield error_frame("Upstream sent an event without a valid type")
                return

            STREAM_EVENTS.labels(event_type=event_type_label(event_type)).inc()
            yield OutboundFrame(event=event_type, data=event)

        if emit_done:
            yield done_frame()
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
