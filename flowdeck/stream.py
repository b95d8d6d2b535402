"""Live event stream over server-sent events."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Union,
)

import httpx
from pydantic import ValidationError

from .contracts import EventLog
from .errors import STREAM_DISCONNECTED_MESSAGE, FlowdeckError, StreamDisconnected
from .state import OperationState

logger = logging.getLogger(__name__)

STREAM_HEADERS: Dict[str, str] = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}


@dataclass
class ServerSentEvent:
    """A single dispatched SSE frame."""

    data: str
    event: str = "message"
    id: Optional[str] = None
    retry: Optional[int] = None


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Assemble SSE frames from a stream of text lines.

    Comment lines (``:`` prefix) are skipped, ``data`` lines accumulate until a
    blank line dispatches the frame. Frames without data are dropped.
    """
    data: list[str] = []
    event = ""
    last_id: Optional[str] = None
    retry: Optional[int] = None

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield ServerSentEvent(
                    data="\n".join(data), event=event or "message", id=last_id, retry=retry
                )
            data = []
            event = ""
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
        elif field == "event":
            event = value
        elif field == "id":
            last_id = value
        elif field == "retry" and value.isdigit():
            retry = int(value)


@dataclass(frozen=True)
class DecodedEvent:
    event: EventLog


@dataclass(frozen=True)
class Ignored:
    """Payload that is not an event record, e.g. a heartbeat."""

    data: str
    reason: str


Decoded = Union[DecodedEvent, Ignored]


def decode_event(data: str) -> Decoded:
    """Decode an SSE payload into an :class:`EventLog` when it is one."""
    try:
        return DecodedEvent(EventLog.model_validate_json(data))
    except ValidationError as exc:
        return Ignored(data=data, reason=f"{exc.error_count()} validation error(s)")


class EventStream:
    """Async iterator of live :class:`EventLog` records.

    The stream runs until the server closes it, the connection fails or
    :meth:`stop` is called. A failed connection raises
    :class:`StreamDisconnected`; a stream can only be iterated once.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        read_timeout: Optional[float] = None,
        on_open: Optional[Callable[[], None]] = None,
    ) -> None:
        self._client = http_client
        self.url = url
        self._headers = {**STREAM_HEADERS, **(headers or {})}
        self._timeout = httpx.Timeout(30.0, read=read_timeout)
        self.on_open = on_open
        self._started = False
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Ask the stream to end before the next record is yielded."""
        self._stopped = True

    def __aiter__(self) -> AsyncIterator[EventLog]:
        if self._started:
            raise FlowdeckError("Event stream cannot be restarted")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[EventLog]:
        try:
            async with self._client.stream(
                "GET", self.url, headers=self._headers, timeout=self._timeout
            ) as response:
                if not response.is_success:
                    raise StreamDisconnected(
                        f"{STREAM_DISCONNECTED_MESSAGE}: HTTP {response.status_code}"
                    )
                logger.info(f"Event stream connected to {self.url}")
                if self.on_open is not None:
                    self.on_open()

                async for sse in iter_sse(response.aiter_lines()):
                    if self._stopped:
                        return
                    if sse.event != "message":
                        continue
                    decoded = decode_event(sse.data)
                    if isinstance(decoded, Ignored):
                        logger.debug(f"Ignoring stream payload: {decoded.reason}")
                        continue
                    yield decoded.event
                    if self._stopped:
                        return
        except httpx.HTTPError as exc:
            if self._stopped:
                return
            raise StreamDisconnected(f"{STREAM_DISCONNECTED_MESSAGE}: {exc}") from exc

        if not self._stopped:
            raise StreamDisconnected(f"{STREAM_DISCONNECTED_MESSAGE}: closed by server")


class StreamState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


EventCallback = Callable[[EventLog], Union[None, Awaitable[None]]]


class EventStreamHandle:
    """Caller-owned connection that feeds live events to a callback.

    Connection failures are reported only through the shared
    :class:`OperationState` error slot. There is no reconnect: ``FAILED`` is
    terminal for the handle.
    """

    def __init__(
        self,
        stream: EventStream,
        on_event: EventCallback,
        operation_state: OperationState,
    ) -> None:
        self._stream = stream
        self._on_event = on_event
        self._operation_state = operation_state
        self.state = StreamState.CONNECTING
        self._task: Optional[asyncio.Task[None]] = None

    def start(self) -> "EventStreamHandle":
        """Schedule the connection on the running event loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def _mark_open(self) -> None:
        if self.state is StreamState.CONNECTING:
            self.state = StreamState.OPEN

    async def _run(self) -> None:
        try:
            async for event in self._stream:
                await self._dispatch(event)
        except StreamDisconnected as exc:
            if self._stream.stopped:
                self.state = StreamState.CLOSED
                return
            self.state = StreamState.FAILED
            self._operation_state.error = STREAM_DISCONNECTED_MESSAGE
            logger.warning(f"{exc}")
            return
        except Exception:
            self.state = StreamState.FAILED
            self._operation_state.error = STREAM_DISCONNECTED_MESSAGE
            logger.exception(f"Event stream from {self._stream.url} failed")
            return
        self.state = StreamState.CLOSED

    async def _dispatch(self, event: EventLog) -> None:
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Event callback failed for event id={event.id}")

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until the stream ends, by error or by :meth:`close`.

        Returns ``False`` if ``timeout`` seconds passed first. The stream is
        left running in that case.
        """
        if self._task is None:
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)

    async def close(self) -> None:
        """Close the connection. A failed handle stays ``FAILED``."""
        self._stream.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self.state is not StreamState.FAILED:
            self.state = StreamState.CLOSED

    @property
    def closed(self) -> bool:
        return self.state in (StreamState.CLOSED, StreamState.FAILED)


def open_event_stream(
    http_client: httpx.AsyncClient,
    url: str,
    on_event: EventCallback,
    operation_state: OperationState,
    **stream_options: Any,
) -> EventStreamHandle:
    """Connect to ``url`` and deliver decoded events to ``on_event``."""
    stream = EventStream(http_client, url, **stream_options)
    handle = EventStreamHandle(stream, on_event, operation_state)
    stream.on_open = handle._mark_open
    return handle.start()
