"""Live event stream tests."""

import asyncio
import json

import httpx
import pytest

from flowdeck.contracts import EventLog
from flowdeck.errors import FlowdeckError, StreamDisconnected
from flowdeck.state import OperationState
from flowdeck.stream import (
    DecodedEvent,
    EventStream,
    Ignored,
    StreamState,
    decode_event,
    iter_sse,
    open_event_stream,
)

STREAM_URL = "http://dashboard.test/api/events/live"


async def _lines(*lines):
    for line in lines:
        yield line


def _held_open_stream(chunks, release: asyncio.Event):
    """Response body that sends ``chunks`` then stays open until ``release``."""

    async def body():
        for chunk in chunks:
            yield chunk.encode()
        await release.wait()

    return body()


def _sse(payload: str) -> str:
    return f"data: {payload}\n\n"


def test_decode_heartbeat_is_ignored():
    decoded = decode_event("heartbeat-not-json")
    assert isinstance(decoded, Ignored)
    assert decoded.data == "heartbeat-not-json"


def test_decode_json_that_is_not_an_event_is_ignored():
    assert isinstance(decode_event("{}"), Ignored)


def test_decode_event_record(event_log_record):
    decoded = decode_event(json.dumps(event_log_record))
    assert isinstance(decoded, DecodedEvent)
    assert decoded.event == EventLog.model_validate(event_log_record)


@pytest.mark.asyncio
async def test_iter_sse_assembles_frames():
    frames = [
        sse
        async for sse in iter_sse(
            _lines(
                ": keep-alive",
                "",
                "id: 5",
                "event: log",
                "data: first",
                "data: second",
                "",
                "data:{\"a\": 1}",
                "",
            )
        )
    ]

    assert len(frames) == 2
    assert frames[0].event == "log"
    assert frames[0].id == "5"
    assert frames[0].data == "first\nsecond"
    assert frames[1].event == "message"
    assert frames[1].data == '{"a": 1}'


@pytest.mark.asyncio
async def test_handle_delivers_events_and_skips_heartbeats(event_log_record):
    release = asyncio.Event()
    received = []
    delivered = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["accept"] == "text/event-stream"
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=_held_open_stream(
                [_sse("heartbeat-not-json"), _sse(json.dumps(event_log_record))],
                release,
            ),
        )

    def on_event(event):
        received.append(event)
        delivered.set()

    state = OperationState()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, on_event, state)

    await asyncio.wait_for(delivered.wait(), timeout=5)

    assert handle.state is StreamState.OPEN
    assert len(received) == 1
    assert received[0].id == event_log_record["id"]
    assert received[0].event_id == event_log_record["event_id"]
    assert state.error is None

    await handle.close()
    release.set()

    assert handle.state is StreamState.CLOSED
    assert state.error is None
    assert len(received) == 1
    await http_client.aclose()


@pytest.mark.asyncio
async def test_handle_ignores_named_events(event_log_record):
    release = asyncio.Event()
    received = []
    delivered = asyncio.Event()

    named = f"event: log\ndata: {json.dumps(event_log_record)}\n\n"
    second = dict(event_log_record, id=2, event_id="evt-2")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=_held_open_stream([named, _sse(json.dumps(second))], release),
        )

    def on_event(event):
        received.append(event)
        delivered.set()

    state = OperationState()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, on_event, state)

    await asyncio.wait_for(delivered.wait(), timeout=5)
    await handle.close()
    release.set()

    assert [event.id for event in received] == [2]


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(event_log_record):
    release = asyncio.Event()
    delivered = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=_held_open_stream([_sse(json.dumps(event_log_record))], release)
        )

    async def on_event(event):
        await asyncio.sleep(0)
        delivered.set()

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, on_event, OperationState())

    await asyncio.wait_for(delivered.wait(), timeout=5)
    await handle.close()
    release.set()


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_stream(event_log_record):
    release = asyncio.Event()
    received = []
    delivered = asyncio.Event()
    second = dict(event_log_record, id=2, event_id="evt-2")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=_held_open_stream(
                [_sse(json.dumps(event_log_record)), _sse(json.dumps(second))], release
            ),
        )

    def on_event(event):
        received.append(event.id)
        if event.id == 1:
            raise RuntimeError("render failed")
        delivered.set()

    state = OperationState()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, on_event, state)

    await asyncio.wait_for(delivered.wait(), timeout=5)
    await handle.close()
    release.set()

    assert received == [1, 2]
    assert state.error is None


@pytest.mark.asyncio
async def test_connection_failure_sets_error_and_is_terminal():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    state = OperationState()
    received = []
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, received.append, state)

    assert await handle.wait(timeout=5)

    assert handle.state is StreamState.FAILED
    assert state.error == "Event stream disconnected"
    assert received == []

    await handle.close()
    assert handle.state is StreamState.FAILED


@pytest.mark.asyncio
async def test_non_success_status_is_a_disconnect():
    state = OperationState()
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )
    handle = open_event_stream(http_client, STREAM_URL, lambda event: None, state)

    await handle.wait(timeout=5)

    assert handle.state is StreamState.FAILED
    assert state.error == "Event stream disconnected"


@pytest.mark.asyncio
async def test_server_closing_stream_is_a_disconnect(event_log_record):
    state = OperationState()
    received = []
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200, content=_sse(json.dumps(event_log_record)).encode()
            )
        )
    )
    handle = open_event_stream(http_client, STREAM_URL, received.append, state)

    await handle.wait(timeout=5)

    assert [event.id for event in received] == [1]
    assert handle.state is StreamState.FAILED
    assert state.error == "Event stream disconnected"


@pytest.mark.asyncio
async def test_event_stream_iterator_yields_records(event_log_record):
    second = dict(event_log_record, id=2, event_id="evt-2")
    body = (
        _sse(json.dumps(event_log_record)) + ": ping\n\n" + _sse("tick") + _sse(json.dumps(second))
    )
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body.encode()))
    )
    stream = EventStream(http_client, STREAM_URL)

    ids = []
    with pytest.raises(StreamDisconnected):
        async for event in stream:
            ids.append(event.id)

    assert ids == [1, 2]

    with pytest.raises(FlowdeckError, match="cannot be restarted"):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_event_stream_stop_ends_iteration(event_log_record):
    second = dict(event_log_record, id=2, event_id="evt-2")
    body = _sse(json.dumps(event_log_record)) + _sse(json.dumps(second))
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body.encode()))
    )
    stream = EventStream(http_client, STREAM_URL)

    ids = []
    async for event in stream:
        ids.append(event.id)
        stream.stop()

    assert ids == [1]
    assert stream.stopped


@pytest.mark.asyncio
async def test_unexpected_body_error_fails_the_handle(event_log_record):
    def handler(request: httpx.Request) -> httpx.Response:
        async def body():
            yield _sse(json.dumps(event_log_record)).encode()
            raise RuntimeError("decoder blew up")

        return httpx.Response(200, content=body())

    state = OperationState()
    received = []
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handle = open_event_stream(http_client, STREAM_URL, received.append, state)

    assert await handle.wait(timeout=5)

    assert [event.id for event in received] == [1]
    assert handle.state is StreamState.FAILED
    assert handle.closed
    assert state.error == "Event stream disconnected"
