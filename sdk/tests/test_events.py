import unittest

import httpx
import pytest

from mcpboss.auth import BearerTokenAuth
from mcpboss.events import EventStreamClient, SSEDecoder, StreamEvent
from mcpboss.exceptions import EventStreamError

STREAM_URL = "https://acme.mcp-boss.com/api/v1/deployments/deployment-logs"


class TestSSEDecoder(unittest.TestCase):
    def feed(self, *lines):
        decoder = SSEDecoder()
        events = [decoder.decode(line) for line in lines]
        return [e for e in events if e is not None], decoder

    def test_single_event(self):
        events, _ = self.feed("event: DeploymentLogPayload", 'data: {"type":"done"}', "")
        self.assertEqual(events, [StreamEvent(event="DeploymentLogPayload", data='{"type":"done"}')])

    def test_multi_line_data_is_joined(self):
        events, _ = self.feed("data: first", "data: second", "")
        self.assertEqual(events[0].data, "first\nsecond")
        self.assertEqual(events[0].event, "message")

    def test_comments_and_unknown_fields_ignored(self):
        events, _ = self.feed(": keepalive", "retry: 1000", "foo: bar", "data:x", "")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].data, "x")

    def test_blank_line_without_data_dispatches_nothing(self):
        events, _ = self.feed("event: DeploymentLogPayload", "", "data: y", "")
        self.assertEqual(events, [StreamEvent(event="message", data="y")])

    def test_last_event_id(self):
        events, decoder = self.feed("id: 7", "data: a", "", "data: b", "")
        self.assertEqual([e.id for e in events], ["7", "7"])
        self.assertEqual(decoder.last_event_id, "7")


def sse_body(*events) -> bytes:
    chunks = []
    for event_name, data in events:
        chunks.append(f"event: {event_name}\ndata: {data}\n\n")
    return "".join(chunks).encode()


def stream_transport(body: bytes, status_code: int = 200, content_type: str = "text/event-stream", seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, headers={"content-type": content_type}, content=body)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_stream_yields_events_in_order():
    body = sse_body(
        ("DeploymentLogPayload", '{"type":"podInfo"}'),
        ("DeploymentLogPayload", '{"type":"done"}'),
    )
    stream = EventStreamClient(STREAM_URL, transport=stream_transport(body))

    received = [event async for event in stream.events()]
    await stream.close()

    assert [e.data for e in received] == ['{"type":"podInfo"}', '{"type":"done"}']
    assert all(e.event == "DeploymentLogPayload" for e in received)


@pytest.mark.asyncio
async def test_stream_sends_bearer_token_and_params():
    tokens = iter(["first-token", "second-token"])
    seen = []
    auth = BearerTokenAuth(lambda: next(tokens))

    for _ in range(2):
        async with EventStreamClient(
            STREAM_URL,
            auth=auth,
            params={"hostedFunctionId": "fn_1"},
            transport=stream_transport(b"", seen=seen),
        ) as stream:
            [event async for event in stream.events()]

    assert [r.headers["Authorization"] for r in seen] == ["Bearer first-token", "Bearer second-token"]
    assert seen[0].url.params["hostedFunctionId"] == "fn_1"
    assert seen[0].headers["Accept"] == "text/event-stream"


@pytest.mark.asyncio
async def test_non_200_raises():
    stream = EventStreamClient(STREAM_URL, transport=stream_transport(b"unauthorized", status_code=401))

    with pytest.raises(EventStreamError, match="HTTP 401: unauthorized"):
        async for _ in stream.events():
            pass
    await stream.close()


@pytest.mark.asyncio
async def test_wrong_content_type_raises():
    stream = EventStreamClient(STREAM_URL, transport=stream_transport(b"{}", content_type="application/json"))

    with pytest.raises(EventStreamError, match="Unexpected content type"):
        await stream.open()
    await stream.close()


@pytest.mark.asyncio
async def test_connect_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    stream = EventStreamClient(STREAM_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(EventStreamError, match="Failed to connect"):
        await stream.open()
    await stream.close()


@pytest.mark.asyncio
async def test_close_is_idempotent():
    stream = EventStreamClient(STREAM_URL, transport=stream_transport(b""))
    await stream.open()

    await stream.close()
    await stream.close()

    assert stream.closed
    with pytest.raises(EventStreamError):
        await stream.open()
