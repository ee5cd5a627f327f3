"""
Tests for the event-stream parser and the SSE client.
"""

import asyncio

import httpx
import pytest
from hypothesis import given, strategies as st, settings

from api_workbench.schemas.auth import ApiKeyAuth
from api_workbench.schemas.environment import Environment, Variable
from api_workbench.schemas.request import KeyValuePair, SSERequest
from api_workbench.services.connection_registry import ConnectionRegistry
from api_workbench.services.sse_client import SSEClient
from api_workbench.services.sse_parser import SSEParser


class TestSSEParser:

    def test_single_event(self):
        events = SSEParser().feed("id: 1\nevent: update\ndata: hello\n\n")

        assert len(events) == 1
        assert events[0].data == "hello"
        assert events[0].event_type == "update"
        assert events[0].event_id == "1"

    def test_event_split_across_chunks(self):
        parser = SSEParser()

        assert parser.feed("data: hel") == []
        events = parser.feed("lo\n\n")

        assert [e.data for e in events] == ["hello"]

    def test_multiline_data_is_joined(self):
        events = SSEParser().feed("data: a\ndata: b\n\n")
        assert events[0].data == "a\nb"

    def test_comments_and_empty_events_are_ignored(self):
        events = SSEParser().feed(": keepalive\n\nevent: ping\n\ndata: x\n\n")

        assert [(e.event_type, e.data) for e in events] == [("message", "x")]

    def test_crlf_line_endings(self):
        events = SSEParser().feed("data: one\r\n\r\ndata: two\r\n\r\n")
        assert [e.data for e in events] == ["one", "two"]

    def test_only_one_leading_space_is_stripped(self):
        events = SSEParser().feed("data:  indented\ndata:tight\n\n")
        assert events[0].data == " indented\ntight"

    def test_retry_is_recorded(self):
        parser = SSEParser()
        parser.feed("retry: 3000\n")
        assert parser.retry == 3000

    def test_event_fields_reset_between_events(self):
        events = SSEParser().feed("event: a\nid: 9\ndata: 1\n\ndata: 2\n\n")

        assert events[1].event_type == "message"
        assert events[1].event_id is None

    @given(
        payloads=st.lists(
            st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789 {}\":,", min_size=1, max_size=30)
            .filter(lambda s: not s.startswith(" ")),
            min_size=1,
            max_size=5,
        ),
        cut=st.integers(min_value=0, max_value=200),
    )
    @settings(max_examples=100)
    def test_chunk_boundaries_do_not_matter(self, payloads: list[str], cut: int):
        stream = "".join(f"data: {p}\n\n" for p in payloads)
        cut = min(cut, len(stream))
        parser = SSEParser()

        events = parser.feed(stream[:cut]) + parser.feed(stream[cut:])

        assert [e.data for e in events] == payloads


def event_stream_response(chunks, status=200, content_type="text/event-stream"):
    async def body():
        for chunk in chunks:
            yield chunk.encode("utf-8")

    return httpx.Response(status, headers={"content-type": content_type}, content=body())


class TestSSEClient:

    @pytest.mark.asyncio
    async def test_receives_events_until_stream_ends(self):
        seen = []

        def handler(request):
            seen.append(request)
            return event_stream_response(["id: 7\nevent: tick\ndata: 1\n\n", "data: 2\n\n"])

        registry = ConnectionRegistry()
        client = SSEClient(registry, transport=httpx.MockTransport(handler))
        env = Environment(variables=[Variable(key="host", value="https://sse.test")])
        request = SSERequest(
            url="{{host}}/stream",
            headers=[KeyValuePair(key="X-Client", value="wb")],
            auth=ApiKeyAuth(key="key", value="k1", add_to="query"),
        )

        state = await client.connect("s1", request, env)
        assert state.status == "connected"

        await registry.get("s1").reader

        sent = seen[0]
        assert str(sent.url) == "https://sse.test/stream?key=k1"
        assert sent.headers["Accept"] == "text/event-stream"
        assert sent.headers["Cache-Control"] == "no-cache"
        assert sent.headers["X-Client"] == "wb"

        final = registry.state("s1")
        assert final.status == "disconnected"
        assert [(e.event_type, e.data) for e in final.events] == [
            ("system", "Connected to https://sse.test/stream?key=k1"),
            ("tick", "1"),
            ("message", "2"),
            ("system", "Stream ended"),
        ]
        assert final.last_event_id == "7"
        assert "s1" not in registry

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(503, text="down")

        registry = ConnectionRegistry()
        state = await SSEClient(registry, httpx.MockTransport(handler)).connect(
            "s1", SSERequest(url="https://sse.test")
        )

        assert state.status == "error"
        assert state.error == "HTTP 503 Service Unavailable"
        assert "s1" not in registry

    @pytest.mark.asyncio
    async def test_wrong_content_type(self):
        def handler(request):
            return httpx.Response(200, json={"not": "a stream"})

        state = await SSEClient(ConnectionRegistry(), httpx.MockTransport(handler)).connect(
            "s1", SSERequest(url="https://sse.test")
        )

        assert state.status == "error"
        assert state.error == "Expected text/event-stream but got application/json"

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        state = await SSEClient(ConnectionRegistry(), httpx.MockTransport(handler)).connect(
            "s1", SSERequest(url="https://sse.test")
        )

        assert state.status == "error"
        assert state.error == "refused"
        assert state.events[-1].data == "Error: refused"

    @pytest.mark.asyncio
    async def test_disconnect_stops_an_open_stream(self):
        first_event = asyncio.Event()

        async def endless():
            yield b"data: hi\n\n"
            await asyncio.sleep(30)

        def handler(request):
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=endless())

        registry = ConnectionRegistry()
        notifications = []

        def listener(connection_id, notification):
            notifications.append(notification)
            if notification.kind == "event" and notification.event.data == "hi":
                first_event.set()

        registry.subscribe(listener)
        client = SSEClient(registry, httpx.MockTransport(handler))

        await client.connect("s1", SSERequest(url="https://sse.test"))
        await asyncio.wait_for(first_event.wait(), timeout=5)

        assert await client.disconnect("s1") is True
        assert await client.disconnect("s1") is False

        statuses = [n.status for n in notifications if n.kind == "status"]
        assert statuses == ["connecting", "connected", "disconnected"]
        assert registry.state("s1").status == "disconnected"

    @pytest.mark.asyncio
    async def test_unencodable_header_is_an_error_state(self):
        def handler(request):
            return event_stream_response(["data: never\n\n"])

        registry = ConnectionRegistry()
        request = SSERequest(url="https://sse.test", headers=[KeyValuePair(key="X-Name", value="café")])

        state = await SSEClient(registry, httpx.MockTransport(handler)).connect("s1", request)

        assert state.status == "error"
        assert state.events[-1].data.startswith("Error: ")
        assert "s1" not in registry


class TestSSEConnectRaces:
    """A connection closed before its response arrives never becomes connected."""

    @pytest.mark.asyncio
    async def test_disconnect_while_connecting(self):
        entered, release = asyncio.Event(), asyncio.Event()
        responses = []

        async def handler(request):
            entered.set()
            await release.wait()
            response = event_stream_response(["data: late\n\n"])
            responses.append(response)
            return response

        registry = ConnectionRegistry()
        statuses = []
        registry.subscribe(lambda cid, n: statuses.append(n.status) if n.kind == "status" else None)
        client = SSEClient(registry, httpx.MockTransport(handler))

        connecting = asyncio.create_task(client.connect("s1", SSERequest(url="https://sse.test")))
        await asyncio.wait_for(entered.wait(), timeout=5)

        assert await client.disconnect("s1") is True
        release.set()
        state = await asyncio.wait_for(connecting, timeout=5)

        assert state.status == "disconnected"
        assert statuses == ["connecting", "disconnected"]
        assert state.events == []
        assert "s1" not in registry
        assert responses[0].is_closed

    @pytest.mark.asyncio
    async def test_reconnect_while_connecting(self):
        entered, release = asyncio.Event(), asyncio.Event()
        responses = []

        async def endless():
            yield b"data: hi\n\n"
            await asyncio.sleep(30)

        async def handler(request):
            if not responses:
                responses.append(None)
                entered.set()
                await release.wait()
                response = event_stream_response(["data: stale\n\n"])
                responses[0] = response
                return response
            response = httpx.Response(200, headers={"content-type": "text/event-stream"}, content=endless())
            responses.append(response)
            return response

        registry = ConnectionRegistry()
        statuses = []
        registry.subscribe(lambda cid, n: statuses.append(n.status) if n.kind == "status" else None)
        client = SSEClient(registry, httpx.MockTransport(handler))

        first = asyncio.create_task(client.connect("s1", SSERequest(url="https://old.test")))
        await asyncio.wait_for(entered.wait(), timeout=5)

        second = await client.connect("s1", SSERequest(url="https://new.test"))
        release.set()
        stale = await asyncio.wait_for(first, timeout=5)

        assert stale.status == "disconnected"
        assert second.status == "connected"
        assert statuses == ["connecting", "disconnected", "connecting", "connected"]
        assert registry.get("s1").url == "https://new.test"
        assert responses[0].is_closed

        await client.disconnect("s1")
