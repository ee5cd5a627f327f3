"""
Server-sent events client built on httpx streaming responses.

The stream has no read timeout: a connection stays open until the server
ends it or the caller disconnects.
"""

import asyncio
from typing import Optional

import httpx

from ..schemas.connection import SSEEvent
from .connection_registry import ConnectionRegistry, StreamingClient, StreamingConnection
from .sse_parser import SSEParser


EVENT_STREAM = "text/event-stream"


def system_event(data: str) -> SSEEvent:
    return SSEEvent(event_type="system", data=data)


class SSEConnection(StreamingConnection):
    protocol = "sse"

    def __init__(
        self,
        connection_id: str,
        url: str,
        registry: ConnectionRegistry,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(connection_id, url, registry)
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(None), transport=transport)
        self.response: Optional[httpx.Response] = None
        self.parser = SSEParser()

    async def open(self, headers: dict[str, str]) -> None:
        headers = dict(headers)
        headers["Accept"] = EVENT_STREAM
        headers["Cache-Control"] = "no-cache"

        try:
            request = self.client.build_request("GET", self.url, headers=headers)
            self.response = await self.client.send(request, stream=True)
        except Exception as e:
            # Includes non-httpx failures such as header values that cannot be encoded
            if self.closing:
                return
            await self.fail(str(e) or e.__class__.__name__)
            return

        if self.closing:
            # Disconnected or replaced while the request was in flight
            await self.shutdown()
            return

        if not self.response.is_success:
            await self.fail(f"HTTP {self.response.status_code} {self.response.reason_phrase}".strip())
            return

        content_type = self.response.headers.get("content-type", "")
        if EVENT_STREAM not in content_type:
            await self.fail(f"Expected {EVENT_STREAM} but got {content_type}")
            return

        self.set_status("connected")
        self.add_event(system_event(f"Connected to {self.url}"))
        self.reader = asyncio.create_task(self.read_stream(), name=f"sse-{self.connection_id}")

    async def fail(self, error: str) -> None:
        self.closing = True
        await self.shutdown()
        self.set_status("error", error)
        self.add_event(system_event(f"Error: {error}"))
        self.registry.remove(self)

    async def read_stream(self) -> None:
        try:
            async for chunk in self.response.aiter_text():
                for parsed in self.parser.feed(chunk):
                    self.add_event(SSEEvent(
                        event_id=parsed.event_id,
                        event_type=parsed.event_type,
                        data=parsed.data,
                    ))
        except httpx.HTTPError as e:
            if not self.closing:
                await self.fail(str(e) or e.__class__.__name__)
            return

        if self.closing:
            return
        self.closing = True
        await self.shutdown()
        self.set_status("disconnected")
        self.add_event(system_event("Stream ended"))
        self.registry.remove(self)

    async def shutdown(self) -> None:
        if self.response is not None:
            await self.response.aclose()
        await self.client.aclose()


class SSEClient(StreamingClient):
    """Connects and disconnects SSE streams in the registry."""

    protocol = "sse"

    def __init__(self, registry: ConnectionRegistry, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(registry)
        self._transport = transport

    def create_connection(self, connection_id: str, url: str) -> SSEConnection:
        return SSEConnection(connection_id, url, self.registry, self._transport)
