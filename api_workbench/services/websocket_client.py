"""
WebSocket client built on the ``websockets`` asyncio API.

Inbound frames are read by one task per connection and appended to the
connection's message log. Keepalive pings sent by the server are answered
by ``websockets`` itself and are not logged.
"""

import asyncio
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..config import DEFAULT_WEBSOCKET_HANDSHAKE_TIMEOUT
from ..exceptions import ConnectionNotOpenError
from ..schemas.connection import WebSocketMessage
from .connection_registry import ConnectionRegistry, StreamingClient, StreamingConnection


BINARY_PREVIEW_CHARS = 100


def binary_preview(data: bytes) -> str:
    return f"[Binary data: {data.hex()[:BINARY_PREVIEW_CHARS]}...]"


def system_message(payload: str) -> WebSocketMessage:
    return WebSocketMessage(direction="received", type="system", payload=payload)


class WebSocketConnection(StreamingConnection):
    protocol = "websocket"

    def __init__(self, connection_id: str, url: str, registry: ConnectionRegistry, handshake_timeout: float):
        super().__init__(connection_id, url, registry)
        self.handshake_timeout = handshake_timeout
        self.ws: Optional[ClientConnection] = None

    async def open(self, headers: dict[str, str]) -> None:
        try:
            self.ws = await connect(
                self.url,
                additional_headers=list(headers.items()),
                open_timeout=self.handshake_timeout,
            )
        except (OSError, ValueError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
            if not self.closing:
                self.fail(str(e) or e.__class__.__name__)
            return

        if self.closing:
            # Disconnected or replaced during the handshake
            await self.shutdown()
            return

        self.set_status("connected")
        self.add_message(system_message(f"Connected to {self.url}"))
        self.reader = asyncio.create_task(self.read_frames(), name=f"websocket-{self.connection_id}")

    def fail(self, error: str) -> None:
        self.set_status("error", error)
        self.add_message(system_message(f"Error: {error}"))
        self.registry.remove(self)

    async def read_frames(self) -> None:
        try:
            async for frame in self.ws:
                if isinstance(frame, bytes):
                    message = WebSocketMessage(direction="received", type="binary", payload=binary_preview(frame))
                else:
                    message = WebSocketMessage(direction="received", type="text", payload=frame)
                self.add_message(message)
        except ConnectionClosed:
            pass
        except OSError as e:
            if not self.closing:
                self.closing = True
                self.fail(str(e) or e.__class__.__name__)
            return

        if self.closing:
            return
        self.closing = True
        code = self.ws.close_code if self.ws.close_code is not None else 1006
        reason = self.ws.close_reason or "Connection closed"
        self.set_status("disconnected")
        self.add_message(system_message(f"Disconnected (code: {code}, reason: {reason})"))
        self.registry.remove(self)

    async def shutdown(self) -> None:
        if self.ws is not None:
            await self.ws.close(1000, "User disconnected")

    def ensure_open(self) -> ClientConnection:
        if self.status != "connected" or self.ws is None:
            raise ConnectionNotOpenError(self.connection_id)
        return self.ws

    async def send(self, text: str) -> WebSocketMessage:
        ws = self.ensure_open()
        try:
            await ws.send(text)
        except ConnectionClosed:
            raise ConnectionNotOpenError(self.connection_id) from None
        message = WebSocketMessage(direction="sent", type="text", payload=text)
        self.add_message(message)
        return message

    async def ping(self, payload: str = "") -> None:
        """Send a ping and log it, then log the matching pong when it arrives."""
        ws = self.ensure_open()
        try:
            pong_waiter = await ws.ping(payload.encode("utf-8") if payload else None)
        except ConnectionClosed:
            raise ConnectionNotOpenError(self.connection_id) from None
        self.add_message(WebSocketMessage(direction="sent", type="ping", payload=payload or "[ping]"))
        try:
            await pong_waiter
        except ConnectionClosed:
            return
        self.add_message(WebSocketMessage(direction="received", type="pong", payload=payload or "[pong]"))


class WebSocketClient(StreamingClient):
    """Connects, sends and disconnects WebSocket connections in the registry."""

    protocol = "websocket"

    def __init__(self, registry: ConnectionRegistry, handshake_timeout: float = DEFAULT_WEBSOCKET_HANDSHAKE_TIMEOUT):
        super().__init__(registry)
        self.handshake_timeout = handshake_timeout

    def create_connection(self, connection_id: str, url: str) -> WebSocketConnection:
        return WebSocketConnection(connection_id, url, self.registry, self.handshake_timeout)

    def _connection(self, connection_id: str) -> WebSocketConnection:
        connection = self.registry.get(connection_id)
        if not isinstance(connection, WebSocketConnection):
            raise ConnectionNotOpenError(connection_id)
        return connection

    async def send(self, connection_id: str, text: str) -> WebSocketMessage:
        return await self._connection(connection_id).send(text)

    async def ping(self, connection_id: str, payload: str = "") -> None:
        await self._connection(connection_id).ping(payload)
