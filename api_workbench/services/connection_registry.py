"""
Registry of live streaming connections.

One ``ConnectionRegistry`` is owned by the ``Workbench`` and shared by the
WebSocket and SSE clients. It holds at most one live connection per id,
keeps the final state of a closed connection until the id is reused, and
fans notifications out to subscribed listeners in emission order.
"""

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Callable, Optional

from ..log import get_logger
from ..schemas.connection import (
    ConnectionNotification,
    ConnectionProtocol,
    ConnectionState,
    ConnectionStatus,
    SSEEvent,
    WebSocketMessage,
)
from ..schemas.environment import Environment
from .auth import append_query, apply_auth
from .variable_substitution import VariableResolver


log = get_logger("connections")

Listener = Callable[[str, ConnectionNotification], None]


class StreamingConnection:
    """
    One live connection and its state.

    Subclasses implement ``open`` and ``shutdown``; every state change goes
    through ``set_status``/``add_message``/``add_event`` so listeners see it.
    """

    protocol: ConnectionProtocol = "websocket"

    def __init__(self, connection_id: str, url: str, registry: "ConnectionRegistry"):
        self.connection_id = connection_id
        self.url = url
        self.registry = registry
        self.state = ConnectionState(connection_id=connection_id, protocol=self.protocol)
        self.reader: Optional[asyncio.Task] = None
        self.closing = False

    @property
    def status(self) -> ConnectionStatus:
        return self.state.status

    def set_status(self, status: ConnectionStatus, error: Optional[str] = None) -> None:
        self.state.status = status
        self.state.error = error
        if status == "connected":
            self.state.connected_at = datetime.now(timezone.utc)
        if error:
            log.warning("{} {} -> {}: {}", self.protocol, self.connection_id, status, error)
        else:
            log.info("{} {} -> {}", self.protocol, self.connection_id, status)
        self.registry.publish(ConnectionNotification(
            connection_id=self.connection_id,
            protocol=self.protocol,
            kind="status",
            status=status,
            error=error,
        ))

    def add_message(self, message: WebSocketMessage) -> None:
        self.state.messages.append(message)
        self.registry.publish(ConnectionNotification(
            connection_id=self.connection_id,
            protocol=self.protocol,
            kind="message",
            message=message,
        ))

    def add_event(self, event: SSEEvent) -> None:
        if event.event_id:
            self.state.last_event_id = event.event_id
        self.state.events.append(event)
        self.registry.publish(ConnectionNotification(
            connection_id=self.connection_id,
            protocol=self.protocol,
            kind="event",
            event=event,
        ))

    async def open(self, headers: dict[str, str]) -> None:
        raise NotImplementedError

    async def shutdown(self) -> None:
        """Release the transport. Must not publish anything."""
        raise NotImplementedError

    async def stop_reader(self) -> None:
        reader = self.reader
        if reader is None or reader is asyncio.current_task() or reader.done():
            return
        reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reader

    async def close(self) -> None:
        """Disconnect on request: abort the transport and report ``disconnected``."""
        if self.closing:
            return
        self.closing = True
        await self.stop_reader()
        await self.shutdown()
        self.set_status("disconnected")
        self.registry.remove(self)


class ConnectionRegistry:
    """Map of connection id to live connection, plus listener fan-out."""

    def __init__(self):
        self._connections: dict[str, StreamingConnection] = {}
        self._final_states: dict[str, ConnectionState] = {}
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, notification: ConnectionNotification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification.connection_id, notification)
            except Exception:
                log.exception("Connection listener failed for {}", notification.connection_id)

    def get(self, connection_id: str) -> Optional[StreamingConnection]:
        return self._connections.get(connection_id)

    def state(self, connection_id: str) -> Optional[ConnectionState]:
        """Live state, or the final state of the last closed connection with this id."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            return connection.state
        return self._final_states.get(connection_id)

    def register(self, connection: StreamingConnection) -> None:
        existing = self._connections.get(connection.connection_id)
        if existing is not None and existing is not connection:
            raise RuntimeError(f"Connection {connection.connection_id} is already registered")
        self._final_states.pop(connection.connection_id, None)
        self._connections[connection.connection_id] = connection

    def remove(self, connection: StreamingConnection) -> None:
        """Drop ``connection`` if it is still the entry for its id."""
        if self._connections.get(connection.connection_id) is connection:
            del self._connections[connection.connection_id]
            self._final_states[connection.connection_id] = connection.state

    async def close(self, connection_id: str) -> bool:
        """Close the live connection for ``connection_id``. No-op if there is none."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        await connection.close()
        return True

    async def close_all(self) -> None:
        for connection_id in list(self._connections):
            await self.close(connection_id)


class StreamingClient:
    """Common connect/disconnect flow of the two streaming protocols."""

    protocol: ConnectionProtocol = "websocket"

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def create_connection(self, connection_id: str, url: str) -> StreamingConnection:
        raise NotImplementedError

    def prepare(self, request, environment: Optional[Environment]) -> tuple[str, dict[str, str]]:
        """Resolve the URL and headers and apply auth. Query API keys go on the URL."""
        resolver = VariableResolver(environment)
        url = resolver.resolve(request.url)
        headers = resolver.resolve_pairs(request.headers)
        params: dict[str, str] = {}
        apply_auth(request.auth, headers, params, resolver)
        return append_query(url, params), headers

    async def connect(
        self,
        connection_id: str,
        request,
        environment: Optional[Environment] = None,
    ) -> ConnectionState:
        """
        Open a connection under ``connection_id``, closing any live one first.

        Handshake failures are reported as an ``error`` transition, not raised.
        """
        await self.registry.close(connection_id)

        url, headers = self.prepare(request, environment)
        connection = self.create_connection(connection_id, url)
        self.registry.register(connection)
        connection.set_status("connecting")
        await connection.open(headers)
        return connection.state

    async def disconnect(self, connection_id: str) -> bool:
        return await self.registry.close(connection_id)
