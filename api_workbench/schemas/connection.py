"""
Pydantic schemas for streaming connections (WebSocket and SSE).
"""

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from .environment import Environment
from .request import StreamingRequest


ConnectionStatus = Literal["disconnected", "connecting", "connected", "error"]
ConnectionProtocol = Literal["websocket", "sse"]
MessageDirection = Literal["sent", "received"]
MessageType = Literal["text", "binary", "ping", "pong", "system"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WebSocketMessage(BaseModel):
    """One entry of a WebSocket connection's message log."""
    id: str = Field(default_factory=_new_id)
    direction: MessageDirection
    type: MessageType
    payload: str
    timestamp: datetime = Field(default_factory=_utc_now)


class SSEEvent(BaseModel):
    """One dispatched server-sent event, or a ``system`` notice."""
    id: str = Field(default_factory=_new_id)
    event_id: str | None = None
    event_type: str = "message"
    data: str
    timestamp: datetime = Field(default_factory=_utc_now)


class ConnectionState(BaseModel):
    """Snapshot of one streaming connection."""
    connection_id: str
    protocol: ConnectionProtocol
    status: ConnectionStatus = "disconnected"
    error: str | None = None
    messages: list[WebSocketMessage] = []
    events: list[SSEEvent] = []
    connected_at: datetime | None = None
    last_event_id: str | None = None


class ConnectionNotification(BaseModel):
    """
    A single notification delivered to connection listeners.

    ``kind`` is ``status`` for state transitions, ``message`` for WebSocket
    log entries and ``event`` for SSE events.
    """
    connection_id: str
    protocol: ConnectionProtocol
    kind: Literal["status", "message", "event"]
    status: ConnectionStatus | None = None
    error: str | None = None
    message: WebSocketMessage | None = None
    event: SSEEvent | None = None


class ConnectRequest(BaseModel):
    """Payload for opening a streaming connection."""
    request: StreamingRequest
    environment: Environment | None = None
    environment_id: int | None = None


class SendMessageRequest(BaseModel):
    """Payload for sending a text frame over an open WebSocket."""
    message: str
