"""
Streaming connection API routes (WebSocket and SSE).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ResourceNotFoundError
from ..schemas.connection import (
    ConnectionState,
    ConnectRequest,
    SendMessageRequest,
    WebSocketMessage,
)
from ..services.environment_store import load_environment
from ..workbench import Workbench, get_workbench


router = APIRouter(prefix="/api/connections", tags=["connections"])


@router.post("/{connection_id}/connect", response_model=ConnectionState)
async def connect(
    connection_id: str,
    payload: ConnectRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    """
    Open a connection, replacing any live connection with the same id.

    A failed handshake is returned as a state with status ``error``.
    """
    environment = load_environment(db, payload.environment, payload.environment_id)
    return await workbench.connect(connection_id, payload.request, environment)


@router.post("/{connection_id}/disconnect")
async def disconnect(connection_id: str, workbench: Workbench = Depends(get_workbench)):
    return {"disconnected": await workbench.disconnect(connection_id)}


@router.post("/{connection_id}/send", response_model=WebSocketMessage)
async def send_message(
    connection_id: str,
    payload: SendMessageRequest,
    workbench: Workbench = Depends(get_workbench),
):
    """
    Send a text frame over an open WebSocket.

    Raises:
        ConnectionNotOpenError: 409 if the connection is not connected
    """
    return await workbench.send_message(connection_id, payload.message)


@router.post("/{connection_id}/ping", response_model=ConnectionState)
async def ping(
    connection_id: str,
    payload: SendMessageRequest | None = None,
    workbench: Workbench = Depends(get_workbench),
):
    """Send a ping frame and wait for the pong."""
    await workbench.ping(connection_id, payload.message if payload else "")
    return workbench.connection_state(connection_id)


@router.get("/{connection_id}", response_model=ConnectionState)
async def get_connection(connection_id: str, workbench: Workbench = Depends(get_workbench)):
    """Current state of a connection, or the final state of the last closed one."""
    state = workbench.connection_state(connection_id)
    if state is None:
        raise ResourceNotFoundError("Connection", connection_id)
    return state
