"""
Root of the request execution pipeline.

A ``Workbench`` owns the connection registry, the script runner, the proto
schema cache, one sender per protocol and the OAuth2 flow. It is created at
application start and drained with ``shutdown()`` at exit.
"""

from typing import Optional

import httpx
from fastapi import Request as FastAPIRequest

from .config import Settings, get_settings
from .log import get_logger
from .schemas.auth import OAuth2Config, OAuth2TokenResponse
from .schemas.connection import ConnectionState, WebSocketMessage
from .schemas.environment import Environment
from .schemas.execute import Response
from .schemas.grpc import SchemaInfo
from .schemas.request import (
    GraphQLRequest,
    GrpcRequest,
    HttpRequest,
    KeyValuePair,
    SSERequest,
    WebSocketRequest,
)
from .services.connection_registry import ConnectionRegistry, Listener
from .services.graphql_executor import GraphQLExecutor
from .services.grpc_executor import GrpcExecutor, ProtoSchemaCache
from .services.http_executor import HttpExecutor
from .services.oauth2_flow import BrowserOpener, OAuth2Flow
from .services.request_pipeline import InFlightRequests
from .services.script_runner import ScriptRunner
from .services.sse_client import SSEClient
from .services.websocket_client import WebSocketClient


log = get_logger("workbench")


class Workbench:
    """Single dispatch point over the request union."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        open_browser: Optional[BrowserOpener] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self.registry = ConnectionRegistry()
        self.scripts = ScriptRunner(timeout=settings.script_timeout)
        self.schemas = ProtoSchemaCache()
        self.in_flight = InFlightRequests()

        self.http = HttpExecutor(self.scripts, settings.request_timeout, transport=transport)
        self.graphql = GraphQLExecutor(self.scripts, settings.request_timeout, transport=transport)
        self.grpc = GrpcExecutor(self.scripts, settings.request_timeout, schemas=self.schemas)
        self.websocket = WebSocketClient(self.registry, settings.websocket_handshake_timeout)
        self.sse = SSEClient(self.registry, transport=transport)

        oauth_kwargs = {"open_browser": open_browser} if open_browser is not None else {}
        self.oauth2 = OAuth2Flow(
            callback_timeout=settings.oauth_callback_timeout,
            request_timeout=settings.request_timeout,
            transport=transport,
            **oauth_kwargs,
        )

    # Request/response protocols

    async def send(self, request, environment: Optional[Environment] = None) -> Response:
        """
        Execute an HTTP, GraphQL or gRPC request.

        Raises ``RequestCancelledError`` if ``cancel(request.id)`` is called
        before the send completes.
        """
        if isinstance(request, HttpRequest):
            sender = self.http
        elif isinstance(request, GraphQLRequest):
            sender = self.graphql
        elif isinstance(request, GrpcRequest):
            sender = self.grpc
        else:
            raise TypeError(f"{type(request).__name__} is not a request/response request")
        return await self.in_flight.run(request.id, sender.send(request, environment))

    def cancel(self, request_id: str) -> bool:
        return self.in_flight.cancel(request_id)

    async def introspect(
        self,
        url: str,
        headers: Optional[list[KeyValuePair]] = None,
        environment: Optional[Environment] = None,
    ) -> str:
        return await self.graphql.introspect(url, headers, environment)

    def load_schema(self, path: str) -> SchemaInfo:
        return self.grpc.load_schema(path)

    def clear_schema_cache(self) -> None:
        self.schemas.clear()

    # Streaming protocols

    def _streaming_client(self, request):
        if isinstance(request, WebSocketRequest):
            return self.websocket
        if isinstance(request, SSERequest):
            return self.sse
        raise TypeError(f"{type(request).__name__} is not a streaming request")

    async def connect(
        self,
        connection_id: str,
        request,
        environment: Optional[Environment] = None,
    ) -> ConnectionState:
        return await self._streaming_client(request).connect(connection_id, request, environment)

    async def disconnect(self, connection_id: str) -> bool:
        return await self.registry.close(connection_id)

    async def send_message(self, connection_id: str, text: str) -> WebSocketMessage:
        return await self.websocket.send(connection_id, text)

    async def ping(self, connection_id: str, payload: str = "") -> None:
        await self.websocket.ping(connection_id, payload)

    def connection_state(self, connection_id: str) -> Optional[ConnectionState]:
        return self.registry.state(connection_id)

    def subscribe(self, listener: Listener):
        return self.registry.subscribe(listener)

    # Delegated authorization

    async def start_auth_code_flow(
        self, config: OAuth2Config, environment: Optional[Environment] = None
    ) -> OAuth2TokenResponse:
        return await self.oauth2.start_auth_code_flow(config, environment)

    async def client_credentials_flow(
        self, config: OAuth2Config, environment: Optional[Environment] = None
    ) -> OAuth2TokenResponse:
        return await self.oauth2.client_credentials_flow(config, environment)

    async def refresh_token(
        self, config: OAuth2Config, environment: Optional[Environment] = None
    ) -> OAuth2TokenResponse:
        return await self.oauth2.refresh_token(config, environment)

    async def shutdown(self) -> None:
        """Cancel in-flight sends and close every live connection."""
        self.in_flight.cancel_all()
        await self.registry.close_all()
        log.info("Workbench shut down")


def get_workbench(request: FastAPIRequest) -> Workbench:
    """Dependency returning the application's ``Workbench``."""
    return request.app.state.workbench
