"""
Pydantic schemas package.

Exports the request, response, environment, connection and auth schemas
shared by the execution pipeline and the API routers.
"""

from .auth import (
    AuthConfig,
    NoAuth,
    BasicAuth,
    BearerAuth,
    ApiKeyAuth,
    OAuth2Auth,
    AwsSigV4Auth,
    OAuth2Config,
    OAuth2TokenResponse,
)

from .request import (
    HttpMethod,
    BodyType,
    KeyValuePair,
    RequestBody,
    HttpRequest,
    GraphQLRequest,
    GrpcRequest,
    WebSocketRequest,
    SSERequest,
    Request,
    SendableRequest,
    StreamingRequest,
)

from .environment import (
    Variable,
    Environment,
    VariableCreate,
    VariableUpdate,
    VariableResponse,
    EnvironmentCreate,
    EnvironmentUpdate,
    EnvironmentResponse,
    EnvironmentWithVariables,
)

from .execute import (
    TestResult,
    ScriptResult,
    Response,
    ExecuteRequest,
    IntrospectRequest,
)

from .connection import (
    ConnectionStatus,
    WebSocketMessage,
    SSEEvent,
    ConnectionState,
    ConnectionNotification,
    ConnectRequest,
    SendMessageRequest,
)

from .grpc import LoadSchemaRequest, SchemaInfo
from .oauth2 import OAuth2FlowRequest

__all__ = [
    # Auth schemas
    "AuthConfig",
    "NoAuth",
    "BasicAuth",
    "BearerAuth",
    "ApiKeyAuth",
    "OAuth2Auth",
    "AwsSigV4Auth",
    "OAuth2Config",
    "OAuth2TokenResponse",
    # Request schemas
    "HttpMethod",
    "BodyType",
    "KeyValuePair",
    "RequestBody",
    "HttpRequest",
    "GraphQLRequest",
    "GrpcRequest",
    "WebSocketRequest",
    "SSERequest",
    "Request",
    "SendableRequest",
    "StreamingRequest",
    # Environment schemas
    "Variable",
    "Environment",
    "VariableCreate",
    "VariableUpdate",
    "VariableResponse",
    "EnvironmentCreate",
    "EnvironmentUpdate",
    "EnvironmentResponse",
    "EnvironmentWithVariables",
    # Execute schemas
    "TestResult",
    "ScriptResult",
    "Response",
    "ExecuteRequest",
    "IntrospectRequest",
    # Connection schemas
    "ConnectionStatus",
    "WebSocketMessage",
    "SSEEvent",
    "ConnectionState",
    "ConnectionNotification",
    "ConnectRequest",
    "SendMessageRequest",
    # Other
    "LoadSchemaRequest",
    "SchemaInfo",
    "OAuth2FlowRequest",
]
