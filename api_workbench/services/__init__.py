# Services package

from .variable_substitution import (
    extract_variables,
    substitute,
    interpolate,
    apply_environment_updates,
    VariableResolver,
)
from .script_runner import ScriptRunner
from .request_pipeline import InFlightRequests, RequestSender
from .http_executor import HttpExecutor
from .graphql_executor import GraphQLExecutor
from .grpc_executor import GrpcExecutor, ProtoSchemaCache
from .connection_registry import ConnectionRegistry
from .websocket_client import WebSocketClient
from .sse_client import SSEClient
from .sse_parser import SSEParser
from .oauth2_flow import OAuth2Flow
from .environment_store import load_environment, save_environment_updates

__all__ = [
    "extract_variables",
    "substitute",
    "interpolate",
    "apply_environment_updates",
    "VariableResolver",
    "ScriptRunner",
    "InFlightRequests",
    "RequestSender",
    "HttpExecutor",
    "GraphQLExecutor",
    "GrpcExecutor",
    "ProtoSchemaCache",
    "ConnectionRegistry",
    "WebSocketClient",
    "SSEClient",
    "SSEParser",
    "OAuth2Flow",
    "load_environment",
    "save_environment_updates",
]
