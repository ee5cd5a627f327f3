"""
Pydantic schemas for request definitions.

``Request`` is a tagged union over the five supported protocols,
discriminated by ``type``.
"""

import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from .auth import AuthConfig, NoAuth


# HTTP methods supported by the system
HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Body types supported for HTTP requests
BodyType = Literal["none", "json", "form-data", "x-www-form-urlencoded", "raw", "binary"]

RequestType = Literal["http", "graphql", "grpc", "websocket", "sse"]


def _new_id() -> str:
    return str(uuid.uuid4())


class KeyValuePair(BaseModel):
    """An enable-able key/value pair (header, query parameter, form field, metadata)."""
    key: str
    value: str = ""
    enabled: bool = True


class RequestBody(BaseModel):
    """HTTP request body."""
    type: BodyType = "none"
    content: str = ""
    form_data: list[KeyValuePair] = []


class RequestBase(BaseModel):
    """Fields shared by every request variant."""
    id: str = Field(default_factory=_new_id)
    name: str = ""
    url: str
    headers: list[KeyValuePair] = []
    auth: AuthConfig = Field(default_factory=NoAuth)


class ScriptedRequest(RequestBase):
    """Request variants that run pre-request and test scripts."""
    pre_request_script: str | None = None
    test_script: str | None = None


class HttpRequest(ScriptedRequest):
    type: Literal["http"] = "http"
    method: HttpMethod = "GET"
    params: list[KeyValuePair] = []
    body: RequestBody = Field(default_factory=RequestBody)


class GraphQLRequest(ScriptedRequest):
    type: Literal["graphql"] = "graphql"
    query: str = ""
    variables: str = ""
    operation_name: str | None = None


class GrpcRequest(ScriptedRequest):
    """Unary RPC request. ``message`` is the JSON form of the request message."""
    type: Literal["grpc"] = "grpc"
    proto_file: str | None = None
    service_name: str | None = None
    method_name: str | None = None
    message: str = ""
    metadata: list[KeyValuePair] = []


class WebSocketRequest(RequestBase):
    type: Literal["websocket"] = "websocket"


class SSERequest(RequestBase):
    type: Literal["sse"] = "sse"


Request = Annotated[
    Union[HttpRequest, GraphQLRequest, GrpcRequest, WebSocketRequest, SSERequest],
    Field(discriminator="type"),
]

SendableRequest = Annotated[
    Union[HttpRequest, GraphQLRequest, GrpcRequest],
    Field(discriminator="type"),
]

StreamingRequest = Annotated[
    Union[WebSocketRequest, SSERequest],
    Field(discriminator="type"),
]
