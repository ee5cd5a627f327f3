"""
Pydantic schemas for request execution.

Defines the Response produced by the request/response senders, the
script results attached to it, and the payloads accepted by the execute
endpoints.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .environment import Environment
from .request import KeyValuePair, SendableRequest


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TestResult(BaseModel):
    """Outcome of one ``pm.test`` block."""
    __test__ = False

    name: str
    passed: bool
    error: str | None = None


class ScriptResult(BaseModel):
    """Outcome of one pre-request or test script run."""
    success: bool
    error: str | None = None
    console_logs: list[str] = []
    environment_updates: dict[str, str] = {}
    test_results: list[TestResult] = []
    duration_ms: int = 0


class Response(BaseModel):
    """
    Result of a request/response send.

    ``status`` 0 means no protocol status was obtained (transport failure,
    pre-request script failure, or an unsendable request). ``warnings``
    lists ``{{variables}}`` that could not be resolved.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str
    status: int
    status_text: str = ""
    headers: dict[str, str] = {}
    body: str = ""
    size: int = 0
    elapsed_ms: int = 0
    timestamp: datetime = Field(default_factory=_utc_now)
    warnings: list[str] = []
    pre_request_script_result: ScriptResult | None = None
    test_script_result: ScriptResult | None = None


class ExecuteRequest(BaseModel):
    """Payload for executing a request/response style request."""
    request: SendableRequest
    environment: Environment | None = None
    environment_id: int | None = None


class IntrospectRequest(BaseModel):
    """Payload for GraphQL schema introspection."""
    url: str
    headers: list[KeyValuePair] = []
    environment: Environment | None = None
    environment_id: int | None = None
