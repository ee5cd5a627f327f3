"""
Shared execution pipeline for the request/response protocols.

Every send runs strictly in the order resolve, auth, pre-request script,
transport, test script. ``RequestSender`` implements that order once;
the HTTP, GraphQL and gRPC senders only provide ``prepare`` (resolution and
auth) and ``transport``.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional

from ..config import DEFAULT_REQUEST_TIMEOUT
from ..exceptions import RequestCancelledError
from ..log import get_logger
from ..schemas.environment import Environment
from ..schemas.execute import Response, ScriptResult
from .auth import append_query
from .script_api import RequestSnapshot
from .script_runner import ScriptRunner
from .variable_substitution import VariableResolver, apply_environment_updates


log = get_logger("pipeline")


PRE_REQUEST_SCRIPT_ERROR = "Pre-request script error"


@dataclass
class PreparedRequest:
    """A request with variables resolved and auth applied, ready for transport."""
    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    body: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def full_url(self) -> str:
        return append_query(self.url, self.params)

    def snapshot(self) -> RequestSnapshot:
        return RequestSnapshot(self.full_url, self.method, self.headers, self.body)


def elapsed_since(start: float) -> int:
    """Milliseconds elapsed since a ``time.perf_counter()`` reading."""
    return int((time.perf_counter() - start) * 1000)


def text_size(body: str) -> int:
    return len(body.encode("utf-8"))


def build_response(
    request_id: str,
    status: int,
    status_text: str,
    body: str,
    headers: Optional[dict[str, str]] = None,
    elapsed_ms: int = 0,
) -> Response:
    return Response(
        request_id=request_id,
        status=status,
        status_text=status_text,
        headers=headers or {},
        body=body,
        size=text_size(body),
        elapsed_ms=elapsed_ms,
    )


def failure_response(request_id: str, message: str, elapsed_ms: int = 0) -> Response:
    """Synthetic status-0 Response for a send that never got a protocol status."""
    return Response(
        request_id=request_id,
        status=0,
        status_text=message,
        body=message,
        elapsed_ms=elapsed_ms,
    )


def redact_url(url: str) -> str:
    """Strip the query string, which may carry API keys, for logging."""
    return url.split("?", 1)[0]


class InFlightRequests:
    """
    Cancellation tokens for in-flight sends, keyed by request id.

    A cancelled send raises ``RequestCancelledError`` to its caller and
    delivers no Response.
    """

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancelled: set[str] = set()

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, request_id: str, coro: Awaitable[Response]) -> Response:
        task = asyncio.ensure_future(coro)
        self._tasks[request_id] = task
        try:
            return await task
        except asyncio.CancelledError:
            if request_id in self._cancelled:
                raise RequestCancelledError(request_id) from None
            raise
        finally:
            if self._tasks.get(request_id) is task:
                del self._tasks[request_id]
                self._cancelled.discard(request_id)

    def cancel(self, request_id: str) -> bool:
        """Abort the send for ``request_id``. Returns False if nothing was in flight."""
        task = self._tasks.get(request_id)
        if task is None or task.done():
            return False
        self._cancelled.add(request_id)
        task.cancel()
        log.info("Cancelled request {}", request_id)
        return True

    def cancel_all(self) -> None:
        for request_id in list(self._tasks):
            self.cancel(request_id)


class RequestSender:
    """
    Base class for request/response senders.

    Subclasses implement ``prepare`` and ``transport``. ``transport`` must
    turn every transport or protocol failure into a Response; only
    cancellation may propagate.
    """

    protocol = "request"

    def __init__(
        self,
        scripts: Optional[ScriptRunner] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.scripts = scripts or ScriptRunner()
        self.timeout = timeout

    def prepare(self, request, resolver: VariableResolver) -> PreparedRequest:
        raise NotImplementedError

    async def transport(self, request, prepared: PreparedRequest) -> Response:
        raise NotImplementedError

    async def send(self, request, environment: Optional[Environment] = None) -> Response:
        resolver = VariableResolver(environment)
        prepared = self.prepare(request, resolver)
        working_environment = environment
        pre_result: Optional[ScriptResult] = None

        script = request.pre_request_script
        if script and script.strip():
            pre_result = await asyncio.to_thread(
                self.scripts.run_pre_request, script, prepared.snapshot(), environment
            )
            if not pre_result.success:
                response = failure_response(
                    request.id, f"{PRE_REQUEST_SCRIPT_ERROR}: {pre_result.error}"
                )
                response.status_text = PRE_REQUEST_SCRIPT_ERROR
                response.warnings = resolver.warnings
                response.pre_request_script_result = pre_result
                return response

            if pre_result.environment_updates:
                working_environment = apply_environment_updates(
                    environment or Environment(), pre_result.environment_updates
                )
                resolver = VariableResolver(working_environment)
                prepared = self.prepare(request, resolver)

        log.debug("{} {} {}", self.protocol, prepared.method, redact_url(prepared.url))
        response = await self.transport(request, prepared)
        if response.status == 0:
            log.warning(
                "{} {} failed: {}", self.protocol, redact_url(prepared.url), response.status_text
            )
        else:
            log.info(
                "{} {} -> {} in {} ms",
                self.protocol, redact_url(prepared.url), response.status, response.elapsed_ms,
            )

        response.warnings = resolver.warnings
        response.pre_request_script_result = pre_result

        script = request.test_script
        if script and script.strip():
            response.test_script_result = await asyncio.to_thread(
                self.scripts.run_test, script, prepared.snapshot(), response, working_environment
            )
        return response
