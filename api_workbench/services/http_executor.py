"""
HTTP execution service for sending HTTP requests.

This service handles the actual HTTP request execution using httpx,
including variable substitution, authentication, response capture, and
error handling. Responses of any status code are successful sends; only
transport failures produce a status-0 Response.
"""

import functools
import time
from urllib.parse import urlencode

import httpx

from ..schemas.auth import AwsSigV4Auth
from ..schemas.execute import Response
from ..schemas.request import HttpRequest
from .auth import apply_auth, sign_aws_sigv4
from .request_pipeline import (
    PreparedRequest,
    RequestSender,
    build_response,
    elapsed_since,
    failure_response,
)
from .variable_substitution import VariableResolver


# Default timeout in seconds
DEFAULT_TIMEOUT = 30.0

FORM_BODY_TYPES = ("form-data", "x-www-form-urlencoded")


def has_header(headers: dict[str, str], name: str) -> bool:
    """Case-insensitive header presence check."""
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


def transport_error_message(exc: Exception, timeout: float) -> str:
    """Human-readable message for a failed transport call."""
    if isinstance(exc, httpx.TimeoutException):
        return f"Request timed out after {timeout:g} seconds"
    if isinstance(exc, httpx.ConnectError):
        return f"Failed to connect to server: {exc}" if str(exc) else "Failed to connect to server"
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return f"Invalid URL: {exc}"
    if isinstance(exc, httpx.HTTPError):
        return str(exc) or exc.__class__.__name__
    return f"An unexpected error occurred: {exc}"


class HttpExecutor(RequestSender):
    """Sends ``HttpRequest`` values with httpx."""

    protocol = "http"

    def __init__(self, scripts=None, timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(scripts, timeout)
        self._transport = transport

    def prepare(self, request: HttpRequest, resolver: VariableResolver) -> PreparedRequest:
        url = resolver.resolve(request.url, "URL")
        headers = resolver.resolve_pairs(request.headers, "headers")
        params = resolver.resolve_pairs(request.params, "query params")
        apply_auth(request.auth, headers, params, resolver)

        body = request.body
        extra = {}
        content = ""
        if body.type in ("json", "raw"):
            content = resolver.resolve(body.content, "body")
        elif body.type == "binary":
            content = body.content
        elif body.type in FORM_BODY_TYPES:
            form = resolver.resolve_pairs(body.form_data, "body")
            extra["form"] = form
            content = urlencode(form)

        if body.type == "json" and not has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/json"
        elif body.type == "x-www-form-urlencoded" and not has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        if isinstance(request.auth, AwsSigV4Auth):
            extra["sign"] = functools.partial(sign_aws_sigv4, auth=request.auth, resolver=resolver)

        return PreparedRequest(
            url=url,
            method=request.method,
            headers=headers,
            params=params,
            body=content,
            extra=extra,
        )

    def build_request(self, client: httpx.AsyncClient, request: HttpRequest, prepared: PreparedRequest) -> httpx.Request:
        """Build the httpx request, encoding the body per its type."""
        kwargs = {}
        if request.body.type == "form-data":
            # (None, value) tuples make httpx send plain multipart fields
            kwargs["files"] = {key: (None, value) for key, value in prepared.extra["form"].items()}
        elif request.body.type != "none" and prepared.body:
            kwargs["content"] = prepared.body.encode("utf-8")

        outgoing = client.build_request(
            method=prepared.method,
            url=prepared.url,
            headers=prepared.headers,
            params=prepared.params or None,
            **kwargs,
        )
        sign = prepared.extra.get("sign")
        if sign is not None:
            sign(outgoing)
        return outgoing

    async def transport(self, request: HttpRequest, prepared: PreparedRequest) -> Response:
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                outgoing = self.build_request(client, request, prepared)
                response = await client.send(outgoing)
        except Exception as e:
            # Includes non-httpx failures such as header values that cannot be encoded
            return failure_response(
                request.id,
                transport_error_message(e, self.timeout),
                elapsed_since(start_time),
            )

        return build_response(
            request.id,
            status=response.status_code,
            status_text=response.reason_phrase or "",
            headers=dict(response.headers),
            body=response.text,
            elapsed_ms=elapsed_since(start_time),
        )
