"""
Custom exception classes and error handling for the API Workbench.

Transport and protocol failures never raise: they become Responses. The
exceptions below cover outcomes the caller has to treat differently from a
Response (cancellation, authorization failures, misuse of a connection) and
the errors of the environment store. All of them render as
``{"detail", "error_code"}`` JSON through the FastAPI handlers.
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from .log import get_logger


log = get_logger("errors")


class ErrorResponse(BaseModel):
    """Standard error response format."""
    detail: str
    error_code: str | None = None


class WorkbenchError(Exception):
    """Base exception for workbench errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str | None = None
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(detail)


class RequestCancelledError(WorkbenchError):
    """Raised from a send that was cancelled before it completed."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            detail="Request cancelled",
            status_code=499,
            error_code="REQUEST_CANCELLED"
        )


class ConnectionNotOpenError(WorkbenchError):
    """Raised when sending over a connection that is not connected."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(
            detail=f"Connection {connection_id} is not open",
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONNECTION_NOT_OPEN"
        )


class SchemaLoadError(WorkbenchError):
    """Raised when a .proto file cannot be read or compiled."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(
            detail=f"Failed to load proto file {path}: {reason}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="SCHEMA_LOAD_ERROR"
        )


class OAuth2Error(WorkbenchError):
    """Raised when a token flow fails."""

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_code: str = "OAUTH2_ERROR"
    ):
        super().__init__(detail=detail, status_code=status_code, error_code=error_code)


class OAuth2StateMismatchError(OAuth2Error):
    """The callback carried a state that does not match the one sent."""

    def __init__(self):
        super().__init__(
            detail="State mismatch - possible CSRF attack",
            error_code="OAUTH2_STATE_MISMATCH"
        )


class OAuth2TimeoutError(OAuth2Error):
    """No authorization callback arrived in time."""

    def __init__(self, timeout: float):
        super().__init__(
            detail=f"Authorization timed out after {int(timeout)} seconds",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_code="OAUTH2_TIMEOUT"
        )


class OAuth2ConfigError(OAuth2Error):
    """The OAuth2 configuration is missing a required field."""

    def __init__(self, detail: str):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="OAUTH2_CONFIG_ERROR"
        )


class ResourceNotFoundError(WorkbenchError):
    """Exception raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(
            detail=f"{resource_type} with id {resource_id} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND"
        )


class ValidationError(WorkbenchError):
    """Exception raised when request validation fails."""

    def __init__(self, detail: str):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR"
        )


async def workbench_exception_handler(request: Request, exc: WorkbenchError) -> JSONResponse:
    """Handler for workbench exceptions."""
    log.info("{} {} -> {} {}", request.method, request.url.path, exc.status_code, exc.error_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code}
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    errors = exc.errors()
    # Format validation errors into a readable message
    error_messages = []
    for error in errors:
        loc = " -> ".join(str(part) for part in error["loc"])
        error_messages.append(f"{loc}: {error['msg']}")

    detail = "; ".join(error_messages) if error_messages else "Validation error"

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": detail, "error_code": "VALIDATION_ERROR"}
    )


async def sqlalchemy_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """Handler for SQLAlchemy database errors."""
    log.opt(exception=exc).error("Database error on {} {}", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error occurred", "error_code": "DATABASE_ERROR"}
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(WorkbenchError, workbench_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
