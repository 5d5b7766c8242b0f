"""
Centralized error handling.

Domain errors carry their HTTP status; the handlers below turn them, request
validation failures and anything unexpected into the response envelope
used across the API:

    {"status": "fail", "message": "..."}   # 4xx
    {"status": "error", "message": "..."}  # 5xx
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backoffice.config import get_settings

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base application error class."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AppError):
    """The request collides with existing state, e.g. an overlapping target."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    """Entity missing, or not visible to the requesting user."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        super().__init__(message, {"resource": resource, "identifier": str(identifier)} if identifier else None)


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "You are not logged in"):
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


def error_response(status_code: int, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> JSONResponse:
    """Envelope for a failed request."""
    body: Dict[str, Any] = {
        "status": "fail" if status_code < 500 else "error",
        "message": message,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle application-specific errors."""
    logger.warning(
        "Request rejected",
        error=type(exc).__name__,
        message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )
    return error_response(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) in the same envelope."""
    return error_response(exc.status_code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request schema failures are reported as 400 with the offending fields."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", path=request.url.path, errors=errors)

    message = "; ".join(f"{e['field']}: {e['message']}" for e in errors) or "Invalid request"
    return error_response(status.HTTP_400_BAD_REQUEST, message, errors)


async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything uncaught becomes a 500; the underlying message is hidden in production."""
    logger.error(
        "Unexpected error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    if get_settings().is_production:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)
