"""Error types and global exception handlers.

Every error leaves the API in the same envelope::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": {...}}}

Domain code raises the ``APIError`` subclasses below; the handlers log the
failure, emit an error metric and render the envelope.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import DatabaseError, IntegrityError

from app.core.otel_metrics import emit_error

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for errors that map onto a well-defined HTTP response."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationAPIError(APIError):
    """Input the schemas accepted but the domain rules reject."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[dict[str, Any]] | None = None,
    ):
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            "validation_error",
            message,
            {"errors": errors or []},
        )


class NotFoundError(APIError):
    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        super().__init__(
            status.HTTP_404_NOT_FOUND,
            "not_found",
            message,
            {"resource": resource, "identifier": identifier},
        )


class ConflictError(APIError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(status.HTTP_409_CONFLICT, "conflict", message, details)


class ForbiddenError(APIError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(status.HTTP_403_FORBIDDEN, "forbidden", message)


class ServiceLockedError(ConflictError):
    """A service is linked to a payment and cannot be mutated.

    ``payment_id`` is None when the caller is not allowed to see the payment.
    """

    def __init__(
        self,
        service_id: str,
        payment_id: str | None,
        status: str,
        message: str | None = None,
    ):
        super().__init__(
            message or f"Service {service_id} is locked by a payment",
            {"service_id": service_id, "payment_id": payment_id, "status": status},
        )
        self.error_code = "service_locked"
        self.service_id = service_id
        self.payment_id = payment_id
        self.status = status


class StateTransitionError(APIError):
    """The caller may change the resource, but not in the attempted way."""

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        requested_status: str | None = None,
    ):
        super().__init__(
            status.HTTP_409_CONFLICT,
            "invalid_state_transition",
            message,
            {"current_status": current_status, "requested_status": requested_status},
        )


_REQUEST_PARTS = {"body", "query", "path", "header", "cookie"}


def _field_path(loc) -> str:
    parts = list(loc)
    if len(parts) > 1 and parts[0] in _REQUEST_PARTS:
        parts = parts[1:]
    return ".".join(str(part) for part in parts)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _debug_enabled(request: Request) -> bool:
    return bool(getattr(request.app.state, "debug", False))


def _envelope(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": _request_id(request),
    }
    if details is not None:
        body["details"] = details
    return {"error": body}


def _exception_details(exc: Exception, with_traceback: bool = False) -> dict[str, Any]:
    details: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if with_traceback:
        details["traceback"] = traceback.format_exc().split("\n")
    return details


def _record(
    request: Request,
    level: int,
    message: str,
    error_code: str,
    status_code: int,
    exc_info: bool = False,
    **extra: Any,
) -> None:
    """Log a handled error and count it."""
    request_id = _request_id(request)
    logger.log(
        level,
        message,
        extra={
            "request_id": request_id,
            "error_code": error_code,
            "status_code": status_code,
            "path": request.url.path,
            "method": request.method,
            **extra,
        },
        exc_info=exc_info,
    )
    emit_error(
        error_code=error_code,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )


def format_error_response(
    error: Exception,
    request: Request,
    include_details: bool = False,
) -> dict[str, Any]:
    """Build the error envelope for any exception.

    ``include_details`` forces a details block for API errors that carry
    none, and exposes the exception type and message for unexpected errors.
    """
    if isinstance(error, APIError):
        details = error.details if (error.details or include_details) else None
        return _envelope(request, error.error_code, error.message, details)

    if isinstance(error, (RequestValidationError, ValidationError)):
        errors = [
            {
                "field": _field_path(err.get("loc", ())),
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type", "validation_error"),
            }
            for err in error.errors()
        ]
        return _envelope(request, "validation_error", "Validation failed", {"errors": errors})

    return _envelope(
        request,
        "internal_error",
        "An internal error occurred",
        _exception_details(error) if include_details else None,
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    _record(
        request,
        logging.WARNING,
        f"API error: {exc.error_code} - {exc.message}",
        exc.error_code,
        exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(exc, request, include_details=True),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Client mistakes, logged at INFO
    _record(
        request,
        logging.INFO,
        f"Validation error: {exc}",
        "validation_error",
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=format_error_response(exc, request),
    )


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    _record(
        request,
        logging.ERROR,
        f"Database error: {exc}",
        "database_error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc_info=True,
        exception_type=type(exc).__name__,
    )
    message = (
        "Database integrity constraint violated"
        if isinstance(exc, IntegrityError)
        else "A database error occurred"
    )
    details = _exception_details(exc) if _debug_enabled(request) else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request, "database_error", message, details),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    _record(
        request,
        logging.ERROR,
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        "internal_error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc_info=True,
        exception_type=type(exc).__name__,
    )
    details = (
        _exception_details(exc, with_traceback=True) if _debug_enabled(request) else None
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request, "internal_error", "An internal error occurred", details),
    )


def setup_error_handlers(app: FastAPI, debug: bool = False) -> None:
    """Register the global exception handlers on ``app``.

    ``debug`` exposes exception details for database and unexpected errors.
    """
    app.state.debug = debug

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
