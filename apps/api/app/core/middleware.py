"""HTTP middleware: request ids, security headers, access logging, CORS and gzip."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.otel_metrics import (
    decrement_active_requests,
    emit_http_request,
    increment_active_requests,
)

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

# Substrings that mark a key as sensitive
SENSITIVE_FIELDS = {
    "password",
    "token",
    "jwt",
    "secret",
    "api_key",
    "authorization",
    "cookie",
}

DEFAULT_EXCLUDED_PATHS = (
    "/health",
    "/api/v1/ping",
    "/docs",
    "/openapi.json",
    "/redoc",
)

# Back office front end dev servers
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]

HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _is_sensitive(key: str) -> bool:
    key = key.lower()
    return any(field in key for field in SENSITIVE_FIELDS)


def _redact_sensitive_data(data: dict | None) -> dict | None:
    """Return a copy of ``data`` with sensitive values masked, at any depth."""
    if not data:
        return data

    def redact(value: Any) -> Any:
        if isinstance(value, dict):
            return _redact_sensitive_data(value)
        if isinstance(value, list):
            return [redact(item) for item in value]
        return value

    return {
        key: REDACTED if _is_sensitive(key) else redact(value)
        for key, value in data.items()
    }


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, honouring one supplied by the caller."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        # HTTPS is only guaranteed behind the production ingress
        if settings.app_env == "production":
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Write one JSON line per request and per response, and record HTTP metrics.

    The caller's identity and role are read from ``request.state`` after the
    route ran, where the auth dependency left them.
    """

    def __init__(self, app, exclude_paths: list[str] | None = None):
        super().__init__(app)
        self.exclude_paths = tuple(exclude_paths or DEFAULT_EXCLUDED_PATHS)

    def _log(self, level: int, request_id: str, entry: dict[str, Any]) -> None:
        entry = {"timestamp": time.time(), "level": logging.getLevelName(level), **entry}
        logger.log(level, json.dumps(entry, default=str), extra={"request_id": request_id})

    def _log_request(self, request: Request, request_id: str) -> None:
        entry: dict[str, Any] = {
            "type": "http_request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": _redact_sensitive_data(dict(request.query_params)),
            "client_host": request.client.host if request.client else None,
        }
        content_length = request.headers.get("content-length")
        if request.method in ("POST", "PUT", "PATCH") and content_length and content_length.isdigit():
            entry["request_body_size"] = int(content_length)
        self._log(logging.INFO, request_id, entry)

    def _log_response(
        self,
        request: Request,
        request_id: str,
        status_code: int,
        duration_ms: float,
        error: str | None,
    ) -> None:
        user_id = getattr(request.state, "user_id", None)
        entry: dict[str, Any] = {
            "type": "http_response",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "user_id": str(user_id) if user_id else None,
            "role": getattr(request.state, "role", None),
        }
        if error:
            entry["error"] = error
        self._log(_level_for_status(status_code), request_id, entry)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exclude_paths):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", "unknown")
        started = time.perf_counter()
        increment_active_requests()
        self._log_request(request, request_id)

        error = None
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.error(
                f"Request processing error: {error}",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise
        finally:
            decrement_active_requests()
            duration_ms = (time.perf_counter() - started) * 1000
            emit_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration_ms,
                role=getattr(request.state, "role", None),
            )
            self._log_response(request, request_id, status_code, duration_ms, error)

        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
        return response


def cors_origins() -> list[str]:
    """Origins allowed to call the API from a browser.

    ``CORS_ORIGINS`` (comma separated) wins; otherwise dev environments allow
    the local front end servers and production allows none.
    """
    if settings.cors_origins:
        return [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    if settings.app_env == "production":
        return []
    return list(DEV_CORS_ORIGINS)


def setup_cors(app: FastAPI) -> None:
    # Cookies carry the session token, so credentials must be allowed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )


def setup_gzip(app: FastAPI) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=500, compresslevel=6)
