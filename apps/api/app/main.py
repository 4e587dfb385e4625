"""Back office API application: logging, telemetry, middleware and routers."""

from __future__ import annotations

import json
import logging
import sys
import time

from fastapi import FastAPI

from app.auth.routes import router as auth_router
from app.core.config import settings
from app.core.errors import setup_error_handlers
from app.core.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    setup_cors,
    setup_gzip,
)
from app.core.otel_setup import setup_opentelemetry
from app.payments.routes import router as payments_router
from app.services.routes import router as services_router
from app.status.routes import router as status_router

API_PREFIX = "/api/v1"
API_VERSION = "0.1.0"

# Record attributes passed through ``extra=`` that are worth indexing
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "error_code",
    "status_code",
    "service_id",
    "payment_id",
    "partner_id",
)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the request context lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, "-"):
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RequestIDFilter(logging.Filter):
    """Let the text format reference ``request_id`` on records logged outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


def setup_logging() -> None:
    if settings.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIDFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.handlers = [handler]

    for noisy in ("uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def create_app() -> FastAPI:
    """Build the application.

    Middleware runs in reverse order of registration: request ids are
    assigned first so every later layer and every error envelope can
    reference them.
    """
    application = FastAPI(
        title=f"{settings.tenant_name} Back Office API",
        version=API_VERSION,
    )
    setup_error_handlers(application, debug=(settings.app_env != "production"))

    if settings.enable_gzip:
        setup_gzip(application)
    setup_cors(application)
    if settings.enable_request_logging:
        application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(RequestIDMiddleware)

    for router in (auth_router, services_router, payments_router, status_router):
        application.include_router(router, prefix=API_PREFIX)

    @application.get("/health")
    async def health() -> dict:
        return {"status": "ok", "env": settings.app_env, "version": API_VERSION}

    @application.get(f"{API_PREFIX}/ping")
    async def ping() -> dict:
        return {"message": "pong"}

    return application


setup_logging()
# Providers must exist before any meter or tracer is requested
setup_opentelemetry()

app = create_app()
