"""OpenTelemetry metric instruments and the emit helpers built on them.

Instruments are created on first use against the global meter provider
installed by ``app.core.otel_setup``. Without a provider the API hands out
no-op instruments, so callers never check whether metrics are wired up.
Emission is best effort: a failure is logged and never reaches the request.
"""

from __future__ import annotations

import functools
import logging
import re
from typing import Any, Callable

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter, UpDownCounter

from app.core.config import settings

logger = logging.getLogger(__name__)

# key -> (kind, name, description, unit)
_INSTRUMENT_SPECS: dict[str, tuple[str, str, str, str]] = {
    "http_requests": ("counter", "http_requests_total", "Total number of HTTP requests", "1"),
    "http_duration": (
        "histogram",
        "http_request_duration_ms",
        "HTTP request duration in milliseconds",
        "ms",
    ),
    "http_active": ("up_down_counter", "http_active_requests", "Number of in-flight HTTP requests", "1"),
    "errors": ("counter", "errors_total", "Total number of errors returned to callers", "1"),
    "business": ("counter", "business_metrics_total", "Business events (payments, services)", "1"),
}

_meter: Meter | None = None
_instruments: dict[str, Any] = {}

_UUID_SEGMENT = re.compile(
    r"/[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}",
    flags=re.IGNORECASE,
)
_NUMERIC_SEGMENT = re.compile(r"/\d+")


def get_meter() -> Meter:
    global _meter
    if _meter is None:
        _meter = metrics.get_meter_provider().get_meter(
            name=settings.metrics_namespace or settings.tenant_name.replace(" ", "/"),
            version="1.0.0",
        )
    return _meter


def _instrument(key: str) -> Any:
    if key not in _instruments:
        kind, name, description, unit = _INSTRUMENT_SPECS[key]
        meter = get_meter()
        factory = {
            "counter": meter.create_counter,
            "histogram": meter.create_histogram,
            "up_down_counter": meter.create_up_down_counter,
        }[kind]
        _instruments[key] = factory(name=name, description=description, unit=unit)
    return _instruments[key]


def _get_http_request_counter() -> Counter:
    return _instrument("http_requests")


def _get_http_request_duration() -> Histogram:
    return _instrument("http_duration")


def _get_active_requests_gauge() -> UpDownCounter:
    return _instrument("http_active")


def _get_error_counter() -> Counter:
    return _instrument("errors")


def _get_business_metric_counter() -> Counter:
    return _instrument("business")


def _best_effort(func: Callable[..., None]) -> Callable[..., None]:
    """Skip when metrics are disabled and log instead of raising."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        if not settings.enable_metrics:
            return
        try:
            func(*args, **kwargs)
        except Exception:
            logger.warning("Failed to emit metric via %s", func.__name__, exc_info=True)

    return wrapper


def _normalize_path(path: str) -> str:
    """Replace UUID (hyphenated or compact) and numeric path segments with ``{id}``."""
    path = _UUID_SEGMENT.sub("/{id}", path)
    return _NUMERIC_SEGMENT.sub("/{id}", path)


def _attributes(base: dict[str, str], metadata: dict[str, Any]) -> dict[str, str]:
    attributes = dict(base)
    attributes.update({key: str(value) for key, value in metadata.items() if value is not None})
    return attributes


def _severity(status_code: int) -> str:
    if status_code >= 500:
        return "server_error"
    if status_code >= 400:
        return "client_error"
    return "unknown"


@_best_effort
def emit_http_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    **metadata: Any,
) -> None:
    """Count a request and record its duration.

    Only the path is recorded, never the query string: the ids passed to
    ``/payments/service-status`` would explode cardinality.
    """
    attributes = _attributes(
        {
            "http.method": method,
            "http.route": _normalize_path(path),
            "http.status_code": str(status_code),
        },
        metadata,
    )
    _get_http_request_counter().add(1, attributes=attributes)
    _get_http_request_duration().record(duration_ms, attributes=attributes)


@_best_effort
def increment_active_requests(**metadata: Any) -> None:
    _get_active_requests_gauge().add(1, attributes=_attributes({}, metadata))


@_best_effort
def decrement_active_requests(**metadata: Any) -> None:
    _get_active_requests_gauge().add(-1, attributes=_attributes({}, metadata))


@_best_effort
def emit_error(
    error_code: str,
    status_code: int,
    path: str,
    method: str,
    **metadata: Any,
) -> None:
    """Count an error response, tagged with its code and severity."""
    attributes = _attributes(
        {
            "error.code": error_code,
            "error.severity": _severity(status_code),
            "http.status_code": str(status_code),
            "http.method": method,
            "http.route": _normalize_path(path),
        },
        metadata,
    )
    _get_error_counter().add(1, attributes=attributes)


@_best_effort
def emit_business_metric(
    metric_name: str,
    value: float,
    unit: str = "Count",
    category: str | None = None,
    **metadata: Any,
) -> None:
    """Count a business event.

    Args:
        metric_name: Name from ``BusinessMetric``
        value: Increment; counters only accept integers
        unit: Unit of measurement
        category: Grouping such as "payment" or "service"
        **metadata: Extra attributes; None values are dropped
    """
    base = {"metric.name": metric_name, "metric.unit": unit}
    if category:
        base["metric.category"] = category
    _get_business_metric_counter().add(int(value), attributes=_attributes(base, metadata))
