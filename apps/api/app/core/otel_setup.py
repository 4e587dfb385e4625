"""OpenTelemetry providers for the back office API.

Tracer and meter providers are always installed when metrics are enabled.
OTLP exporters and log forwarding are only attached when
``OTEL_EXPORTER_OTLP_ENDPOINT`` is set; otherwise data stays in process.
"""

from __future__ import annotations

import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import settings

logger = logging.getLogger(__name__)

METRIC_EXPORT_INTERVAL_MS = 60_000

_initialized = False


def _resource() -> Resource:
    return Resource.create(
        {
            "service.name": settings.otel_service_name or settings.tenant_name,
            "service.namespace": settings.metrics_namespace
            or settings.tenant_name.replace(" ", "/"),
            "deployment.environment": settings.app_env,
        }
    )


def _meter_provider(resource: Resource, endpoint: str) -> MeterProvider:
    if not endpoint:
        return MeterProvider(resource=resource)
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics"),
        export_interval_millis=METRIC_EXPORT_INTERVAL_MS,
    )
    return MeterProvider(resource=resource, metric_readers=[reader])


def _tracer_provider(resource: Resource, endpoint: str) -> TracerProvider:
    provider = TracerProvider(resource=resource)
    if endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces"))
        )
    return provider


def setup_opentelemetry() -> None:
    """Install the global providers once per process.

    A failure leaves the API running with no-op instruments.
    """
    global _initialized

    if _initialized:
        return
    if not settings.enable_metrics:
        logger.info("OpenTelemetry disabled via ENABLE_METRICS")
        return

    endpoint = settings.otel_exporter_otlp_endpoint.rstrip("/")
    try:
        resource = _resource()
        trace.set_tracer_provider(_tracer_provider(resource, endpoint))
        metrics.set_meter_provider(_meter_provider(resource, endpoint))

        if endpoint:
            # Keep the formatters installed by setup_logging()
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger.info("OpenTelemetry exporting to %s", endpoint)
        else:
            logger.info("OpenTelemetry running without exporters (no endpoint configured)")
    except Exception as exc:
        logger.warning("Failed to initialize OpenTelemetry SDK: %s", exc, exc_info=True)
        return

    _initialized = True
