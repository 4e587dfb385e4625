"""Business metric helpers used by the routes after each successful operation."""

from typing import Any, Optional
from uuid import UUID

from app.core.business_metrics import MetricCategory
from app.core.otel_metrics import emit_business_metric


def _emit(
    category: MetricCategory,
    metric_name: str,
    tenant_id: UUID,
    value: int = 1,
    **metadata: Any,
) -> None:
    # Unset identifiers are left out rather than sent as "None"
    attributes = {key: str(val) for key, val in metadata.items() if val is not None and val != ""}
    emit_business_metric(
        metric_name=metric_name,
        value=value,
        category=category.value,
        tenant_id=str(tenant_id),
        **attributes,
    )


class MetricsService:
    """Emit business metrics with a consistent set of attributes per category."""

    @staticmethod
    def emit_service_metric(
        metric_name: str,
        tenant_id: UUID,
        actor_id: Optional[str] = None,
        service_id: Optional[UUID] = None,
        value: int = 1,
        **extra_metadata,
    ) -> None:
        """Emit a service metric.

        ``value`` carries row counts for bulk inserts; everything else counts one.
        """
        _emit(
            MetricCategory.SERVICE,
            metric_name,
            tenant_id,
            value,
            actor_id=actor_id,
            service_id=service_id,
            **extra_metadata,
        )

    @staticmethod
    def emit_payment_metric(
        metric_name: str,
        tenant_id: UUID,
        actor_id: Optional[str] = None,
        payment_id: Optional[UUID] = None,
        partner_id: Optional[str] = None,
        **extra_metadata,
    ) -> None:
        _emit(
            MetricCategory.PAYMENT,
            metric_name,
            tenant_id,
            actor_id=actor_id,
            payment_id=payment_id,
            partner_id=partner_id,
            **extra_metadata,
        )

    @staticmethod
    def emit_security_metric(
        metric_name: str,
        tenant_id: UUID,
        actor_id: Optional[str] = None,
        **extra_metadata,
    ) -> None:
        """Emit a security metric (denied roles, blocked workflow steps)."""
        _emit(
            MetricCategory.SECURITY,
            metric_name,
            tenant_id,
            actor_id=actor_id,
            **extra_metadata,
        )
