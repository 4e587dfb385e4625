"""Helpers for validating that a service may be changed."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.auth.schemas import AuthContext
from app.common.identifiers import same_entity
from app.common.models import Service
from app.core.business_metrics import BusinessMetric
from app.core.errors import ServiceLockedError
from app.core.metrics_service import MetricsService
from app.payments.reconciliation import ServiceLock, resolve_service_lock

logger = logging.getLogger(__name__)


def visible_lock(ctx: AuthContext, lock: Optional[ServiceLock]) -> Optional[ServiceLock]:
    """Hide the payments of a lock the caller is not allowed to see.

    The lock itself is still reported; only the payment ids are withheld.
    """
    if lock is None or ctx.is_staff or same_entity(lock.partner_id, ctx.identity):
        return lock
    return replace(lock, payment_id=None, linked_payment_ids=())


def validate_service_mutation(
    db: Session,
    ctx: AuthContext,
    tenant_id: UUID,
    service: Service,
    action: str,
) -> None:
    """
    Validate that a service is not held by any payment before editing or deleting it.

    The lookup ignores the caller's scope: a service linked to a payment the
    caller cannot see is still locked. In that case the payment id is not
    disclosed.

    Raises:
        ServiceLockedError: If any payment references the service
    """
    lock = resolve_service_lock(db, tenant_id, service.id)
    if lock is None:
        return

    logger.info(
        "Blocked %s of locked service",
        action,
        extra={"service_id": str(service.id), "payment_id": lock.payment_id},
    )
    MetricsService.emit_service_metric(
        metric_name=BusinessMetric.SERVICE_MUTATION_BLOCKED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        service_id=service.id,
        action=action,
    )

    raise ServiceLockedError(
        service_id=str(service.id),
        payment_id=visible_lock(ctx, lock).payment_id,
        status=lock.status,
        message=f"Cannot {action} service: it is linked to a payment ({lock.status})",
    )
