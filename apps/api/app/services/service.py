"""Service-record service layer: CRUD for services plus lock annotation."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.schemas import AuthContext
from app.common.audit import create_audit_log
from app.common.identifiers import EntityRef, ref_in
from app.common.models import Service
from app.common.models.base import utcnow
from app.core.business_metrics import BusinessMetric
from app.core.errors import NotFoundError, ValidationAPIError
from app.core.metrics_service import MetricsService
from app.payments.reconciliation import (
    ReconciliationOptions,
    ServiceLock,
    resolve_service_lock,
    resolve_service_locks,
    scope_to_caller,
)
from app.services.scope_validation import validate_service_mutation, visible_lock
from app.status.vocabulary import DEFAULT_SERVICE_STATUS, normalize_status

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "service_date": Service.service_date,
    "client": Service.first_name,
    "partner": Service.partner_name,
    "final_value": Service.final_value,
    "created_at": Service.created_at,
}

UPDATABLE_FIELDS = (
    "partner_id",
    "partner_name",
    "service_date",
    "service_time",
    "first_name",
    "last_name",
    "client_name",
    "park",
    "location",
    "guests",
    "hopper",
    "team",
    "service_type_id",
    "service_type_name",
    "final_value",
    "override_value",
    "observations",
    "status",
)

# Nullable columns an explicit null in a patch clears
CLEARABLE_FIELDS = ("service_time", "guests", "override_value")


def _snapshot(service: Service) -> dict[str, Any]:
    return {
        "id": str(service.id),
        "partner_id": service.partner_id,
        "service_date": service.service_date.isoformat() if service.service_date else None,
        "service_type_id": service.service_type_id,
        "final_value": str(service.final_value) if service.final_value is not None else None,
        "status": service.status,
    }


class ServiceRecordService:
    """Service for managing service records."""

    @staticmethod
    def _build(ctx: AuthContext, tenant_id: UUID, fields: dict[str, Any]) -> Service:
        fields = dict(fields)
        if ctx.is_partner:
            fields["partner_id"] = ctx.identity
        partner = EntityRef.parse(fields.get("partner_id"))
        if partner.is_blank:
            raise ValidationAPIError(
                "partner_id is required",
                errors=[{"field": "partner_id", "message": "must not be blank"}],
            )
        fields["partner_id"] = partner.raw
        fields["status"] = normalize_status(fields.get("status") or DEFAULT_SERVICE_STATUS)

        return Service(
            id=uuid4(),
            tenant_id=tenant_id,
            **{key: value for key, value in fields.items() if key in UPDATABLE_FIELDS},
        )

    @staticmethod
    def get_service(
        db: Session, ctx: AuthContext, tenant_id: UUID, service_id: Any
    ) -> Service:
        """Get a service visible to the caller, or raise NotFoundError."""
        ref = EntityRef.parse(service_id)
        if ref.is_blank:
            raise ValidationAPIError(
                "service_id is required",
                errors=[{"field": "service_id", "message": "must not be blank"}],
            )
        if ref.uuid is None:
            raise NotFoundError("Service", ref.raw)

        stmt = select(Service).where(Service.id == ref.uuid, Service.tenant_id == tenant_id)
        stmt = scope_to_caller(stmt, Service.partner_id, ctx)
        service = db.execute(stmt).scalar_one_or_none()
        if not service:
            raise NotFoundError("Service", ref.key)
        return service

    @staticmethod
    def list_services(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        partner_id: Optional[str] = None,
        service_type: Optional[str] = None,
        team: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        q: Optional[str] = None,
        sort_by: str = "service_date",
        sort_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Service], int]:
        """List services with optional filters, sorting and pagination."""
        if date_from and date_to and date_from > date_to:
            raise ValidationAPIError(
                "date_from must not be after date_to",
                errors=[{"field": "date_from", "message": "after date_to"}],
            )
        sort_column = SORT_COLUMNS.get(sort_by)
        if sort_column is None:
            raise ValidationAPIError(
                f"Cannot sort by {sort_by}",
                errors=[{"field": "sort_by", "message": f"one of {', '.join(SORT_COLUMNS)}"}],
            )

        stmt = select(Service).where(Service.tenant_id == tenant_id)
        stmt = scope_to_caller(stmt, Service.partner_id, ctx)

        if partner_id:
            stmt = stmt.where(ref_in(Service.partner_id, [partner_id]))
        if service_type and service_type.upper() != "ALL":
            stmt = stmt.where(Service.service_type_id == service_type)
        if team:
            stmt = stmt.where(Service.team == team)
        if status:
            stmt = stmt.where(Service.status == normalize_status(status))
        if date_from:
            stmt = stmt.where(Service.service_date >= date_from)
        if date_to:
            stmt = stmt.where(Service.service_date <= date_to)
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(
                    Service.first_name.ilike(pattern),
                    Service.last_name.ilike(pattern),
                    Service.client_name.ilike(pattern),
                    Service.partner_name.ilike(pattern),
                )
            )

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = db.execute(count_stmt).scalar() or 0

        order = sort_column.asc() if sort_dir == "asc" else sort_column.desc()
        stmt = stmt.order_by(order, Service.id).limit(limit).offset(offset)

        return list(db.execute(stmt).scalars().all()), total

    @staticmethod
    def annotate_locks(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        services: list[Service],
        options: Optional[ReconciliationOptions] = None,
    ) -> tuple[dict[str, Optional[ServiceLock]], bool]:
        """
        Resolve locks for a page of services.

        Returns the locks keyed by service id and whether the lookup
        succeeded. Every payment counts, with ids hidden from partners who
        do not own the payment. A store failure here degrades the listing instead of
        failing it.
        """
        if not services:
            return {}, True
        try:
            locks = resolve_service_locks(
                db,
                tenant_id,
                [str(service.id) for service in services],
                options=options,
            )
        except SQLAlchemyError:
            logger.warning(
                "Lock status lookup failed; returning services without lock status",
                extra={"tenant_id": str(tenant_id), "count": len(services)},
                exc_info=True,
            )
            MetricsService.emit_service_metric(
                metric_name=BusinessMetric.LOCK_ANNOTATION_DEGRADED,
                tenant_id=tenant_id,
                actor_id=ctx.identity,
            )
            return {}, False
        return {key: visible_lock(ctx, lock) for key, lock in locks.items()}, True

    @staticmethod
    def get_service_lock(
        db: Session, ctx: AuthContext, tenant_id: UUID, service_id: Any
    ) -> tuple[Service, Optional[ServiceLock]]:
        service = ServiceRecordService.get_service(db, ctx, tenant_id, service_id)
        # Unscoped, like the mutation guard, so a lock never reads as free
        lock = resolve_service_lock(db, tenant_id, service.id)
        return service, visible_lock(ctx, lock)

    @staticmethod
    def create_service(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        **fields,
    ) -> Service:
        """Create a service."""
        service = ServiceRecordService._build(ctx, tenant_id, fields)
        db.add(service)

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "create",
            "services",
            service.id,
            None,
            _snapshot(service),
        )

        db.commit()
        db.refresh(service)
        return service

    @staticmethod
    def bulk_create_services(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        items: list[dict[str, Any]],
    ) -> list[Service]:
        """Create many services in one transaction."""
        if not items:
            raise ValidationAPIError(
                "Empty payload",
                errors=[{"field": "items", "message": "at least one service required"}],
            )

        services = [ServiceRecordService._build(ctx, tenant_id, item) for item in items]
        db.add_all(services)

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "bulk_create",
            "services",
            None,
            None,
            {"count": len(services), "ids": [str(s.id) for s in services]},
        )

        db.commit()
        for service in services:
            db.refresh(service)
        return services

    @staticmethod
    def update_service(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        service_id: Any,
        **updates,
    ) -> Service:
        """Update a service that no payment holds."""
        service = ServiceRecordService.get_service(db, ctx, tenant_id, service_id)
        validate_service_mutation(db, ctx, tenant_id, service, "update")

        if ctx.is_partner:
            updates.pop("partner_id", None)
        if updates.get("status") is not None:
            updates["status"] = normalize_status(updates["status"])

        before_json = _snapshot(service)

        for key, value in updates.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if value is None and key not in CLEARABLE_FIELDS:
                continue
            setattr(service, key, value)
        service.updated_at = utcnow()

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "update",
            "services",
            service.id,
            before_json,
            _snapshot(service),
        )

        db.commit()
        db.refresh(service)
        return service

    @staticmethod
    def delete_service(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        service_id: Any,
    ) -> None:
        """Delete a service that no payment holds."""
        service = ServiceRecordService.get_service(db, ctx, tenant_id, service_id)
        validate_service_mutation(db, ctx, tenant_id, service, "delete")

        before_json = _snapshot(service)
        entity_id = service.id
        db.delete(service)

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "delete",
            "services",
            entity_id,
            before_json,
            None,
        )

        db.commit()
