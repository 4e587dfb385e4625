"""Services API routes."""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth.dependencies import get_auth_context
from app.auth.schemas import AuthContext
from app.common.db import get_db
from app.common.models import Service
from app.common.pagination import resolve_page
from app.core.business_metrics import BusinessMetric
from app.core.config import settings
from app.core.metrics_service import MetricsService
from app.payments.reconciliation import ReconciliationOptions, ServiceLock
from app.services import schemas
from app.services.service import ServiceRecordService

router = APIRouter(prefix="/services", tags=["services"])


def _service_response(
    service: Service,
    lock: Optional[ServiceLock] = None,
    lock_known: bool = False,
) -> schemas.ServiceResponse:
    return schemas.ServiceResponse(
        id=str(service.id),
        partner_id=service.partner_id,
        partner_name=service.partner_name,
        service_date=service.service_date,
        service_time=service.service_time,
        first_name=service.first_name,
        last_name=service.last_name,
        client_name=service.client_name,
        display_name=service.display_name,
        park=service.park,
        location=service.location,
        guests=service.guests,
        hopper=service.hopper,
        team=service.team,
        service_type_id=service.service_type_id,
        service_type_name=service.service_type_name,
        final_value=service.final_value,
        override_value=service.override_value,
        observations=service.observations,
        status=service.status,
        created_at=service.created_at.isoformat(),
        updated_at=service.updated_at.isoformat(),
        locked=(lock is not None) if lock_known else None,
        payment_id=lock.payment_id if lock else None,
        payment_status=lock.status if lock else None,
    )


@router.get("", response_model=schemas.ServiceListResponse)
async def list_services(
    partner: Optional[str] = Query(None),
    service_type: Optional[str] = Query(None),
    team: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    q: Optional[str] = Query(None),
    sort_by: str = Query("service_date"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$"),
    page: Optional[int] = Query(None, ge=1),
    page_size: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """List services, each annotated with the payment holding it."""
    tenant_id = UUID(settings.tenant_id)
    paging = resolve_page(page, page_size, limit, offset)

    items, total = ServiceRecordService.list_services(
        db=db,
        ctx=ctx,
        tenant_id=tenant_id,
        partner_id=partner,
        service_type=service_type,
        team=team,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        q=q,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=paging.page_size,
        offset=paging.offset,
    )
    locks, available = ServiceRecordService.annotate_locks(
        db, ctx, tenant_id, items, options=ReconciliationOptions.from_settings()
    )

    return schemas.ServiceListResponse(
        items=[
            _service_response(s, locks.get(str(s.id)), lock_known=available)
            for s in items
        ],
        total=total,
        page=paging.page,
        page_size=paging.page_size,
        total_pages=paging.total_pages(total),
        lock_status_available=available,
    )


@router.post("", response_model=schemas.ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_service(
    request: schemas.ServiceCreateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Record a new service."""
    tenant_id = UUID(settings.tenant_id)

    service = ServiceRecordService.create_service(
        db, ctx, tenant_id, **request.model_dump()
    )

    MetricsService.emit_service_metric(
        metric_name=BusinessMetric.SERVICE_CREATED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        service_id=service.id,
    )

    return _service_response(service, lock_known=True)


@router.post(
    "/bulk",
    response_model=schemas.ServiceBulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_services(
    request: schemas.ServiceBulkCreateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Record many services at once."""
    tenant_id = UUID(settings.tenant_id)

    services = ServiceRecordService.bulk_create_services(
        db, ctx, tenant_id, [item.model_dump() for item in request.items]
    )

    MetricsService.emit_service_metric(
        metric_name=BusinessMetric.SERVICE_BULK_CREATED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        value=len(services),
    )

    return schemas.ServiceBulkCreateResponse(
        created=len(services),
        items=[_service_response(s, lock_known=True) for s in services],
    )


@router.get("/{service_id}", response_model=schemas.ServiceResponse)
async def get_service(
    service_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Get a service by ID."""
    tenant_id = UUID(settings.tenant_id)
    service = ServiceRecordService.get_service(db, ctx, tenant_id, service_id)
    locks, available = ServiceRecordService.annotate_locks(db, ctx, tenant_id, [service])
    return _service_response(service, locks.get(str(service.id)), lock_known=available)


@router.get("/{service_id}/lock", response_model=schemas.ServiceLockResponse)
async def get_service_lock(
    service_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Which payment, if any, holds the service."""
    tenant_id = UUID(settings.tenant_id)
    service, lock = ServiceRecordService.get_service_lock(db, ctx, tenant_id, service_id)
    return schemas.ServiceLockResponse(
        service_id=str(service.id),
        locked=lock is not None,
        payment_id=lock.payment_id if lock else None,
        status=lock.status if lock else None,
    )


@router.patch("/{service_id}", response_model=schemas.ServiceResponse)
async def update_service(
    service_id: str,
    request: schemas.ServiceUpdateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Update a service that is not linked to any payment."""
    tenant_id = UUID(settings.tenant_id)

    updates = request.model_dump(exclude_unset=True)
    service = ServiceRecordService.update_service(
        db, ctx, tenant_id, service_id, **updates
    )

    MetricsService.emit_service_metric(
        metric_name=BusinessMetric.SERVICE_UPDATED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        service_id=service.id,
    )

    return _service_response(service, lock_known=True)


@router.delete("/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_service(
    service_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Delete a service that is not linked to any payment."""
    tenant_id = UUID(settings.tenant_id)
    ServiceRecordService.delete_service(db, ctx, tenant_id, service_id)

    MetricsService.emit_service_metric(
        metric_name=BusinessMetric.SERVICE_DELETED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        service_id=service_id,
    )
