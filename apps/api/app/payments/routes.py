"""Payments API routes."""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth.dependencies import get_auth_context, require_roles
from app.auth.schemas import AuthContext
from app.common.db import get_db
from app.common.models import Payment
from app.common.pagination import resolve_page
from app.core.business_metrics import BusinessMetric
from app.core.config import settings
from app.core.errors import ValidationAPIError
from app.core.metrics_service import MetricsService
from app.payments import schemas
from app.payments.reconciliation import (
    ReconciliationOptions,
    list_eligible_services,
    resolve_service_locks,
)
from app.payments.service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def _payment_response(payment: Payment) -> schemas.PaymentResponse:
    return schemas.PaymentResponse(
        id=str(payment.id),
        partner_id=payment.partner_id,
        partner_name=payment.partner_name,
        period_from=payment.period_from,
        period_to=payment.period_to,
        week_key=payment.week_key,
        week_start=payment.week_start,
        week_end=payment.week_end,
        total=payment.total,
        status=payment.status,
        notes=payment.notes,
        notes_log=list(payment.notes_log or []),
        service_ids=payment.service_ids,
        created_at=payment.created_at.isoformat(),
        updated_at=payment.updated_at.isoformat(),
    )


@router.get("", response_model=schemas.PaymentListResponse)
async def list_payments(
    partner: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: Optional[int] = Query(None, ge=1),
    page_size: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """List payments visible to the caller, newest first."""
    tenant_id = UUID(settings.tenant_id)
    paging = resolve_page(page, page_size, limit, offset)

    items, total = PaymentService.list_payments(
        db=db,
        ctx=ctx,
        tenant_id=tenant_id,
        partner_id=partner,
        status=status_filter,
        limit=paging.page_size,
        offset=paging.offset,
    )

    return schemas.PaymentListResponse(
        items=[_payment_response(p) for p in items],
        total=total,
        page=paging.page,
        page_size=paging.page_size,
        total_pages=paging.total_pages(total),
    )


@router.post("", response_model=schemas.PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: schemas.PaymentCreateRequest,
    ctx: AuthContext = Depends(require_roles("finance")),
    db: Session = Depends(get_db),
):
    """Create a payment batch for a partner."""
    tenant_id = UUID(settings.tenant_id)

    payment = PaymentService.create_payment(
        db=db,
        ctx=ctx,
        tenant_id=tenant_id,
        **request.model_dump(),
    )

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.PAYMENT_CREATED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        payment_id=payment.id,
        partner_id=payment.partner_id,
    )

    return _payment_response(payment)


@router.get("/eligible", response_model=schemas.EligibleServicesResponse)
async def list_eligible(
    partner: Optional[str] = Query(None),
    service_type: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    any_date: bool = Query(False),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Services of a partner not yet linked to any payment."""
    tenant_id = UUID(settings.tenant_id)

    if not partner and ctx.is_partner:
        partner = ctx.identity

    services = list_eligible_services(
        db,
        tenant_id,
        partner,
        service_type=service_type,
        date_from=date_from,
        date_to=date_to,
        any_date=any_date,
        ctx=ctx,
        options=ReconciliationOptions.from_settings(),
    )

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.ELIGIBILITY_QUERIED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        partner_id=partner,
    )

    return schemas.EligibleServicesResponse(
        items=[
            schemas.EligibleServiceResponse(
                id=str(s.id),
                service_date=s.service_date,
                first_name=s.first_name,
                last_name=s.last_name,
                display_name=s.display_name,
                service_type_id=s.service_type_id,
                final_value=s.final_value,
                observations=s.observations,
            )
            for s in services
        ],
        total=len(services),
    )


@router.get("/service-status", response_model=schemas.ServiceStatusResponse)
async def service_status(
    ids: str = Query(..., description="Comma-separated service ids"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Which payment, if any, holds each service."""
    tenant_id = UUID(settings.tenant_id)
    requested = [value.strip() for value in ids.split(",") if value.strip()]
    if not requested:
        raise ValidationAPIError(
            "ids is required",
            errors=[{"field": "ids", "message": "no service ids given"}],
        )

    locks = resolve_service_locks(
        db,
        tenant_id,
        requested,
        ctx=ctx,
        options=ReconciliationOptions.from_settings(),
    )

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.LOCK_STATUS_QUERIED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        requested=len(locks),
    )

    return schemas.ServiceStatusResponse(
        items=[
            schemas.ServiceStatusEntry(
                service_id=service_id,
                locked=lock is not None,
                payment_id=lock.payment_id if lock else None,
                status=lock.status if lock else None,
                linked_payment_ids=list(lock.linked_payment_ids) if lock else [],
            )
            for service_id, lock in locks.items()
        ]
    )


@router.get("/{payment_id}", response_model=schemas.PaymentResponse)
async def get_payment(
    payment_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Get a payment by ID."""
    tenant_id = UUID(settings.tenant_id)
    payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)
    return _payment_response(payment)


@router.patch("/{payment_id}", response_model=schemas.PaymentResponse)
async def update_payment(
    payment_id: str,
    request: schemas.PaymentUpdateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Update a payment (partners: approve or decline a shared payment)."""
    tenant_id = UUID(settings.tenant_id)

    updates = request.model_dump(exclude_unset=True)
    force = updates.pop("force", False)

    payment = PaymentService.update_payment(
        db=db,
        ctx=ctx,
        tenant_id=tenant_id,
        payment_id=payment_id,
        patch=updates,
        force=force,
        options=ReconciliationOptions.from_settings(),
    )

    metric_name = BusinessMetric.PAYMENT_UPDATED
    if ctx.is_partner:
        metric_name = (
            BusinessMetric.PAYMENT_APPROVED_BY_PARTNER
            if payment.status == "APPROVED"
            else BusinessMetric.PAYMENT_DECLINED_BY_PARTNER
        )
    MetricsService.emit_payment_metric(
        metric_name=metric_name,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        payment_id=payment.id,
        partner_id=payment.partner_id,
    )

    return _payment_response(payment)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(
    payment_id: str,
    ctx: AuthContext = Depends(require_roles("finance")),
    db: Session = Depends(get_db),
):
    """Delete a payment; its services become eligible again."""
    tenant_id = UUID(settings.tenant_id)
    PaymentService.delete_payment(db, ctx, tenant_id, payment_id)

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.PAYMENT_DELETED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        payment_id=payment_id,
    )


@router.post("/{payment_id}/items", response_model=schemas.PaymentItemResponse)
async def add_payment_item(
    payment_id: str,
    request: schemas.PaymentItemRequest,
    ctx: AuthContext = Depends(require_roles("finance")),
    db: Session = Depends(get_db),
):
    """Link a service to the payment and recompute its total."""
    tenant_id = UUID(settings.tenant_id)

    payment, changed = PaymentService.add_service(
        db=db,
        ctx=ctx,
        tenant_id=tenant_id,
        payment_id=payment_id,
        service_id=request.service_id,
        force=request.force,
        options=ReconciliationOptions.from_settings(),
    )

    if changed:
        MetricsService.emit_payment_metric(
            metric_name=BusinessMetric.PAYMENT_ITEM_ADDED,
            tenant_id=tenant_id,
            actor_id=ctx.identity,
            payment_id=payment.id,
            forced=str(request.force).lower(),
        )

    return schemas.PaymentItemResponse(payment=_payment_response(payment), changed=changed)


@router.delete("/{payment_id}/items/{service_id}", response_model=schemas.PaymentItemResponse)
async def remove_payment_item(
    payment_id: str,
    service_id: str,
    ctx: AuthContext = Depends(require_roles("finance")),
    db: Session = Depends(get_db),
):
    """Unlink a service from the payment."""
    tenant_id = UUID(settings.tenant_id)

    payment, changed = PaymentService.remove_service(
        db, ctx, tenant_id, payment_id, service_id
    )

    if changed:
        MetricsService.emit_payment_metric(
            metric_name=BusinessMetric.PAYMENT_ITEM_REMOVED,
            tenant_id=tenant_id,
            actor_id=ctx.identity,
            payment_id=payment.id,
        )

    return schemas.PaymentItemResponse(payment=_payment_response(payment), changed=changed)


@router.post("/{payment_id}/recalc", response_model=schemas.PaymentResponse)
async def recalc_payment(
    payment_id: str,
    ctx: AuthContext = Depends(require_roles("finance")),
    db: Session = Depends(get_db),
):
    """Recompute the payment total from its linked services."""
    tenant_id = UUID(settings.tenant_id)
    payment = PaymentService.recompute(db, ctx, tenant_id, payment_id)

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.PAYMENT_TOTAL_RECOMPUTED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        payment_id=payment.id,
    )

    return _payment_response(payment)


@router.post("/{payment_id}/notes", response_model=schemas.PaymentResponse)
async def add_payment_note(
    payment_id: str,
    request: schemas.PaymentNoteRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Append a note to the payment."""
    tenant_id = UUID(settings.tenant_id)
    payment = PaymentService.add_note(db, ctx, tenant_id, payment_id, request.text)

    MetricsService.emit_payment_metric(
        metric_name=BusinessMetric.PAYMENT_NOTE_ADDED,
        tenant_id=tenant_id,
        actor_id=ctx.identity,
        payment_id=payment.id,
    )

    return _payment_response(payment)
