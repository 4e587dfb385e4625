"""Reconciliation between services and the payments that settle them.

Three questions are answered here, always against the store and never from
request state:

* which of a partner's services are still unpaid (eligibility),
* which payment currently holds a service (lock resolution),
* what a payment is worth (total recomputation).

Service references on payments may be stored in either identifier form (see
``app.common.identifiers``); everything in this module compares normalized
keys so callers never see the difference.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth.schemas import AuthContext
from app.common.identifiers import EntityRef, parse_uuid, ref_in
from app.common.models import Payment, PaymentServiceLink, Service
from app.core.config import settings
from app.core.errors import ValidationAPIError

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ALL_SERVICE_TYPES = "ALL"

STATUS_PAID = "paid"
STATUS_PENDING = "pending"
STATUS_DECLINED = "declined"

STATUS_RANK = {
    STATUS_PAID: 3,
    STATUS_PENDING: 2,
    STATUS_DECLINED: 1,
}


@dataclass(frozen=True)
class ReconciliationOptions:
    """Behaviour switches, resolved once at the call boundary."""

    enforce_single_payment_link: bool = True
    default_service_type: str = ALL_SERVICE_TYPES
    max_bulk_ids: int = 500

    @classmethod
    def from_settings(cls, source=None) -> "ReconciliationOptions":
        source = source or settings
        return cls(
            enforce_single_payment_link=source.enforce_single_payment_link,
            default_service_type=source.eligible_default_service_type,
            max_bulk_ids=source.max_bulk_status_ids,
        )


def display_status(raw_status: Optional[str]) -> str:
    """Collapse a payment status onto paid/pending/declined."""
    value = (raw_status or "").upper()
    if value == "PAID":
        return STATUS_PAID
    if value == "DECLINED":
        return STATUS_DECLINED
    return STATUS_PENDING


@dataclass(frozen=True)
class ServiceLock:
    service_id: str
    payment_id: Optional[str]
    status: str
    raw_status: str
    partner_id: str
    updated_at: Optional[datetime] = None
    linked_payment_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "payment_id": self.payment_id,
            "status": self.status,
            "raw_status": self.raw_status,
            "linked_payment_ids": list(self.linked_payment_ids),
        }


def _require_ref(value: Any, name: str) -> EntityRef:
    ref = EntityRef.parse(value)
    if ref.is_blank:
        raise ValidationAPIError(
            f"{name} is required",
            errors=[{"field": name, "message": "must not be blank"}],
        )
    return ref


def scope_to_caller(stmt, column, ctx: Optional[AuthContext]):
    """Restrict a statement to the caller's own rows when the caller is a partner."""
    if ctx is not None and ctx.is_partner:
        stmt = stmt.where(ref_in(column, [ctx.identity]))
    return stmt


def _link_rows(
    db: Session,
    tenant_id: UUID,
    refs: Iterable[EntityRef],
    ctx: Optional[AuthContext],
):
    stmt = (
        select(
            PaymentServiceLink.service_ref,
            Payment.id.label("payment_id"),
            Payment.status,
            Payment.partner_id,
            Payment.updated_at,
        )
        .join(Payment, Payment.id == PaymentServiceLink.payment_id)
        .where(
            Payment.tenant_id == tenant_id,
            ref_in(PaymentServiceLink.service_ref, refs),
        )
    )
    stmt = scope_to_caller(stmt, Payment.partner_id, ctx)
    return db.execute(stmt).all()


def _build_lock(ref: EntityRef, rows, ranked: bool) -> Optional[ServiceLock]:
    # The same payment can reference a service under both forms
    payments = {}
    for row in rows:
        payments.setdefault(row.payment_id, row)
    if not payments:
        return None

    def sort_key(row):
        recency = (row.updated_at is not None, row.updated_at or datetime.min)
        if ranked:
            return (STATUS_RANK[display_status(row.status)], *recency, str(row.payment_id))
        return (*recency, str(row.payment_id))

    winner = max(payments.values(), key=sort_key)
    return ServiceLock(
        service_id=ref.key,
        payment_id=str(winner.payment_id),
        status=display_status(winner.status),
        raw_status=winner.status,
        partner_id=winner.partner_id,
        updated_at=winner.updated_at,
        linked_payment_ids=tuple(sorted(str(pid) for pid in payments)),
    )


def resolve_service_lock(
    db: Session,
    tenant_id: UUID,
    service_id: Any,
    ctx: Optional[AuthContext] = None,
) -> Optional[ServiceLock]:
    """Return the payment holding a service, or None when it is free.

    When several payments link the service, the most recently updated wins.
    """
    ref = _require_ref(service_id, "service_id")
    return _build_lock(ref, _link_rows(db, tenant_id, [ref], ctx), ranked=False)


def resolve_service_locks(
    db: Session,
    tenant_id: UUID,
    service_ids: Iterable[Any],
    ctx: Optional[AuthContext] = None,
    options: Optional[ReconciliationOptions] = None,
) -> dict[str, Optional[ServiceLock]]:
    """Resolve locks for many services with a single query.

    The result has one entry per requested id (keyed as requested, blanks
    dropped). Among competing payments the best display status wins
    (paid > pending > declined), then the latest update.
    """
    options = options or ReconciliationOptions.from_settings()
    refs = [EntityRef.parse(value) for value in service_ids]
    refs = [ref for ref in refs if not ref.is_blank]

    distinct_keys = {ref.key for ref in refs}
    if len(distinct_keys) > options.max_bulk_ids:
        raise ValidationAPIError(
            f"At most {options.max_bulk_ids} service ids can be resolved at once",
            errors=[{"field": "ids", "message": f"{len(distinct_keys)} ids requested"}],
        )
    if not refs:
        return {}

    grouped = defaultdict(list)
    for row in _link_rows(db, tenant_id, refs, ctx):
        grouped[EntityRef.parse(row.service_ref).key].append(row)

    return {ref.raw: _build_lock(ref, grouped.get(ref.key, []), ranked=True) for ref in refs}


def used_service_keys(db: Session, tenant_id: UUID, partner_id: Any) -> set[str]:
    """Keys of every service linked to any payment of the partner, whatever its status."""
    stmt = (
        select(PaymentServiceLink.service_ref)
        .join(Payment, Payment.id == PaymentServiceLink.payment_id)
        .where(
            Payment.tenant_id == tenant_id,
            ref_in(Payment.partner_id, [partner_id]),
        )
    )
    return {EntityRef.parse(ref).key for ref in db.execute(stmt).scalars()}


def list_eligible_services(
    db: Session,
    tenant_id: UUID,
    partner_id: Any,
    service_type: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    any_date: bool = False,
    ctx: Optional[AuthContext] = None,
    options: Optional[ReconciliationOptions] = None,
) -> list[Service]:
    """Services of a partner that no payment references yet, newest first."""
    options = options or ReconciliationOptions.from_settings()
    partner = _require_ref(partner_id, "partner_id")

    if date_from is None and date_to is None and not any_date:
        raise ValidationAPIError(
            "A date window is required; pass any_date to search all dates",
            errors=[{"field": "date_from", "message": "date_from/date_to or any_date required"}],
        )
    if date_from and date_to and date_from > date_to:
        raise ValidationAPIError(
            "date_from must not be after date_to",
            errors=[{"field": "date_from", "message": "after date_to"}],
        )

    used = used_service_keys(db, tenant_id, partner.raw)

    stmt = select(Service).where(
        Service.tenant_id == tenant_id,
        ref_in(Service.partner_id, [partner.raw]),
    )
    stmt = scope_to_caller(stmt, Service.partner_id, ctx)

    type_filter = (service_type or options.default_service_type or "").strip()
    if type_filter and type_filter.upper() != ALL_SERVICE_TYPES:
        stmt = stmt.where(Service.service_type_id == type_filter)
    if date_from:
        stmt = stmt.where(Service.service_date >= date_from)
    if date_to:
        stmt = stmt.where(Service.service_date <= date_to)

    stmt = stmt.order_by(Service.service_date.desc(), Service.created_at.desc())
    services = db.execute(stmt).scalars().all()
    return [service for service in services if str(service.id) not in used]


def recompute_total(db: Session, payment: Payment) -> Decimal:
    """Set ``payment.total`` to the sum of its linked services' final values.

    Each service counts once however many forms reference it; references to
    missing services contribute nothing. The caller owns the transaction.
    """
    service_ids = {parse_uuid(ref) for ref in payment.service_ids} - {None}
    total = Decimal("0")
    if service_ids:
        value = db.execute(
            select(func.coalesce(func.sum(Service.final_value), 0)).where(
                Service.tenant_id == payment.tenant_id,
                Service.id.in_(service_ids),
            )
        ).scalar()
        total = Decimal(str(value or 0))

    payment.total = total.quantize(TWO_PLACES)
    logger.debug(
        "Recomputed payment total",
        extra={"payment_id": str(payment.id), "total": str(payment.total)},
    )
    return payment.total
