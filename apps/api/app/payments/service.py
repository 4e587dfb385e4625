"""Payment service layer: batches, their service links, totals and notes."""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth.schemas import AuthContext
from app.common.audit import create_audit_log
from app.common.identifiers import EntityRef, ref_in, same_entity
from app.common.models import Payment, PaymentServiceLink, Service, PAYMENT_STATUSES
from app.common.models.base import utcnow
from app.core.errors import NotFoundError, ServiceLockedError, ValidationAPIError
from app.payments.reconciliation import (
    ReconciliationOptions,
    recompute_total,
    resolve_service_locks,
    scope_to_caller,
)
from app.payments.scope_validation import require_staff, validate_partner_update

UPDATABLE_FIELDS = (
    "partner_id",
    "partner_name",
    "period_from",
    "period_to",
    "week_key",
    "week_start",
    "week_end",
    "status",
    "notes",
)

# Nullable columns an explicit null in a patch clears
CLEARABLE_FIELDS = ("period_from", "period_to", "week_key", "week_start", "week_end")


def _snapshot(payment: Payment) -> dict[str, Any]:
    return {
        "id": str(payment.id),
        "partner_id": payment.partner_id,
        "status": payment.status,
        "total": str(payment.total) if payment.total is not None else None,
        "service_ids": list(payment.service_ids),
    }


def _dedupe_refs(values: Optional[Iterable[Any]]) -> list[EntityRef]:
    seen: set[str] = set()
    refs = []
    for value in values or []:
        ref = EntityRef.parse(value)
        if ref.is_blank or ref.key in seen:
            continue
        seen.add(ref.key)
        refs.append(ref)
    return refs


def _require_ref(value: Any, name: str) -> EntityRef:
    ref = EntityRef.parse(value)
    if ref.is_blank:
        raise ValidationAPIError(
            f"{name} is required",
            errors=[{"field": name, "message": "must not be blank"}],
        )
    return ref


def _validate_period(period_from: Optional[date], period_to: Optional[date]) -> None:
    if period_from and period_to and period_from > period_to:
        raise ValidationAPIError(
            "period_from must not be after period_to",
            errors=[{"field": "period_from", "message": "after period_to"}],
        )


def _validate_status(status: str) -> str:
    normalized = (status or "").upper()
    if normalized not in PAYMENT_STATUSES:
        raise ValidationAPIError(
            f"Unknown payment status: {status}",
            errors=[{"field": "status", "message": "unknown status"}],
        )
    return normalized


class PaymentService:
    """Service for managing payment batches."""

    @staticmethod
    def _assert_same_partner(
        db: Session, tenant_id: UUID, partner_id: str, refs: list[EntityRef]
    ) -> None:
        service_ids = {ref.uuid for ref in refs if ref.uuid is not None}
        if not service_ids:
            return
        rows = db.execute(
            select(Service.id, Service.partner_id).where(
                Service.tenant_id == tenant_id, Service.id.in_(service_ids)
            )
        ).all()
        mismatched = [str(row.id) for row in rows if not same_entity(row.partner_id, partner_id)]
        if mismatched:
            raise ValidationAPIError(
                "Service partner mismatch",
                errors=[
                    {"field": "service_ids", "message": f"{sid} belongs to another partner"}
                    for sid in mismatched
                ],
            )

    @staticmethod
    def _assert_linkable(
        db: Session,
        tenant_id: UUID,
        payment_id: UUID,
        refs: list[EntityRef],
        force: bool,
        options: ReconciliationOptions,
    ) -> None:
        """Refuse services already held by another payment, unless forced."""
        if force or not options.enforce_single_payment_link or not refs:
            return
        locks = resolve_service_locks(db, tenant_id, refs, options=options)
        for ref in refs:
            lock = locks.get(ref.raw)
            if lock is None:
                continue
            others = [pid for pid in lock.linked_payment_ids if pid != str(payment_id)]
            if others:
                raise ServiceLockedError(
                    service_id=ref.key,
                    payment_id=others[0],
                    status=lock.status,
                    message=f"Service {ref.key} is already linked to another payment",
                )

    @staticmethod
    def get_payment(
        db: Session, ctx: AuthContext, tenant_id: UUID, payment_id: Any
    ) -> Payment:
        """Get a payment visible to the caller, or raise NotFoundError."""
        ref = EntityRef.parse(payment_id)
        if ref.uuid is None:
            raise NotFoundError("Payment", ref.raw or None)

        stmt = select(Payment).where(Payment.id == ref.uuid, Payment.tenant_id == tenant_id)
        stmt = scope_to_caller(stmt, Payment.partner_id, ctx)
        payment = db.execute(stmt).scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", ref.key)
        return payment

    @staticmethod
    def list_payments(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        partner_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Payment], int]:
        """List payments, newest first."""
        stmt = select(Payment).where(Payment.tenant_id == tenant_id)
        stmt = scope_to_caller(stmt, Payment.partner_id, ctx)

        if partner_id:
            stmt = stmt.where(ref_in(Payment.partner_id, [partner_id]))
        if status:
            stmt = stmt.where(Payment.status == _validate_status(status))

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = db.execute(count_stmt).scalar() or 0

        stmt = (
            stmt.order_by(Payment.created_at.desc(), Payment.id)
            .limit(limit)
            .offset(offset)
        )
        return list(db.execute(stmt).scalars().all()), total

    @staticmethod
    def create_payment(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        partner_id: str,
        partner_name: str = "",
        service_ids: Optional[Iterable[Any]] = None,
        period_from: Optional[date] = None,
        period_to: Optional[date] = None,
        week_key: Optional[str] = None,
        week_start: Optional[date] = None,
        week_end: Optional[date] = None,
        status: str = "PENDING",
        notes: str = "",
        force: bool = False,
        options: Optional[ReconciliationOptions] = None,
    ) -> Payment:
        """Create a payment and compute its total from the initial service set."""
        require_staff(ctx, "create payments")
        options = options or ReconciliationOptions.from_settings()

        partner = _require_ref(partner_id, "partner_id")
        _validate_period(period_from, period_to)
        refs = _dedupe_refs(service_ids)

        payment_id = uuid4()
        PaymentService._assert_same_partner(db, tenant_id, partner.raw, refs)
        PaymentService._assert_linkable(db, tenant_id, payment_id, refs, force, options)

        payment = Payment(
            id=payment_id,
            tenant_id=tenant_id,
            partner_id=partner.raw,
            partner_name=partner_name or "",
            period_from=period_from,
            period_to=period_to,
            week_key=week_key,
            week_start=week_start,
            week_end=week_end,
            status=_validate_status(status),
            notes=notes or "",
            notes_log=[],
        )
        payment.links = [PaymentServiceLink(service_ref=ref.raw) for ref in refs]
        db.add(payment)
        recompute_total(db, payment)

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "create",
            "payments",
            payment.id,
            None,
            _snapshot(payment),
        )

        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def update_payment(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        payment_id: Any,
        patch: dict[str, Any],
        force: bool = False,
        options: Optional[ReconciliationOptions] = None,
    ) -> Payment:
        """
        Update a payment.

        Staff may change any field; ``service_ids`` replaces the link set and
        recomputes the total. Partners may only approve or decline a SHARED
        payment of their own.
        """
        options = options or ReconciliationOptions.from_settings()
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)

        if not ctx.is_staff:
            patch = validate_partner_update(payment, patch)

        before_json = _snapshot(payment)
        patch = dict(patch)
        service_ids = patch.pop("service_ids", None)

        if "partner_id" in patch:
            patch["partner_id"] = _require_ref(patch["partner_id"], "partner_id").raw
        if "status" in patch and patch["status"] is not None:
            patch["status"] = _validate_status(patch["status"])
        _validate_period(
            patch.get("period_from", payment.period_from),
            patch.get("period_to", payment.period_to),
        )

        partner_changed = "partner_id" in patch and not same_entity(
            patch["partner_id"], payment.partner_id
        )
        if partner_changed and service_ids is None:
            # Links the payment keeps must belong to the new owner
            PaymentService._assert_same_partner(
                db,
                tenant_id,
                patch["partner_id"],
                [EntityRef.parse(link.service_ref) for link in payment.links],
            )

        for key, value in patch.items():
            if key not in UPDATABLE_FIELDS:
                continue
            if value is None and key not in CLEARABLE_FIELDS:
                continue
            setattr(payment, key, value)

        if service_ids is not None:
            refs = _dedupe_refs(service_ids)
            PaymentService._assert_same_partner(db, tenant_id, payment.partner_id, refs)
            PaymentService._assert_linkable(db, tenant_id, payment.id, refs, force, options)

            wanted = {ref.key for ref in refs}
            kept = [link for link in payment.links if EntityRef.parse(link.service_ref).key in wanted]
            present = {EntityRef.parse(link.service_ref).key for link in kept}
            payment.links = kept + [
                PaymentServiceLink(service_ref=ref.raw) for ref in refs if ref.key not in present
            ]
            recompute_total(db, payment)

        payment.updated_at = utcnow()

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "update",
            "payments",
            payment.id,
            before_json,
            _snapshot(payment),
        )

        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def delete_payment(
        db: Session, ctx: AuthContext, tenant_id: UUID, payment_id: Any
    ) -> None:
        """Delete a payment. Its services become eligible again; they are not touched."""
        require_staff(ctx, "delete payments")
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)

        before_json = _snapshot(payment)
        entity_id = payment.id
        db.delete(payment)

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "delete",
            "payments",
            entity_id,
            before_json,
            None,
        )

        db.commit()

    @staticmethod
    def add_service(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        payment_id: Any,
        service_id: Any,
        force: bool = False,
        options: Optional[ReconciliationOptions] = None,
    ) -> tuple[Payment, bool]:
        """
        Link a service to a payment.

        Idempotent: a service already linked under either identifier form is
        left alone. Returns the payment and whether anything changed.

        Raises:
            NotFoundError: Payment or service does not exist
            ValidationAPIError: Blank id or service of another partner
            ServiceLockedError: Service is held by a different payment
        """
        require_staff(ctx, "add services to payments")
        options = options or ReconciliationOptions.from_settings()
        ref = _require_ref(service_id, "service_id")
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)

        service = None
        if ref.uuid is not None:
            service = db.execute(
                select(Service).where(Service.id == ref.uuid, Service.tenant_id == tenant_id)
            ).scalar_one_or_none()
        if not service:
            raise NotFoundError("Service", ref.key)

        if not same_entity(service.partner_id, payment.partner_id):
            raise ValidationAPIError(
                "Service partner mismatch",
                errors=[{"field": "service_id", "message": "service belongs to another partner"}],
            )

        if any(EntityRef.parse(link.service_ref).key == ref.key for link in payment.links):
            return payment, False

        PaymentService._assert_linkable(db, tenant_id, payment.id, [ref], force, options)

        before_json = _snapshot(payment)
        payment.links.append(PaymentServiceLink(service_ref=ref.raw))
        recompute_total(db, payment)
        payment.updated_at = utcnow()

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "add_service",
            "payments",
            payment.id,
            before_json,
            _snapshot(payment),
        )

        db.commit()
        db.refresh(payment)
        return payment, True

    @staticmethod
    def remove_service(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        payment_id: Any,
        service_id: Any,
    ) -> tuple[Payment, bool]:
        """Unlink a service from a payment; a no-op when it is not linked."""
        require_staff(ctx, "remove services from payments")
        ref = _require_ref(service_id, "service_id")
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)

        remaining = [
            link for link in payment.links if EntityRef.parse(link.service_ref).key != ref.key
        ]
        if len(remaining) == len(payment.links):
            return payment, False

        before_json = _snapshot(payment)
        payment.links = remaining
        recompute_total(db, payment)
        payment.updated_at = utcnow()

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "remove_service",
            "payments",
            payment.id,
            before_json,
            _snapshot(payment),
        )

        db.commit()
        db.refresh(payment)
        return payment, True

    @staticmethod
    def recompute(
        db: Session, ctx: AuthContext, tenant_id: UUID, payment_id: Any
    ) -> Payment:
        """Recompute and persist a payment's total."""
        require_staff(ctx, "recompute payment totals")
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)
        recompute_total(db, payment)
        payment.updated_at = utcnow()
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def add_note(
        db: Session,
        ctx: AuthContext,
        tenant_id: UUID,
        payment_id: Any,
        text: str,
    ) -> Payment:
        """Append a note to the payment's log (staff, or the owning partner)."""
        text = (text or "").strip()
        if not text:
            raise ValidationAPIError(
                "Note text is required",
                errors=[{"field": "text", "message": "must not be blank"}],
            )
        payment = PaymentService.get_payment(db, ctx, tenant_id, payment_id)

        entry = {
            "id": uuid4().hex,
            "text": text,
            "at": utcnow().isoformat(),
            "by": ctx.identity,
        }
        # JSON column: assign a new list so the change is tracked
        payment.notes_log = [*(payment.notes_log or []), entry]
        payment.updated_at = utcnow()

        create_audit_log(
            db,
            ctx,
            tenant_id,
            "add_note",
            "payments",
            payment.id,
            None,
            entry,
        )

        db.commit()
        db.refresh(payment)
        return payment
