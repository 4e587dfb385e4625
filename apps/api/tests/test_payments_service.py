"""Tests for Payment service layer."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.common.models import AuditLog, PaymentServiceLink
from app.core.errors import (
    ForbiddenError,
    NotFoundError,
    ServiceLockedError,
    StateTransitionError,
    ValidationAPIError,
)
from app.payments.reconciliation import ReconciliationOptions, list_eligible_services
from app.payments.service import PaymentService


class TestCreatePayment:
    def test_create_deduplicates_and_computes_total(
        self, db, tenant_uuid, finance_ctx, partner_id, make_service
    ):
        first = make_service(final_value="40.00")
        second = make_service(final_value="60.00")

        payment = PaymentService.create_payment(
            db,
            finance_ctx,
            tenant_uuid,
            partner_id=partner_id,
            partner_name="Orlando Guides",
            service_ids=[str(first.id), first.id.hex, second.id.hex, ""],
            period_from=date(2025, 3, 1),
            period_to=date(2025, 3, 7),
        )

        assert payment.total == Decimal("100.00")
        assert payment.status == "PENDING"
        assert sorted(payment.service_ids) == sorted([str(first.id), second.id.hex])

    def test_partner_cannot_create(self, db, tenant_uuid, partner_ctx, partner_id):
        with pytest.raises(ForbiddenError):
            PaymentService.create_payment(db, partner_ctx, tenant_uuid, partner_id=partner_id)

    def test_partner_is_required(self, db, tenant_uuid, admin_ctx):
        with pytest.raises(ValidationAPIError):
            PaymentService.create_payment(db, admin_ctx, tenant_uuid, partner_id="  ")

    def test_reversed_period_is_rejected(self, db, tenant_uuid, admin_ctx, partner_id):
        with pytest.raises(ValidationAPIError):
            PaymentService.create_payment(
                db,
                admin_ctx,
                tenant_uuid,
                partner_id=partner_id,
                period_from=date(2025, 3, 7),
                period_to=date(2025, 3, 1),
            )

    def test_services_of_another_partner_are_rejected(
        self, db, tenant_uuid, admin_ctx, partner_id, other_partner_id, make_service
    ):
        foreign = make_service(partner_id=other_partner_id)

        with pytest.raises(ValidationAPIError):
            PaymentService.create_payment(
                db, admin_ctx, tenant_uuid, partner_id=partner_id, service_ids=[str(foreign.id)]
            )

    def test_service_held_elsewhere_is_rejected_unless_forced(
        self, db, tenant_uuid, admin_ctx, partner_id, make_service, make_payment
    ):
        service = make_service()
        holder = make_payment(service_refs=[str(service.id)])

        with pytest.raises(ServiceLockedError) as exc_info:
            PaymentService.create_payment(
                db, admin_ctx, tenant_uuid, partner_id=partner_id, service_ids=[service.id.hex]
            )
        assert exc_info.value.payment_id == str(holder.id)

        payment = PaymentService.create_payment(
            db,
            admin_ctx,
            tenant_uuid,
            partner_id=partner_id,
            service_ids=[service.id.hex],
            force=True,
        )
        assert payment.total == Decimal("100.00")

    def test_create_writes_audit_log(self, db, tenant_uuid, finance_ctx, partner_id):
        payment = PaymentService.create_payment(db, finance_ctx, tenant_uuid, partner_id=partner_id)

        entry = db.execute(
            select(AuditLog).where(AuditLog.entity_id == payment.id)
        ).scalar_one()
        assert entry.action == "create"
        assert entry.actor_id == "finance-1"
        assert entry.actor_role == "finance"


class TestAddService:
    def test_add_recomputes_total(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        service = make_service(final_value="75.00")
        payment = make_payment()

        payment, changed = PaymentService.add_service(
            db, finance_ctx, tenant_uuid, payment.id, str(service.id)
        )

        assert changed is True
        assert payment.total == Decimal("75.00")
        assert payment.service_ids == [str(service.id)]

    def test_add_is_idempotent_across_forms(
        self, db, tenant_uuid, finance_ctx, make_service, make_payment
    ):
        service = make_service(final_value="75.00")
        payment = make_payment(service_refs=[str(service.id)])

        payment, changed = PaymentService.add_service(
            db, finance_ctx, tenant_uuid, str(payment.id), service.id.hex
        )

        assert changed is False
        assert payment.service_ids == [str(service.id)]
        links = db.execute(select(PaymentServiceLink)).scalars().all()
        assert len(links) == 1

    def test_add_twice(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        service = make_service(final_value="10.00")
        payment = make_payment()

        PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, service.id)
        payment, changed = PaymentService.add_service(
            db, finance_ctx, tenant_uuid, payment.id, service.id
        )

        assert changed is False
        assert payment.total == Decimal("10.00")

    def test_partner_mismatch(
        self, db, tenant_uuid, finance_ctx, other_partner_id, make_service, make_payment
    ):
        foreign = make_service(partner_id=other_partner_id)
        payment = make_payment()

        with pytest.raises(ValidationAPIError) as exc_info:
            PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, foreign.id)
        assert exc_info.value.message == "Service partner mismatch"

    def test_partner_match_ignores_id_form(
        self, db, tenant_uuid, finance_ctx, partner_id, make_service, make_payment
    ):
        service = make_service(partner_id=partner_id.replace("-", ""))
        payment = make_payment(partner_id=partner_id)

        _, changed = PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, service.id)

        assert changed is True

    def test_missing_service(self, db, tenant_uuid, finance_ctx, make_payment):
        payment = make_payment()

        with pytest.raises(NotFoundError):
            PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, str(uuid4()))

    def test_missing_payment(self, db, tenant_uuid, finance_ctx, make_service):
        service = make_service()

        with pytest.raises(NotFoundError):
            PaymentService.add_service(db, finance_ctx, tenant_uuid, uuid4(), service.id)

    def test_blank_service_id(self, db, tenant_uuid, finance_ctx, make_payment):
        payment = make_payment()

        with pytest.raises(ValidationAPIError):
            PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, " ")

    def test_partner_cannot_add(self, db, tenant_uuid, partner_ctx, make_service, make_payment):
        service = make_service()
        payment = make_payment()

        with pytest.raises(ForbiddenError):
            PaymentService.add_service(db, partner_ctx, tenant_uuid, payment.id, service.id)

    def test_service_linked_elsewhere_conflicts(
        self, db, tenant_uuid, finance_ctx, make_service, make_payment
    ):
        service = make_service()
        holder = make_payment(service_refs=[service.id.hex], status="PAID")
        payment = make_payment()

        with pytest.raises(ServiceLockedError) as exc_info:
            PaymentService.add_service(db, finance_ctx, tenant_uuid, payment.id, str(service.id))

        assert exc_info.value.payment_id == str(holder.id)
        assert exc_info.value.status == "paid"
        assert exc_info.value.status_code == 409

    def test_force_links_anyway(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        service = make_service(final_value="30.00")
        make_payment(service_refs=[str(service.id)])
        payment = make_payment()

        payment, changed = PaymentService.add_service(
            db, finance_ctx, tenant_uuid, payment.id, service.id, force=True
        )

        assert changed is True
        assert payment.total == Decimal("30.00")

    def test_single_link_rule_can_be_disabled(
        self, db, tenant_uuid, finance_ctx, make_service, make_payment
    ):
        service = make_service()
        make_payment(service_refs=[str(service.id)])
        payment = make_payment()
        options = ReconciliationOptions(enforce_single_payment_link=False)

        _, changed = PaymentService.add_service(
            db, finance_ctx, tenant_uuid, payment.id, service.id, options=options
        )

        assert changed is True


class TestRemoveService:
    def test_remove_by_other_form(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        kept = make_service(final_value="5.00")
        removed = make_service(final_value="7.00")
        payment = make_payment(service_refs=[str(kept.id), str(removed.id)])

        payment, changed = PaymentService.remove_service(
            db, finance_ctx, tenant_uuid, payment.id, removed.id.hex
        )

        assert changed is True
        assert payment.service_ids == [str(kept.id)]
        assert payment.total == Decimal("5.00")

    def test_remove_absent_is_noop(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        service = make_service()
        payment = make_payment()

        payment, changed = PaymentService.remove_service(
            db, finance_ctx, tenant_uuid, payment.id, service.id
        )

        assert changed is False
        assert payment.service_ids == []

    def test_remove_twice(self, db, tenant_uuid, finance_ctx, make_service, make_payment):
        service = make_service()
        payment = make_payment(service_refs=[str(service.id)])

        PaymentService.remove_service(db, finance_ctx, tenant_uuid, payment.id, service.id)
        payment, changed = PaymentService.remove_service(
            db, finance_ctx, tenant_uuid, payment.id, service.id
        )

        assert changed is False
        assert payment.total == Decimal("0.00")


class TestUpdatePayment:
    def test_staff_replaces_service_set(
        self, db, tenant_uuid, admin_ctx, make_service, make_payment
    ):
        old = make_service(final_value="1.00")
        new = make_service(final_value="2.00")
        payment = make_payment(service_refs=[str(old.id)])

        payment = PaymentService.update_payment(
            db,
            admin_ctx,
            tenant_uuid,
            payment.id,
            {"service_ids": [new.id.hex, str(new.id)], "status": "shared", "notes": "week 12"},
        )

        assert payment.service_ids == [new.id.hex]
        assert payment.total == Decimal("2.00")
        assert payment.status == "SHARED"
        assert payment.notes == "week 12"

    def test_replacing_keeps_existing_links(
        self, db, tenant_uuid, admin_ctx, make_service, make_payment
    ):
        service = make_service(final_value="3.00")
        payment = make_payment(service_refs=[service.id.hex])

        payment = PaymentService.update_payment(
            db, admin_ctx, tenant_uuid, payment.id, {"service_ids": [str(service.id)]}
        )

        assert payment.service_ids == [service.id.hex]
        assert payment.total == Decimal("3.00")

    def test_unknown_status_is_rejected(self, db, tenant_uuid, admin_ctx, make_payment):
        payment = make_payment()

        with pytest.raises(ValidationAPIError):
            PaymentService.update_payment(db, admin_ctx, tenant_uuid, payment.id, {"status": "LOST"})

    def test_update_bumps_updated_at(self, db, tenant_uuid, admin_ctx, make_payment):
        stale = datetime(2024, 1, 1, tzinfo=timezone.utc)
        payment = make_payment(updated_at=stale)

        payment = PaymentService.update_payment(
            db, admin_ctx, tenant_uuid, payment.id, {"notes": "x"}
        )

        assert payment.updated_at.replace(tzinfo=None) > stale.replace(tzinfo=None)

    def test_reassigning_partner_with_linked_services_is_rejected(
        self, db, tenant_uuid, admin_ctx, partner_id, other_partner_id, make_service, make_payment
    ):
        service = make_service()
        payment = make_payment(service_refs=[str(service.id)])
        payment_id = payment.id
        service_id = service.id

        with pytest.raises(ValidationAPIError) as exc_info:
            PaymentService.update_payment(
                db, admin_ctx, tenant_uuid, payment_id, {"partner_id": other_partner_id}
            )
        db.rollback()

        assert exc_info.value.details["errors"][0]["field"] == "service_ids"
        assert PaymentService.get_payment(db, admin_ctx, tenant_uuid, payment_id).partner_id == partner_id
        assert list_eligible_services(db, tenant_uuid, partner_id, any_date=True) == []
        assert service_id not in [
            s.id for s in list_eligible_services(db, tenant_uuid, other_partner_id, any_date=True)
        ]

    def test_reassigning_partner_with_matching_service_set(
        self, db, tenant_uuid, admin_ctx, other_partner_id, make_service, make_payment
    ):
        old = make_service()
        new = make_service(partner_id=other_partner_id, final_value="5.00")
        payment = make_payment(service_refs=[str(old.id)])

        payment = PaymentService.update_payment(
            db,
            admin_ctx,
            tenant_uuid,
            payment.id,
            {"partner_id": other_partner_id, "service_ids": [str(new.id)]},
        )

        assert payment.partner_id == other_partner_id
        assert payment.service_ids == [str(new.id)]
        assert payment.total == Decimal("5.00")

    def test_reassigning_partner_of_empty_payment(
        self, db, tenant_uuid, admin_ctx, other_partner_id, make_payment
    ):
        payment = make_payment()

        payment = PaymentService.update_payment(
            db, admin_ctx, tenant_uuid, payment.id, {"partner_id": other_partner_id}
        )

        assert payment.partner_id == other_partner_id

    def test_explicit_null_clears_optional_fields(self, db, tenant_uuid, admin_ctx, make_payment):
        payment = make_payment()
        payment = PaymentService.update_payment(
            db,
            admin_ctx,
            tenant_uuid,
            payment.id,
            {"period_from": date(2025, 3, 1), "period_to": date(2025, 3, 7), "week_key": "2025-W10"},
        )

        payment = PaymentService.update_payment(
            db,
            admin_ctx,
            tenant_uuid,
            payment.id,
            {"period_from": None, "period_to": None, "week_key": None, "notes": None},
        )

        assert payment.period_from is None
        assert payment.period_to is None
        assert payment.week_key is None
        assert payment.notes == ""


class TestPartnerReview:
    @pytest.mark.parametrize("decision", ["APPROVED", "DECLINED"])
    def test_partner_decides_shared_payment(
        self, db, tenant_uuid, partner_ctx, make_service, make_payment, decision
    ):
        service = make_service()
        other = make_service()
        payment = make_payment(service_refs=[str(service.id)], status="SHARED")

        payment = PaymentService.update_payment(
            db,
            partner_ctx,
            tenant_uuid,
            payment.id,
            {
                "status": decision,
                "service_ids": [str(other.id)],
                "partner_id": "someone-else",
                "notes": "ignored",
            },
        )

        assert payment.status == decision
        assert payment.service_ids == [str(service.id)]
        assert payment.partner_id != "someone-else"
        assert payment.notes == ""

    def test_partner_cannot_mark_paid(self, db, tenant_uuid, partner_ctx, make_payment):
        payment = make_payment(status="SHARED")

        with pytest.raises(StateTransitionError) as exc_info:
            PaymentService.update_payment(db, partner_ctx, tenant_uuid, payment.id, {"status": "PAID"})

        assert exc_info.value.details == {
            "current_status": "SHARED",
            "requested_status": "PAID",
        }

    @pytest.mark.parametrize("current", ["PENDING", "APPROVED", "PAID", "DECLINED", "ON_HOLD"])
    def test_partner_cannot_review_unshared_payment(
        self, db, tenant_uuid, partner_ctx, make_payment, current
    ):
        payment = make_payment(status=current)

        with pytest.raises(StateTransitionError):
            PaymentService.update_payment(
                db, partner_ctx, tenant_uuid, payment.id, {"status": "APPROVED"}
            )

    def test_partner_without_status(self, db, tenant_uuid, partner_ctx, make_payment):
        payment = make_payment(status="SHARED")

        with pytest.raises(StateTransitionError):
            PaymentService.update_payment(
                db, partner_ctx, tenant_uuid, payment.id, {"notes": "hello"}
            )

    def test_other_partners_payment_is_not_found(
        self, db, tenant_uuid, other_partner_ctx, make_payment
    ):
        payment = make_payment(status="SHARED")

        with pytest.raises(NotFoundError):
            PaymentService.update_payment(
                db, other_partner_ctx, tenant_uuid, payment.id, {"status": "APPROVED"}
            )


class TestDeletePayment:
    def test_delete_frees_services(
        self, db, tenant_uuid, admin_ctx, partner_id, make_service, make_payment
    ):
        service = make_service()
        payment = make_payment(service_refs=[str(service.id)])

        PaymentService.delete_payment(db, admin_ctx, tenant_uuid, payment.id)

        eligible = list_eligible_services(db, tenant_uuid, partner_id, any_date=True)
        assert [s.id for s in eligible] == [service.id]
        assert db.execute(select(PaymentServiceLink)).scalars().all() == []

    def test_partner_cannot_delete(self, db, tenant_uuid, partner_ctx, make_payment):
        payment = make_payment()

        with pytest.raises(ForbiddenError):
            PaymentService.delete_payment(db, partner_ctx, tenant_uuid, payment.id)


class TestListAndGet:
    def test_list_is_scoped_for_partners(
        self, db, tenant_uuid, partner_ctx, other_partner_id, make_payment
    ):
        own = make_payment()
        make_payment(partner_id=other_partner_id)

        items, total = PaymentService.list_payments(db, partner_ctx, tenant_uuid)

        assert total == 1
        assert [p.id for p in items] == [own.id]

    def test_list_filters_and_orders_newest_first(
        self, db, tenant_uuid, admin_ctx, partner_id, make_payment
    ):
        older = make_payment(status="PAID", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        newer = make_payment(status="PAID", created_at=datetime(2025, 2, 1, tzinfo=timezone.utc))
        make_payment(status="PENDING")

        items, total = PaymentService.list_payments(
            db, admin_ctx, tenant_uuid, partner_id=partner_id.replace("-", ""), status="paid"
        )

        assert total == 2
        assert [p.id for p in items] == [newer.id, older.id]

    def test_get_accepts_compact_id(self, db, tenant_uuid, admin_ctx, make_payment):
        payment = make_payment()

        assert PaymentService.get_payment(db, admin_ctx, tenant_uuid, payment.id.hex).id == payment.id

    def test_get_malformed_id_is_not_found(self, db, tenant_uuid, admin_ctx):
        with pytest.raises(NotFoundError):
            PaymentService.get_payment(db, admin_ctx, tenant_uuid, "nope")


class TestNotesAndRecompute:
    def test_owning_partner_can_add_note(self, db, tenant_uuid, partner_ctx, make_payment):
        payment = make_payment()

        payment = PaymentService.add_note(db, partner_ctx, tenant_uuid, payment.id, " Looks right ")
        payment = PaymentService.add_note(db, partner_ctx, tenant_uuid, payment.id, "Second")

        assert [n["text"] for n in payment.notes_log] == ["Looks right", "Second"]
        assert all({"id", "text", "at"} <= set(n) for n in payment.notes_log)

    def test_blank_note_is_rejected(self, db, tenant_uuid, admin_ctx, make_payment):
        payment = make_payment()

        with pytest.raises(ValidationAPIError):
            PaymentService.add_note(db, admin_ctx, tenant_uuid, payment.id, "   ")

    def test_recompute_after_service_value_change(
        self, db, tenant_uuid, admin_ctx, make_service, make_payment
    ):
        service = make_service(final_value="10.00")
        payment = make_payment(service_refs=[str(service.id)])
        service.final_value = Decimal("12.00")
        db.commit()

        payment = PaymentService.recompute(db, admin_ctx, tenant_uuid, payment.id)

        assert payment.total == Decimal("12.00")
