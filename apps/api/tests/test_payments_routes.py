"""Tests for Payments API routes."""

from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient


class TestPaymentCrudRoutes:
    """Create, read, update and delete payment batches."""

    def test_create_payment(self, client: TestClient, finance_headers, partner_id, make_service):
        """Finance creates a payment and gets its computed total back."""
        first = make_service(final_value="40.00")
        second = make_service(final_value="2.50")

        response = client.post(
            "/api/v1/payments",
            json={
                "partner_id": partner_id,
                "partner_name": "Orlando Guides",
                "service_ids": [str(first.id), second.id.hex],
                "period_from": "2025-03-01",
                "period_to": "2025-03-31",
                "status": "pending",
            },
            headers=finance_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["partner_id"] == partner_id
        assert str(data["total"]) in ("42.5", "42.50")
        assert sorted(data["service_ids"]) == sorted([str(first.id), second.id.hex])
        assert data["notes_log"] == []

    def test_partner_cannot_create(self, client: TestClient, partner_headers, partner_id):
        response = client.post(
            "/api/v1/payments",
            json={"partner_id": partner_id},
            headers=partner_headers,
        )

        assert response.status_code == 403

    def test_create_with_unknown_status(self, client: TestClient, admin_headers, partner_id):
        response = client.post(
            "/api/v1/payments",
            json={"partner_id": partner_id, "status": "LOST"},
            headers=admin_headers,
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"]["errors"][0]["field"] == "status"

    def test_create_conflicts_when_service_is_taken(
        self, client: TestClient, finance_headers, partner_id, make_service, make_payment
    ):
        service = make_service()
        holder = make_payment(service_refs=[str(service.id)])

        response = client.post(
            "/api/v1/payments",
            json={"partner_id": partner_id, "service_ids": [str(service.id)]},
            headers=finance_headers,
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "service_locked"
        assert error["details"]["payment_id"] == str(holder.id)

    def test_requires_authentication(self, client: TestClient):
        response = client.get("/api/v1/payments")

        assert response.status_code == 401

    def test_get_payment(self, client: TestClient, admin_headers, make_payment):
        payment = make_payment()

        response = client.get(f"/api/v1/payments/{payment.id.hex}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["id"] == str(payment.id)

    def test_get_other_partners_payment(
        self, client: TestClient, other_partner_headers, make_payment
    ):
        payment = make_payment()

        response = client.get(f"/api/v1/payments/{payment.id}", headers=other_partner_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_delete_payment(self, client: TestClient, finance_headers, make_payment):
        payment = make_payment()

        response = client.delete(f"/api/v1/payments/{payment.id}", headers=finance_headers)
        assert response.status_code == 204

        response = client.get(f"/api/v1/payments/{payment.id}", headers=finance_headers)
        assert response.status_code == 404

    def test_partner_cannot_delete(self, client: TestClient, partner_headers, make_payment):
        payment = make_payment()

        response = client.delete(f"/api/v1/payments/{payment.id}", headers=partner_headers)

        assert response.status_code == 403


class TestPaymentListRoutes:
    def test_list_is_paginated(self, client: TestClient, admin_headers, make_payment):
        for _ in range(3):
            make_payment()

        response = client.get(
            "/api/v1/payments", params={"page": 2, "page_size": 2}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["page"] == 2
        assert data["page_size"] == 2
        assert data["total_pages"] == 2
        assert len(data["items"]) == 1

    def test_limit_and_offset(self, client: TestClient, admin_headers, make_payment):
        for _ in range(3):
            make_payment()

        response = client.get(
            "/api/v1/payments", params={"limit": 2, "offset": 2}, headers=admin_headers
        )

        data = response.json()
        assert data["page"] == 2
        assert len(data["items"]) == 1

    def test_partner_sees_only_own_payments(
        self, client: TestClient, partner_headers, partner_id, other_partner_id, make_payment
    ):
        own = make_payment()
        make_payment(partner_id=other_partner_id)

        response = client.get("/api/v1/payments", headers=partner_headers)

        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == str(own.id)

    def test_status_filter(self, client: TestClient, admin_headers, make_payment):
        paid = make_payment(status="PAID")
        make_payment(status="PENDING")

        response = client.get("/api/v1/payments", params={"status": "paid"}, headers=admin_headers)

        assert [p["id"] for p in response.json()["items"]] == [str(paid.id)]


class TestPaymentItemRoutes:
    def test_add_and_remove_item(
        self, client: TestClient, finance_headers, make_service, make_payment
    ):
        service = make_service(final_value="25.00")
        payment = make_payment()

        response = client.post(
            f"/api/v1/payments/{payment.id}/items",
            json={"service_id": str(service.id)},
            headers=finance_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["changed"] is True
        assert data["payment"]["service_ids"] == [str(service.id)]
        assert float(data["payment"]["total"]) == 25.0

        response = client.post(
            f"/api/v1/payments/{payment.id}/items",
            json={"service_id": service.id.hex},
            headers=finance_headers,
        )
        assert response.json()["changed"] is False

        response = client.delete(
            f"/api/v1/payments/{payment.id}/items/{service.id.hex}",
            headers=finance_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["changed"] is True
        assert data["payment"]["service_ids"] == []
        assert float(data["payment"]["total"]) == 0.0

    def test_add_item_locked_elsewhere(
        self, client: TestClient, finance_headers, make_service, make_payment
    ):
        service = make_service()
        make_payment(service_refs=[str(service.id)], status="PAID")
        payment = make_payment()

        response = client.post(
            f"/api/v1/payments/{payment.id}/items",
            json={"service_id": str(service.id)},
            headers=finance_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["details"]["status"] == "paid"

    def test_add_item_forced(self, client: TestClient, finance_headers, make_service, make_payment):
        service = make_service()
        make_payment(service_refs=[str(service.id)])
        payment = make_payment()

        response = client.post(
            f"/api/v1/payments/{payment.id}/items",
            json={"service_id": str(service.id), "force": True},
            headers=finance_headers,
        )

        assert response.status_code == 200
        assert response.json()["changed"] is True

    def test_add_item_partner_mismatch(
        self, client: TestClient, finance_headers, other_partner_id, make_service, make_payment
    ):
        service = make_service(partner_id=other_partner_id)
        payment = make_payment()

        response = client.post(
            f"/api/v1/payments/{payment.id}/items",
            json={"service_id": str(service.id)},
            headers=finance_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Service partner mismatch"

    def test_recalc(self, client: TestClient, finance_headers, db, make_service, make_payment):
        service = make_service(final_value="8.00")
        payment = make_payment(service_refs=[str(service.id)])

        response = client.post(f"/api/v1/payments/{payment.id}/recalc", headers=finance_headers)

        assert response.status_code == 200
        assert float(response.json()["total"]) == 8.0


class TestPartnerReviewRoutes:
    @pytest.mark.parametrize("decision", ["APPROVED", "DECLINED"])
    def test_partner_decides(self, client: TestClient, partner_headers, make_payment, decision):
        payment = make_payment(status="SHARED")

        response = client.patch(
            f"/api/v1/payments/{payment.id}",
            json={"status": decision.lower()},
            headers=partner_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == decision

    def test_partner_cannot_mark_paid(self, client: TestClient, partner_headers, make_payment):
        payment = make_payment(status="SHARED")

        response = client.patch(
            f"/api/v1/payments/{payment.id}",
            json={"status": "PAID"},
            headers=partner_headers,
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "invalid_state_transition"
        assert error["details"]["current_status"] == "SHARED"

    def test_partner_cannot_review_pending(
        self, client: TestClient, partner_headers, make_payment
    ):
        payment = make_payment(status="PENDING")

        response = client.patch(
            f"/api/v1/payments/{payment.id}",
            json={"status": "APPROVED"},
            headers=partner_headers,
        )

        assert response.status_code == 409

    def test_finance_shares_payment(self, client: TestClient, finance_headers, make_payment):
        payment = make_payment()

        response = client.patch(
            f"/api/v1/payments/{payment.id}",
            json={"status": "SHARED", "notes": "Week 10"},
            headers=finance_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "SHARED"
        assert data["notes"] == "Week 10"

    def test_notes(self, client: TestClient, partner_headers, make_payment):
        payment = make_payment()

        response = client.post(
            f"/api/v1/payments/{payment.id}/notes",
            json={"text": "Please check March 3"},
            headers=partner_headers,
        )

        assert response.status_code == 200
        notes = response.json()["notes_log"]
        assert notes[0]["text"] == "Please check March 3"


class TestReconciliationRoutes:
    def test_eligible_for_partner_defaults_to_caller(
        self, client: TestClient, partner_headers, make_service, make_payment
    ):
        linked = make_service()
        free = make_service(first_name="Bia", last_name="Costa")
        make_payment(service_refs=[str(linked.id)])

        response = client.get(
            "/api/v1/payments/eligible", params={"any_date": True}, headers=partner_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == str(free.id)
        assert data["items"][0]["display_name"] == "Bia Costa"

    def test_eligible_requires_window(self, client: TestClient, admin_headers, partner_id):
        response = client.get(
            "/api/v1/payments/eligible", params={"partner": partner_id}, headers=admin_headers
        )

        assert response.status_code == 422

    def test_eligible_with_window(
        self, client: TestClient, admin_headers, partner_id, make_service
    ):
        inside = make_service(service_date=date(2025, 3, 10))
        make_service(service_date=date(2025, 5, 1))

        response = client.get(
            "/api/v1/payments/eligible",
            params={"partner": partner_id, "date_from": "2025-03-01", "date_to": "2025-03-31"},
            headers=admin_headers,
        )

        assert [s["id"] for s in response.json()["items"]] == [str(inside.id)]

    def test_eligible_requires_partner_for_staff(self, client: TestClient, admin_headers):
        response = client.get(
            "/api/v1/payments/eligible", params={"any_date": True}, headers=admin_headers
        )

        assert response.status_code == 422

    def test_service_status(self, client: TestClient, admin_headers, make_service, make_payment):
        linked = make_service()
        free = make_service()
        payment = make_payment(service_refs=[linked.id.hex], status="PAID")

        response = client.get(
            "/api/v1/payments/service-status",
            params={"ids": f"{linked.id}, {free.id},"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        items = {entry["service_id"]: entry for entry in response.json()["items"]}
        assert items[str(linked.id)]["locked"] is True
        assert items[str(linked.id)]["payment_id"] == str(payment.id)
        assert items[str(linked.id)]["status"] == "paid"
        assert items[str(free.id)] == {
            "service_id": str(free.id),
            "locked": False,
            "payment_id": None,
            "status": None,
            "linked_payment_ids": [],
        }

    def test_service_status_requires_ids(self, client: TestClient, admin_headers):
        response = client.get(
            "/api/v1/payments/service-status", params={"ids": " , "}, headers=admin_headers
        )

        assert response.status_code == 422
