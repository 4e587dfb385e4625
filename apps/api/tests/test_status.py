"""Tests for the service status vocabulary."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.status.vocabulary import STATUS_VALUES, normalize_status, status_title


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Pago", "paid"),
        ("PAID", "paid"),
        ("shared", "waiting to approve"),
        ("Waiting for approval", "waiting to approve"),
        ("rejected", "denied"),
        ("recusado", "denied"),
        ("Pendente", "pending"),
        ("REC", "recorded"),
        ("", "pending"),
        (None, "pending"),
        ("  On Site ", "on site"),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_canonical_values_normalize_to_themselves():
    for value in STATUS_VALUES:
        assert normalize_status(value) == value


def test_status_title():
    assert status_title("waiting to approve") == "Waiting To Approve"


class TestStatusRoutes:
    def test_list(self, client: TestClient):
        response = client.get("/api/v1/status")

        assert response.status_code == 200
        assert response.json()["items"] == list(STATUS_VALUES)

    def test_normalize(self, client: TestClient):
        response = client.get("/api/v1/status/normalize", params={"value": "Pago"})

        assert response.json() == {"value": "Pago", "normalized": "paid", "title": "Paid"}

    def test_normalize_without_value(self, client: TestClient):
        response = client.get("/api/v1/status/normalize")

        assert response.json()["normalized"] == "pending"
