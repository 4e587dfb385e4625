"""Pydantic schemas for Payments module."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from app.common.models import PAYMENT_STATUSES


def _normalize_payment_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in PAYMENT_STATUSES:
        raise ValueError(f"status must be one of {', '.join(PAYMENT_STATUSES)}")
    return normalized


# Payment Schemas
class PaymentCreateRequest(BaseModel):
    """Request to create a payment batch for a partner."""

    partner_id: str = Field(..., min_length=1, max_length=64)
    partner_name: str = Field(default="", max_length=200)
    service_ids: list[str] = Field(default_factory=list)
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    week_key: Optional[str] = Field(None, max_length=16)
    week_start: Optional[date] = None
    week_end: Optional[date] = None
    status: str = Field(default="PENDING")
    notes: str = Field(default="")
    force: bool = Field(default=False)

    normalize_status = field_validator("status")(_normalize_payment_status)


class PaymentUpdateRequest(BaseModel):
    """Request to update a payment. ``service_ids`` replaces the whole set."""

    partner_id: Optional[str] = Field(None, min_length=1, max_length=64)
    partner_name: Optional[str] = Field(None, max_length=200)
    service_ids: Optional[list[str]] = None
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    week_key: Optional[str] = Field(None, max_length=16)
    week_start: Optional[date] = None
    week_end: Optional[date] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    force: bool = Field(default=False)

    normalize_status = field_validator("status")(_normalize_payment_status)


class PaymentItemRequest(BaseModel):
    """Request to link a service to a payment."""

    service_id: str = Field(..., min_length=1, max_length=64)
    force: bool = Field(default=False)


class PaymentNoteRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class PaymentResponse(BaseModel):
    """Response with payment details."""

    id: str
    partner_id: str
    partner_name: str
    period_from: Optional[date]
    period_to: Optional[date]
    week_key: Optional[str]
    week_start: Optional[date]
    week_end: Optional[date]
    total: Decimal
    status: str
    notes: str
    notes_log: list[dict[str, Any]]
    service_ids: list[str]
    created_at: str
    updated_at: str


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class PaymentItemResponse(BaseModel):
    """Result of an item add/remove; ``changed`` is false for no-ops."""

    payment: PaymentResponse
    changed: bool


# Reconciliation Schemas
class EligibleServiceResponse(BaseModel):
    id: str
    service_date: date
    first_name: str
    last_name: str
    display_name: str
    service_type_id: str
    final_value: Decimal
    observations: str


class EligibleServicesResponse(BaseModel):
    items: list[EligibleServiceResponse]
    total: int


class ServiceStatusEntry(BaseModel):
    service_id: str
    locked: bool
    payment_id: Optional[str] = None
    status: Optional[str] = None
    linked_payment_ids: list[str] = Field(default_factory=list)


class ServiceStatusResponse(BaseModel):
    items: list[ServiceStatusEntry]
