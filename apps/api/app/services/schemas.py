"""Pydantic schemas for Services module."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ServiceCreateRequest(BaseModel):
    """Request to record a service. Partners always record for themselves."""

    partner_id: Optional[str] = Field(None, max_length=64)
    partner_name: str = Field(default="", max_length=200)
    service_date: date
    service_time: Optional[int] = Field(None, ge=0, le=24 * 60 - 1)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    client_name: str = Field(default="", max_length=200)
    park: str = Field(default="", max_length=100)
    location: str = Field(default="", max_length=200)
    guests: Optional[int] = Field(None, ge=0)
    hopper: bool = Field(default=False)
    team: str = Field(default="", max_length=100)
    service_type_id: str = Field(default="", max_length=64)
    service_type_name: str = Field(default="", max_length=100)
    final_value: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    override_value: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    observations: str = Field(default="")
    status: Optional[str] = None


class ServiceBulkCreateRequest(BaseModel):
    items: list[ServiceCreateRequest]


class ServiceUpdateRequest(BaseModel):
    """Request to update a service."""

    partner_id: Optional[str] = Field(None, min_length=1, max_length=64)
    partner_name: Optional[str] = Field(None, max_length=200)
    service_date: Optional[date] = None
    service_time: Optional[int] = Field(None, ge=0, le=24 * 60 - 1)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    client_name: Optional[str] = Field(None, max_length=200)
    park: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=200)
    guests: Optional[int] = Field(None, ge=0)
    hopper: Optional[bool] = None
    team: Optional[str] = Field(None, max_length=100)
    service_type_id: Optional[str] = Field(None, max_length=64)
    service_type_name: Optional[str] = Field(None, max_length=100)
    final_value: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    override_value: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    observations: Optional[str] = None
    status: Optional[str] = None


class ServiceResponse(BaseModel):
    """Response with service details and, when known, the payment holding it."""

    id: str
    partner_id: str
    partner_name: str
    service_date: date
    service_time: Optional[int]
    first_name: str
    last_name: str
    client_name: str
    display_name: str
    park: str
    location: str
    guests: Optional[int]
    hopper: bool
    team: str
    service_type_id: str
    service_type_name: str
    final_value: Decimal
    override_value: Optional[Decimal]
    observations: str
    status: str
    created_at: str
    updated_at: str
    # None when lock status could not be determined
    locked: Optional[bool] = None
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None


class ServiceListResponse(BaseModel):
    items: list[ServiceResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
    lock_status_available: bool


class ServiceBulkCreateResponse(BaseModel):
    created: int
    items: list[ServiceResponse]


class ServiceLockResponse(BaseModel):
    service_id: str
    locked: bool
    payment_id: Optional[str] = None
    status: Optional[str] = None
