"""Service domain models (billable units of work performed for a client)."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    Boolean,
    Date,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.common.models.base import Base, utcnow


class Service(Base):
    """A service delivered by a partner (tour, park day, transfer, reimbursement...).

    ``partner_id`` is free text: partner identifiers were written both in the
    canonical UUID form and in the compact hex form by the legacy importer, so
    lookups must go through ``app.common.identifiers``.
    """

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    partner_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    service_time: Mapped[Optional[int]] = mapped_column(Integer)  # minutes
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    client_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    park: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    guests: Mapped[Optional[int]] = mapped_column(Integer)
    hopper: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    team: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    service_type_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    service_type_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    final_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    override_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    observations: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="recorded")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_services_partner_date", "tenant_id", "partner_id", "service_date"),
        Index("ix_services_type_date", "tenant_id", "service_type_id", "service_date"),
    )

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.client_name
