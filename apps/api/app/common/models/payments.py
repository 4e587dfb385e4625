"""Payment domain models (partner settlement batches and their service links)."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.common.models.base import Base, PaymentStatus, utcnow


class Payment(Base):
    """Settlement batch aggregating services for one partner over a period.

    ``total`` is derived: it is only correct as of the last call to
    ``app.payments.reconciliation.recompute_total``.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    partner_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    period_from: Mapped[Optional[date]] = mapped_column(Date)
    period_to: Mapped[Optional[date]] = mapped_column(Date)
    week_key: Mapped[Optional[str]] = mapped_column(String(16), index=True)
    week_start: Mapped[Optional[date]] = mapped_column(Date)
    week_end: Mapped[Optional[date]] = mapped_column(Date)

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[str] = mapped_column(PaymentStatus, nullable=False, default="PENDING")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes_log: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    links: Mapped[list["PaymentServiceLink"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentServiceLink.created_at",
    )

    __table_args__ = (
        Index("ix_payments_partner_status", "tenant_id", "partner_id", "status"),
        Index("ix_payments_created_at", "created_at"),
    )

    @property
    def service_ids(self) -> list[str]:
        return [link.service_ref for link in self.links]


class PaymentServiceLink(Base):
    """One entry of a payment's service set.

    ``service_ref`` keeps the identifier exactly as it was written, which may
    be either storage form of the service id.
    """

    __tablename__ = "payment_service_links"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    payment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )

    payment: Mapped[Payment] = relationship(back_populates="links")

    __table_args__ = (
        UniqueConstraint(
            "payment_id", "service_ref", name="uq_payment_service_links_payment_ref"
        ),
    )
