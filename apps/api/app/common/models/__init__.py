"""Models package - exports all models.

Existing imports like:
    from app.common.models import Service, Payment, Base
resolve here.

Models are organized into:
- base: Base class, metadata, and enums
- audit: audit trail
- services: billable services performed by partners
- payments: partner settlement batches and their service links
"""

from __future__ import annotations

from app.common.models.base import (
    Base,
    metadata,
    NAMING_CONVENTION,
    PAYMENT_STATUSES,
    PaymentStatus,
)
from app.common.models.audit import AuditLog
from app.common.models.services import Service
from app.common.models.payments import Payment, PaymentServiceLink

__all__ = [
    "Base",
    "metadata",
    "NAMING_CONVENTION",
    "PAYMENT_STATUSES",
    "PaymentStatus",
    "AuditLog",
    "Service",
    "Payment",
    "PaymentServiceLink",
]
