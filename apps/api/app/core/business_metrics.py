"""Business metrics catalog with standardized naming.

This module defines all business metrics that can be emitted by the application.
Use the constants to ensure consistent naming across the codebase.
"""

from enum import Enum


class MetricCategory(str, Enum):
    """Categories for grouping business metrics."""

    SERVICE = "service"
    PAYMENT = "payment"
    SECURITY = "security"


class BusinessMetric:
    """Catalog of all business metrics with standardized naming."""

    # Service metrics
    SERVICE_CREATED = "ServiceCreated"
    SERVICE_BULK_CREATED = "ServiceBulkCreated"
    SERVICE_UPDATED = "ServiceUpdated"
    SERVICE_DELETED = "ServiceDeleted"
    SERVICE_MUTATION_BLOCKED = "ServiceMutationBlocked"

    # Payment metrics
    PAYMENT_CREATED = "PaymentCreated"
    PAYMENT_UPDATED = "PaymentUpdated"
    PAYMENT_DELETED = "PaymentDeleted"
    PAYMENT_ITEM_ADDED = "PaymentItemAdded"
    PAYMENT_ITEM_REMOVED = "PaymentItemRemoved"
    PAYMENT_TOTAL_RECOMPUTED = "PaymentTotalRecomputed"
    PAYMENT_APPROVED_BY_PARTNER = "PaymentApprovedByPartner"
    PAYMENT_DECLINED_BY_PARTNER = "PaymentDeclinedByPartner"
    PAYMENT_NOTE_ADDED = "PaymentNoteAdded"

    # Reconciliation metrics
    ELIGIBILITY_QUERIED = "EligibilityQueried"
    LOCK_STATUS_QUERIED = "LockStatusQueried"
    LOCK_ANNOTATION_DEGRADED = "LockAnnotationDegraded"

    # Security metrics
    PERMISSION_DENIED = "PermissionDenied"
