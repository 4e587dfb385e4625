"""Helpers for validating role access and partner workflow in Payments module."""

from __future__ import annotations

from typing import Any

from app.auth.schemas import AuthContext
from app.common.models import Payment
from app.core.errors import ForbiddenError, StateTransitionError

PARTNER_REVIEWABLE_STATUS = "SHARED"
PARTNER_DECISIONS = frozenset({"APPROVED", "DECLINED"})


def require_staff(ctx: AuthContext, action: str) -> None:
    """
    Check that the caller is admin or finance.

    Raises:
        ForbiddenError: If the caller is a partner
    """
    if not ctx.is_staff:
        raise ForbiddenError(f"Only staff can {action}")


def validate_partner_update(payment: Payment, patch: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce a partner's update to the only change partners may make.

    A partner reviews a payment that finance has shared with them: the payment
    must be SHARED and the requested status APPROVED or DECLINED. Every other
    field in the patch is discarded.

    Returns:
        The reduced patch, ``{"status": ...}``

    Raises:
        StateTransitionError: For any other status or transition
    """
    requested = patch.get("status")
    requested = str(requested).upper() if requested else None

    if payment.status != PARTNER_REVIEWABLE_STATUS:
        raise StateTransitionError(
            f"Partners can only review payments in {PARTNER_REVIEWABLE_STATUS} status",
            current_status=payment.status,
            requested_status=requested,
        )
    if requested not in PARTNER_DECISIONS:
        raise StateTransitionError(
            "Partners can only approve or decline a shared payment",
            current_status=payment.status,
            requested_status=requested,
        )
    return {"status": requested}
