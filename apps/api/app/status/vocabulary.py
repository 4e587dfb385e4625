"""Canonical service status vocabulary and the aliases accepted for it."""

from __future__ import annotations

from typing import Optional

STATUS_VALUES = (
    "pending",
    "waiting to approve",
    "denied",
    "paid",
    "recorded",  # legacy
)

DEFAULT_SERVICE_STATUS = "recorded"

_ALIASES = {
    "waiting to approve": "waiting to approve",
    "waiting for approval": "waiting to approve",
    "shared": "waiting to approve",
    "waiting": "waiting to approve",
    "denied": "denied",
    "rejected": "denied",
    "recusado": "denied",
    "paid": "paid",
    "pago": "paid",
    "pending": "pending",
    "pendente": "pending",
    "recorded": "recorded",
    "rec": "recorded",
}


def normalize_status(value: Optional[str]) -> str:
    """Map any accepted spelling onto the canonical status; unknown values pass through lower-cased."""
    text = str(value if value is not None else "").strip().lower()
    if not text:
        return "pending"
    return _ALIASES.get(text, text)


def status_title(status: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in status.split(" "))
