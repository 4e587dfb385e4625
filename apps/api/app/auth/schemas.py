from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

ROLE_ADMIN = "admin"
ROLE_FINANCE = "finance"
ROLE_PARTNER = "partner"

STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_FINANCE})

_ROLE_ALIASES = {
    "admin": ROLE_ADMIN,
    "administrator": ROLE_ADMIN,
    "root": ROLE_ADMIN,
    "finance": ROLE_FINANCE,
    "finanças": ROLE_FINANCE,
    "financas": ROLE_FINANCE,
    "partner": ROLE_PARTNER,
    "parceiro": ROLE_PARTNER,
}


def normalize_role(value: object) -> Optional[str]:
    """Map a raw role claim onto admin/finance/partner, or None if unknown."""
    if value is None:
        return None
    return _ROLE_ALIASES.get(str(value).strip().lower())


@dataclass(frozen=True)
class AuthContext:
    """Who is calling. Passed explicitly into every operation that scopes data."""

    identity: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_partner(self) -> bool:
        return self.role == ROLE_PARTNER


class AuthContextResponse(BaseModel):
    identity: str
    role: str
    is_staff: bool
