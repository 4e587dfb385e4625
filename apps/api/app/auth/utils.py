"""Token helpers.

Tokens are issued by the upstream identity provider; this service only
verifies them with the shared secret. ``create_access_token`` exists for
tooling and tests that need a token signed with the same secret.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from jose import JWTError, jwt

from app.core.config import settings

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12

# Claim names the identity provider has used for the caller's id, in priority order
IDENTITY_CLAIMS = ("sub", "_id", "user_id", "id")
ROLE_CLAIMS = ("role", "userType")


def create_access_token(
    claims: Mapping[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    expires_at = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload = {
        **claims,
        "exp": expires_at,
        "nonce": secrets.token_urlsafe(16),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Decode ``token``, or return None if it is malformed, expired or forged."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def _first_claim(payload: Mapping[str, Any], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        if payload.get(name):
            return str(payload[name])
    return None


def identity_from_claims(payload: Mapping[str, Any]) -> Optional[str]:
    return _first_claim(payload, IDENTITY_CLAIMS)


def raw_role_from_claims(payload: Mapping[str, Any]) -> Optional[str]:
    return _first_claim(payload, ROLE_CLAIMS)
