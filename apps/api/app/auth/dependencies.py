from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.auth.schemas import AuthContext, ROLE_ADMIN, normalize_role
from app.auth.utils import identity_from_claims, raw_role_from_claims, verify_token
from app.core.business_metrics import BusinessMetric
from app.core.config import settings
from app.core.metrics_service import MetricsService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_from_request(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    for name in settings.cookie_names:
        value = request.cookies.get(name)
        if value:
            return value
    return None


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    token = _token_from_request(request, credentials)
    if not token:
        raise _unauthorized("Not authenticated")

    payload = verify_token(token)
    if not payload:
        raise _unauthorized("Invalid token")

    identity = identity_from_claims(payload)
    if not identity:
        raise _unauthorized("Invalid token payload")

    raw_role = raw_role_from_claims(payload)
    role = normalize_role(raw_role)
    if role is None:
        logger.info(
            "Rejected token with unknown role",
            extra={"identity": identity, "role": raw_role},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Role not allowed",
        )

    request.state.user_id = identity
    request.state.role = role
    return AuthContext(identity=identity, role=role)


def require_roles(*roles: str) -> Callable:
    """Dependency factory restricting a route to the given roles (admin always passes)."""
    allowed = set(roles) | {ROLE_ADMIN}

    async def dependency(
        ctx: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if ctx.role not in allowed:
            MetricsService.emit_security_metric(
                metric_name=BusinessMetric.PERMISSION_DENIED,
                tenant_id=settings.tenant_id,
                actor_id=ctx.identity,
                role=ctx.role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return ctx

    return dependency
