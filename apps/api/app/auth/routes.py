from __future__ import annotations

from fastapi import APIRouter, Depends

from app.auth.dependencies import get_auth_context
from app.auth.schemas import AuthContext, AuthContextResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=AuthContextResponse)
async def me(ctx: AuthContext = Depends(get_auth_context)):
    """Identity and normalized role carried by the caller's token."""
    return AuthContextResponse(identity=ctx.identity, role=ctx.role, is_staff=ctx.is_staff)
