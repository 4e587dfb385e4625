"""Service status vocabulary routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from app.status.vocabulary import STATUS_VALUES, normalize_status, status_title

router = APIRouter(prefix="/status", tags=["status"])


class StatusListResponse(BaseModel):
    items: list[str]


class StatusNormalizeResponse(BaseModel):
    value: Optional[str]
    normalized: str
    title: str


@router.get("", response_model=StatusListResponse)
async def list_statuses():
    """Canonical service statuses."""
    return StatusListResponse(items=list(STATUS_VALUES))


@router.get("/normalize", response_model=StatusNormalizeResponse)
async def normalize(value: Optional[str] = Query(None)):
    normalized = normalize_status(value)
    return StatusNormalizeResponse(
        value=value,
        normalized=normalized,
        title=status_title(normalized),
    )
