"""Audit trail for mutations of services and payments."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.auth.schemas import AuthContext
from app.common.models import AuditLog


def create_audit_log(
    db: Session,
    ctx: Optional[AuthContext],
    tenant_id: UUID,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    before_json: Optional[dict] = None,
    after_json: Optional[dict] = None,
) -> AuditLog:
    """
    Record who did what to which entity.

    The entry joins the caller's transaction and is only persisted when the
    surrounding mutation commits; a rolled back mutation leaves no trace.

    Args:
        db: Database session
        ctx: Caller, or None for system actions (migrations, scripts)
        tenant_id: Tenant owning the entity
        action: Action performed (e.g. "create", "add_service")
        entity_type: Table of the entity (e.g. "payments", "services")
        entity_id: ID of the entity acted upon
        before_json: Snapshot before the action
        after_json: Snapshot after the action
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_id=ctx.identity if ctx else None,
        actor_role=ctx.role if ctx else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before_json=before_json,
        after_json=after_json,
    )
    db.add(audit_log)
    db.flush()
    return audit_log
