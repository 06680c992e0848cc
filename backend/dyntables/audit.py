from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from . import models


def log_action(
    db: Session,
    tenant_id: str,
    user_id: str | UUID,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict | None = None,
):
    """Stage an audit entry; it commits with the caller's unit."""
    log = models.AuditLog(
        tenant_id=tenant_id,
        user_id=str(user_id),
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id else None,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    return log


def list_actions(
    db: Session,
    tenant_id: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
):
    query = db.query(models.AuditLog).filter(models.AuditLog.tenant_id == tenant_id)
    if target_type:
        query = query.filter(models.AuditLog.target_type == target_type)
    if target_id:
        query = query.filter(models.AuditLog.target_id == str(target_id))
    return query.order_by(models.AuditLog.created_at.asc()).all()
