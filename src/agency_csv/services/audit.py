"""Audit logging service"""
import json
from typing import Optional
from sqlalchemy.orm import Session

from src.agency_csv.models.audit_log import AuditLog


def log_action(
    db: Session,
    tenant_id: str,
    actor_user_id: Optional[str],
    action: str,
    target_type: str,
    target_id: Optional[str] = None,
    meta: Optional[dict] = None
) -> AuditLog:
    """Record an audit entry; committed together with the caller's changes"""
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_json=json.dumps(meta, default=str) if meta else None
    )
    db.add(audit_log)
    db.flush()
    return audit_log
