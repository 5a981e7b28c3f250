"""
Audit sink.

Every ProposalGovernor transition, every PolicyStore write and every
consent change appends one row. Flush only; the caller owns the commit
so the audit entry lands in the same transaction as the change it
describes.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def record_audit(
    db: Session,
    user_id: str,
    action: str,
    entity: str,
    entity_id: Any,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id),
        old_value=old_value,
        new_value=new_value,
    )
    db.add(entry)
    return entry
