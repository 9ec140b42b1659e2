"""Audit logging service."""

from __future__ import annotations

from typing import Optional

from extensions import db
from models import AuditLog
from services.auth import get_current_staff
from services.ownership import get_current_owner_id


def log_action(
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: str = "",
    *,
    user_id: Optional[int] = None,
) -> None:
    """Record an audit log entry.

    NOTE: This does NOT commit; the caller commits together with the
    change being recorded.
    """
    staff = get_current_staff()
    db.session.add(
        AuditLog(
            user_id=user_id if user_id is not None else get_current_owner_id(),
            staff_id=staff.id if staff else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )
