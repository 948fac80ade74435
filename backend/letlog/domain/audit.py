# backend/letlog/domain/audit.py
from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Any) -> Optional[str]:
    if v is None:
        return None
    if is_dataclass(v):
        v = asdict(v)
    return json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Any = None,
    after: Any = None,
    created_at: Optional[datetime] = None,
) -> AuditEvent:
    """
    Append an audit row in the caller's transaction.

    - Does NOT commit (services bundle the state change and its audit row).
    - Accepts dicts or snapshot dataclasses for before/after.
    """
    row = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
    )
    if created_at is not None:
        row.created_at = created_at
    db.add(row)
    return row
