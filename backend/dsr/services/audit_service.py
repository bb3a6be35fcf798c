# Overview: Append-only audit trail for cash and reconciliation state transitions.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit trail invariants:

- Append-only. No updates or deletes of existing events.
- No domain logic here; callers decide what happened.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back workflow leaves no audit row behind.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    store_id: int | None = None,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        store_id=store_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=(note[:255] if note else None),
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    store_id: int | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    """Newest first. Filters are ANDed."""
    q = db.session.query(AuditEvent)
    if entity_type is not None:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if store_id is not None:
        q = q.filter(AuditEvent.store_id == store_id)
    return q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
