# Overview: Append-only audit trail for ledger mutations.

from __future__ import annotations

from typing import Any, Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- Exactly one event per committed atomic unit of work.
- Events are written inside the same DB transaction as the mutation they
  record; a rollback discards the event too.
- Idempotent no-ops (e.g. a replayed webhook) write nothing.
"""

SOURCE_API = "api"
SOURCE_WEBHOOK = "webhook"
SOURCE_POLL = "poll"
SOURCE_CLI = "cli"


def record_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    source: str = SOURCE_API,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
    note: Optional[str] = None,
) -> AuditEvent:
    """
    Append an audit event to the current unit of work.

    Flushes but never commits; the caller owns the transaction.
    """
    ev = AuditEvent(
        actor_user_id=actor_user_id,
        source=source,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before=before,
        after=after,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def snapshot(model, *fields: str) -> dict[str, Any]:
    """JSON-safe subset of a model's to_dict() for before/after records."""
    data = model.to_dict()
    if not fields:
        return data
    return {f: data.get(f) for f in fields}


def get_entity_history(entity_type: str, entity_id: int) -> list[AuditEvent]:
    return db.session.query(AuditEvent).filter_by(
        entity_type=entity_type,
        entity_id=entity_id,
    ).order_by(AuditEvent.occurred_at, AuditEvent.id).all()
