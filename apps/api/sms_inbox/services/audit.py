from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from sms_inbox.models.audit import AuditEvent


def log_event(
    *,
    session: Session,
    tenant_id: UUID,
    actor_user_id: UUID | None,
    event_type: str,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    event_data: dict,
) -> AuditEvent:
    evt = AuditEvent(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        event_data=event_data,
    )
    session.add(evt)
    session.flush()
    return evt
