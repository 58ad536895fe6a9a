from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from sms_inbox.core.errors import AlreadyAcknowledgedOrNotFound, NotFound
from sms_inbox.models.enums import MessageDirection
from sms_inbox.models.messaging import Message, Thread
from sms_inbox.services.audit import log_event


@dataclass(frozen=True)
class AcknowledgementResult:
    message_id: UUID
    acknowledged_at: datetime
    acknowledged_by: UUID


def acknowledge_message(
    *,
    session: Session,
    tenant_id: UUID,
    message_id: UUID,
    user_id: UUID,
    now: datetime,
) -> AcknowledgementResult:
    # Conditional update: of two racing callers exactly one sees a row change.
    result = session.execute(
        update(Message)
        .where(
            Message.id == message_id,
            Message.tenant_id == tenant_id,
            Message.direction == MessageDirection.inbound,
            Message.acknowledged_at.is_(None),
        )
        .values(acknowledged_at=now, acknowledged_by_user_id=user_id)
    )
    if result.rowcount != 1:
        raise AlreadyAcknowledgedOrNotFound("Message not found or already acknowledged")

    escalation_level, thread_id = session.execute(
        select(Message.escalation_level, Message.thread_id).where(Message.id == message_id)
    ).one()
    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=user_id,
        event_type="message.acknowledged",
        entity_type="message",
        entity_id=message_id,
        event_data={
            "thread_id": str(thread_id),
            "escalation_level_at_ack": int(escalation_level),
        },
    )
    return AcknowledgementResult(message_id=message_id, acknowledged_at=now, acknowledged_by=user_id)


def acknowledge_thread(
    *,
    session: Session,
    tenant_id: UUID,
    thread_id: UUID,
    user_id: UUID,
    now: datetime,
) -> list[AcknowledgementResult]:
    thread = session.execute(
        select(Thread.id).where(Thread.id == thread_id, Thread.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if thread is None:
        raise NotFound("Thread not found")

    pending = (
        session.execute(
            select(Message.id)
            .where(
                Message.thread_id == thread_id,
                Message.direction == MessageDirection.inbound,
                Message.acknowledged_at.is_(None),
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        .scalars()
        .all()
    )

    acknowledged: list[AcknowledgementResult] = []
    for message_id in pending:
        try:
            acknowledged.append(
                acknowledge_message(
                    session=session,
                    tenant_id=tenant_id,
                    message_id=message_id,
                    user_id=user_id,
                    now=now,
                )
            )
        except AlreadyAcknowledgedOrNotFound:
            # Someone else acknowledged it between the read and the update.
            continue
    return acknowledged
