from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.errors import GatewaySendError, InvalidState, NotFound, ValidationError
from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.metrics import observe_outbound_send
from sms_inbox.models.enums import MessageDirection, MessageStatus
from sms_inbox.models.messaging import Contact, DeliveryStatusEvent, Gateway, Message, Thread
from sms_inbox.services.audit import log_event
from sms_inbox.services.gateway_client import send_sms

logger = logging.getLogger("sms_inbox.outbound")


@dataclass(frozen=True)
class OutboundSendResult:
    message_id: UUID
    status: MessageStatus
    external_message_id: str | None
    error_message: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    sent: int
    failed: int
    skipped: int


def queue_thread_reply(
    *,
    session: Session,
    tenant_id: UUID,
    thread_id: UUID,
    content: str,
    actor_user_id: UUID | None,
    now: datetime,
) -> Message:
    """Queue an agent reply on a thread; the scheduler or `/send` delivers it."""
    body = (content or "").strip()
    if not body:
        raise ValidationError("Missing required fields")

    thread = session.execute(
        select(Thread).where(Thread.id == thread_id, Thread.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if thread is None:
        raise NotFound("Thread not found")
    contact = session.get(Contact, thread.contact_id)
    gateway = session.get(Gateway, thread.gateway_id)
    if contact is None or gateway is None:
        raise NotFound("Thread not found")

    message = Message(
        tenant_id=tenant_id,
        thread_id=thread.id,
        gateway_id=gateway.id,
        direction=MessageDirection.outbound,
        from_number=gateway.phone_number,
        to_number=contact.phone_number,
        content=body,
        resolved_group_id=thread.resolved_group_id,
        status=MessageStatus.queued,
        created_at=now,
    )
    session.add(message)
    thread.last_message_at = now
    thread.updated_at = now
    session.add(thread)
    session.flush()

    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type="message.queued",
        entity_type="message",
        entity_id=message.id,
        event_data={"thread_id": str(thread.id)},
    )
    return message


def send_outbound_message(
    *,
    session: Session,
    client: httpx.Client,
    tenant_id: UUID,
    message_id: UUID,
    actor_user_id: UUID | None = None,
) -> OutboundSendResult:
    """Hand one queued outbound message to its gateway.

    The row stays locked for the duration of the gateway call so two callers
    can never send the same message; the loser sees it already processed.
    A gateway failure is recorded on the message, not raised.
    """
    message = session.execute(
        select(Message)
        .where(
            Message.id == message_id,
            Message.tenant_id == tenant_id,
            Message.direction == MessageDirection.outbound,
        )
        .with_for_update()
    ).scalar_one_or_none()
    if message is None:
        raise NotFound("Message not found")
    if message.status != MessageStatus.queued:
        raise InvalidState(f"Message already processed (status: {message.status.value})")

    gateway = session.get(Gateway, message.gateway_id)
    try:
        if gateway is None or not gateway.is_active:
            raise GatewaySendError("Gateway is not active")
        result = send_sms(
            client,
            gateway=gateway,
            to_number=message.to_number,
            body=message.content,
            media_urls=message.media_urls,
        )
    except GatewaySendError as exc:
        log_structured(
            logger,
            "outbound.send_failed",
            level=logging.WARNING,
            message_id=message.id,
            status_code=exc.status_code,
            error=str(exc),
        )
        message.status = MessageStatus.failed
        message.error_message = str(exc)
        session.add(message)
        session.flush()
        log_event(
            session=session,
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            event_type="message.send_failed",
            entity_type="message",
            entity_id=message.id,
            event_data={"error": str(exc)},
        )
        observe_outbound_send(outcome="failed")
        return OutboundSendResult(
            message_id=message.id,
            status=message.status,
            external_message_id=None,
            error_message=message.error_message,
        )

    sent_at = datetime.now(UTC)
    message.status = MessageStatus.sent
    message.external_message_id = result.external_message_id
    message.sent_at = sent_at
    message.error_message = None
    session.add(message)
    session.add(
        DeliveryStatusEvent(
            message_id=message.id,
            status=MessageStatus.sent,
            external_message_id=result.external_message_id,
            raw_payload=result.raw,
            event_at=sent_at,
        )
    )
    session.flush()
    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type="message.sent",
        entity_type="message",
        entity_id=message.id,
        event_data={"external_message_id": result.external_message_id},
    )
    observe_outbound_send(outcome="sent")
    log_structured(logger, "outbound.sent", message_id=message.id, external_message_id=result.external_message_id)
    return OutboundSendResult(
        message_id=message.id,
        status=message.status,
        external_message_id=result.external_message_id,
    )


def dispatch_queued_messages(*, session: Session, client: httpx.Client, limit: int) -> DispatchResult:
    """Send queued agent and automatic replies, oldest first, committing each.

    Campaign messages are left to the campaign run that created them.
    """
    rows = session.execute(
        select(Message.id, Message.tenant_id)
        .where(
            Message.direction == MessageDirection.outbound,
            Message.status == MessageStatus.queued,
            Message.campaign_id.is_(None),
        )
        .order_by(Message.created_at.asc(), Message.id.asc())
        .limit(limit)
    ).all()
    session.rollback()

    sent = failed = skipped = 0
    for message_id, tenant_id in rows:
        try:
            result = send_outbound_message(
                session=session, client=client, tenant_id=tenant_id, message_id=message_id
            )
            session.commit()
        except InvalidState:
            # Another dispatcher or an agent got to it first.
            session.rollback()
            skipped += 1
            continue
        except Exception:
            logger.exception("outbound dispatch failed for message %s", message_id)
            session.rollback()
            failed += 1
            continue
        if result.status == MessageStatus.sent:
            sent += 1
        else:
            failed += 1

    if rows:
        log_structured(logger, "outbound.dispatch", sent=sent, failed=failed, skipped=skipped)
    return DispatchResult(sent=sent, failed=failed, skipped=skipped)
