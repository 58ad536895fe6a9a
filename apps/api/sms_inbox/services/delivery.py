from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.errors import ValidationError
from sms_inbox.core.logging_config import log_structured
from sms_inbox.models.enums import MessageDirection, MessageStatus
from sms_inbox.models.messaging import DeliveryStatusEvent, Message

logger = logging.getLogger("sms_inbox.delivery")

REPORTABLE_STATUSES = {
    MessageStatus.queued,
    MessageStatus.sent,
    MessageStatus.delivered,
    MessageStatus.failed,
    MessageStatus.undelivered,
}


@dataclass(frozen=True)
class DeliveryStatusInput:
    external_message_id: str | None
    status: str | None
    error_code: str | None = None
    error_message: str | None = None
    timestamp: datetime | None = None
    raw_payload: dict | None = None


@dataclass(frozen=True)
class DeliveryStatusResult:
    status: str  # updated|ignored
    message_id: UUID | None = None


def _parse_status(raw: str) -> MessageStatus:
    try:
        parsed = MessageStatus(raw.strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unsupported delivery status: {raw}") from exc
    if parsed not in REPORTABLE_STATUSES:
        raise ValidationError(f"Unsupported delivery status: {raw}")
    return parsed


def apply_delivery_status(*, session: Session, payload: DeliveryStatusInput) -> DeliveryStatusResult:
    external_id = (payload.external_message_id or "").strip()
    if not external_id or not (payload.status or "").strip():
        raise ValidationError("Missing required fields")
    status = _parse_status(payload.status or "")

    event_at = payload.timestamp or datetime.now(UTC)
    if event_at.tzinfo is None:
        event_at = event_at.replace(tzinfo=UTC)

    message = (
        session.execute(
            select(Message)
            .where(
                Message.external_message_id == external_id,
                Message.direction == MessageDirection.outbound,
            )
            .order_by(Message.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        .scalars()
        .first()
    )
    if message is None:
        # Providers retry unknown ids forever if we error; acknowledge and drop.
        log_structured(
            logger,
            "delivery.unknown_external_id",
            level=logging.WARNING,
            external_message_id=external_id,
        )
        return DeliveryStatusResult(status="ignored")

    message.status = status
    message.error_message = payload.error_message
    if status == MessageStatus.delivered:
        message.delivered_at = event_at
    session.add(message)
    session.add(
        DeliveryStatusEvent(
            message_id=message.id,
            status=status,
            external_message_id=external_id,
            error_code=payload.error_code,
            error_message=payload.error_message,
            raw_payload=payload.raw_payload or {},
            event_at=event_at,
        )
    )
    session.flush()
    log_structured(
        logger,
        "delivery.status_applied",
        message_id=message.id,
        status=status.value,
    )
    return DeliveryStatusResult(status="updated", message_id=message.id)
