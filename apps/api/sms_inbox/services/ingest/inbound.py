from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sms_inbox.core.config import get_settings
from sms_inbox.core.errors import NoRouteFound, NotFound, ValidationError
from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.metrics import observe_inbound_message
from sms_inbox.models.campaigns import BulkCampaign
from sms_inbox.models.enums import MessageDirection, MessageStatus
from sms_inbox.models.messaging import Gateway, Message
from sms_inbox.services.auto_replies import evaluate_auto_replies
from sms_inbox.services.correlation import correlate_reply
from sms_inbox.services.ingest.normalize import normalize_identifier
from sms_inbox.services.threads import get_or_create_contact, resolve_thread

logger = logging.getLogger("sms_inbox.ingest")


@dataclass(frozen=True)
class InboundMessageInput:
    gateway_id: str | UUID | None
    from_number: str | None
    to_number: str | None
    content: str | None
    received_at: datetime | None = None
    campaign_id: UUID | None = None
    parent_message_id: UUID | None = None
    external_message_id: str | None = None
    media_urls: list[str] | None = None


@dataclass(frozen=True)
class InboundResult:
    message_id: UUID
    thread_id: UUID
    resolved_group_id: UUID | None
    is_bulk_response: bool
    campaign_id: UUID | None
    parent_message_id: UUID | None
    is_fallback: bool
    duplicate: bool = False
    auto_reply_message_id: UUID | None = None


def _required(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _parse_gateway_id(raw: str | UUID) -> UUID:
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw).strip())
    except ValueError as exc:
        raise ValidationError("Invalid gateway_id") from exc


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _result_from_message(
    message: Message, *, duplicate: bool, auto_reply: Message | None = None
) -> InboundResult:
    return InboundResult(
        message_id=message.id,
        thread_id=message.thread_id,
        resolved_group_id=message.resolved_group_id,
        is_bulk_response=message.campaign_id is not None,
        campaign_id=message.campaign_id,
        parent_message_id=message.parent_message_id,
        is_fallback=message.is_fallback,
        duplicate=duplicate,
        auto_reply_message_id=auto_reply.id if auto_reply is not None else None,
    )


def _find_duplicate(*, session: Session, gateway_id: UUID, external_message_id: str) -> Message | None:
    return session.execute(
        select(Message).where(
            Message.gateway_id == gateway_id,
            Message.direction == MessageDirection.inbound,
            Message.external_message_id == external_message_id,
        )
    ).scalar_one_or_none()


def _validate_hints(*, session: Session, tenant_id: UUID, payload: InboundMessageInput) -> None:
    if payload.campaign_id is not None:
        found = session.execute(
            select(BulkCampaign.id).where(
                BulkCampaign.id == payload.campaign_id, BulkCampaign.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if found is None:
            raise ValidationError("Unknown campaign_id")
    if payload.parent_message_id is not None:
        found = session.execute(
            select(Message.id).where(
                Message.id == payload.parent_message_id, Message.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if found is None:
            raise ValidationError("Unknown parent_message_id")


def ingest_inbound_message(*, session: Session, payload: InboundMessageInput) -> InboundResult:
    if not all(
        _required(v) for v in (payload.gateway_id, payload.from_number, payload.to_number, payload.content)
    ):
        raise ValidationError("Missing required fields")

    gateway_id = _parse_gateway_id(payload.gateway_id)  # type: ignore[arg-type]
    from_number = normalize_identifier(payload.from_number)
    to_number = normalize_identifier(payload.to_number)
    content = payload.content or ""
    external_message_id = (payload.external_message_id or "").strip() or None
    received_at = _as_utc(payload.received_at)

    gateway = session.execute(
        select(Gateway).where(Gateway.id == gateway_id, Gateway.is_active.is_(True))
    ).scalar_one_or_none()
    if gateway is None:
        raise NotFound("Gateway not found")
    tenant_id = gateway.tenant_id

    if external_message_id is not None:
        existing = _find_duplicate(
            session=session, gateway_id=gateway.id, external_message_id=external_message_id
        )
        if existing is not None:
            observe_inbound_message(outcome="duplicate")
            return _result_from_message(existing, duplicate=True)

    _validate_hints(session=session, tenant_id=tenant_id, payload=payload)

    contact = get_or_create_contact(session=session, tenant_id=tenant_id, phone_number=from_number)
    try:
        resolution = resolve_thread(
            session=session,
            tenant_id=tenant_id,
            gateway=gateway,
            contact=contact,
            body=content,
            now=received_at,
        )
    except NoRouteFound:
        observe_inbound_message(outcome="no_route")
        raise

    prior = resolution.prior_outbound
    campaign_id = prior.campaign_id if prior is not None and prior.campaign_id else payload.campaign_id
    parent_message_id = prior.id if prior is not None else payload.parent_message_id

    message = Message(
        tenant_id=tenant_id,
        thread_id=resolution.thread.id,
        gateway_id=gateway.id,
        direction=MessageDirection.inbound,
        from_number=from_number,
        to_number=to_number,
        content=content,
        media_urls=list(payload.media_urls) if payload.media_urls else None,
        resolved_group_id=resolution.group_id,
        campaign_id=campaign_id,
        parent_message_id=parent_message_id,
        is_fallback=resolution.is_fallback,
        status=MessageStatus.received,
        external_message_id=external_message_id,
        escalation_level=0,
        created_at=received_at,
    )
    try:
        with session.begin_nested():
            session.add(message)
            session.flush()
    except IntegrityError:
        if external_message_id is None:
            raise
        # A concurrent delivery of the same provider message got there first.
        existing = _find_duplicate(
            session=session, gateway_id=gateway.id, external_message_id=external_message_id
        )
        if existing is None:
            raise
        observe_inbound_message(outcome="duplicate")
        return _result_from_message(existing, duplicate=True)

    correlate_reply(
        session=session,
        prior_outbound=prior,
        contact_number=from_number,
        response_message_id=message.id,
        now=received_at,
    )

    auto_reply = evaluate_auto_replies(
        session=session,
        inbound=message,
        thread=resolution.thread,
        thread_created=resolution.created,
        now=received_at,
        tz=get_settings().opening_hours_tz(),
    )

    observe_inbound_message(outcome="continued" if resolution.is_continuation else "routed")
    log_structured(
        logger,
        "inbound.ingested",
        tenant_id=tenant_id,
        gateway_id=gateway.id,
        message_id=message.id,
        thread_id=resolution.thread.id,
        group_id=resolution.group_id,
        continuation=resolution.is_continuation,
        campaign_id=campaign_id,
        auto_reply_message_id=auto_reply.id if auto_reply is not None else None,
    )
    return _result_from_message(message, duplicate=False, auto_reply=auto_reply)
