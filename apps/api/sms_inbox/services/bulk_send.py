from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.errors import GatewaySendError, InvalidState, NotFound
from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.metrics import observe_bulk_recipient
from sms_inbox.models.campaigns import BulkCampaign, BulkRecipient
from sms_inbox.models.enums import CampaignStatus, MessageDirection, MessageStatus, RecipientStatus
from sms_inbox.models.messaging import DeliveryStatusEvent, Gateway, Message
from sms_inbox.services.audit import log_event
from sms_inbox.services.gateway_client import send_sms
from sms_inbox.services.ingest.normalize import normalize_identifier
from sms_inbox.services.threads import get_or_create_contact, get_or_create_open_thread

logger = logging.getLogger("sms_inbox.bulk")

RUNNABLE_STATUSES = {CampaignStatus.draft, CampaignStatus.pending}

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")


@dataclass(frozen=True)
class BulkRunResult:
    campaign_id: UUID
    status: CampaignStatus
    sent: int
    failed: int
    total: int


def render_template(template: str, metadata: Mapping[str, object] | None) -> str:
    """Fill `{{key}}` placeholders from recipient metadata; unknown keys render empty."""
    values = metadata or {}

    def _sub(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, template or "")


def _load_gateways(*, session: Session, campaign: BulkCampaign) -> list[Gateway]:
    query = select(Gateway).where(Gateway.tenant_id == campaign.tenant_id, Gateway.is_active.is_(True))
    if campaign.gateway_id is not None:
        query = query.where(Gateway.id == campaign.gateway_id)
    return list(session.execute(query.order_by(Gateway.created_at.asc(), Gateway.id.asc())).scalars().all())


def _send_to_recipient(
    *,
    session: Session,
    client: httpx.Client,
    campaign: BulkCampaign,
    recipient: BulkRecipient,
    gateway: Gateway,
) -> bool:
    now = datetime.now(UTC)
    phone_number = normalize_identifier(recipient.phone_number)
    body = render_template(campaign.message_template, recipient.recipient_metadata)

    try:
        with session.begin_nested():
            if not phone_number or phone_number == "+":
                raise ValueError(f"Invalid phone number: {recipient.phone_number!r}")
            contact = get_or_create_contact(
                session=session, tenant_id=campaign.tenant_id, phone_number=phone_number
            )
            thread, _created = get_or_create_open_thread(
                session=session,
                tenant_id=campaign.tenant_id,
                gateway_id=gateway.id,
                contact_id=contact.id,
                group_id=campaign.source_group_id,
                now=now,
            )
            # Replies to the campaign land with the sending group.
            thread.resolved_group_id = campaign.source_group_id
            thread.last_message_at = now
            thread.updated_at = now
            session.add(thread)

            message = Message(
                tenant_id=campaign.tenant_id,
                thread_id=thread.id,
                gateway_id=gateway.id,
                direction=MessageDirection.outbound,
                from_number=gateway.phone_number,
                to_number=phone_number,
                content=body,
                resolved_group_id=campaign.source_group_id,
                campaign_id=campaign.id,
                status=MessageStatus.queued,
                created_at=now,
            )
            session.add(message)
            session.flush()
    except Exception as exc:
        logger.exception("bulk recipient %s could not be prepared", recipient.id)
        recipient.status = RecipientStatus.failed
        recipient.error_message = str(exc)
        session.add(recipient)
        session.flush()
        return False

    try:
        result = send_sms(client, gateway=gateway, to_number=phone_number, body=body)
    except GatewaySendError as exc:
        log_structured(
            logger,
            "bulk.recipient_failed",
            level=logging.WARNING,
            campaign_id=campaign.id,
            recipient_id=recipient.id,
            status_code=exc.status_code,
            error=str(exc),
        )
        message.status = MessageStatus.failed
        message.error_message = str(exc)
        recipient.status = RecipientStatus.failed
        recipient.sent_message_id = message.id
        recipient.error_message = str(exc)
        session.add_all([message, recipient])
        session.flush()
        return False

    sent_at = datetime.now(UTC)
    message.status = MessageStatus.sent
    message.external_message_id = result.external_message_id
    message.sent_at = sent_at
    recipient.status = RecipientStatus.sent
    recipient.sent_message_id = message.id
    recipient.sent_at = sent_at
    recipient.error_message = None
    session.add_all([message, recipient])
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
    return True


def _mark_recipient_failed(*, session: Session, recipient_id: UUID, error: str) -> None:
    recipient = session.get(BulkRecipient, recipient_id)
    if recipient is None:
        return
    recipient.status = RecipientStatus.failed
    recipient.error_message = error or "Unexpected send error"
    session.add(recipient)
    session.flush()


def run_bulk_campaign(
    *,
    session: Session,
    client: httpx.Client,
    tenant_id: UUID,
    campaign_id: UUID,
    delay_seconds: float,
    actor_user_id: UUID | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BulkRunResult:
    """Send a campaign to every recipient in list order.

    Progress is committed per recipient so a crash leaves accurate counters;
    a failed recipient never stops the run.
    """
    campaign = session.execute(
        select(BulkCampaign)
        .where(BulkCampaign.id == campaign_id, BulkCampaign.tenant_id == tenant_id)
        .with_for_update()
    ).scalar_one_or_none()
    if campaign is None:
        raise NotFound("Campaign not found")
    if campaign.status not in RUNNABLE_STATUSES:
        raise InvalidState(f"Campaign already processed (status: {campaign.status.value})")

    gateways = _load_gateways(session=session, campaign=campaign)
    if not gateways:
        # Nothing can ever be sent; close the campaign instead of leaving it runnable.
        campaign.status = CampaignStatus.failed
        campaign.completed_at = datetime.now(UTC)
        session.add(campaign)
        session.commit()
        log_structured(logger, "bulk.campaign_no_gateway", level=logging.WARNING, campaign_id=campaign.id)
        raise InvalidState("No active gateways available")

    recipients = list(
        session.execute(
            select(BulkRecipient)
            .where(BulkRecipient.campaign_id == campaign.id)
            .order_by(BulkRecipient.position.asc(), BulkRecipient.id.asc())
        )
        .scalars()
        .all()
    )

    campaign.status = CampaignStatus.sending
    campaign.started_at = datetime.now(UTC)
    campaign.total_recipients = len(recipients)
    campaign.sent_count = 0
    campaign.failed_count = 0
    session.add(campaign)
    session.commit()
    log_structured(logger, "bulk.campaign_started", campaign_id=campaign.id, total=len(recipients))

    sent = 0
    failed = 0
    for index, recipient in enumerate(recipients):
        if index > 0 and delay_seconds > 0:
            sleep(delay_seconds)
        gateway = gateways[index % len(gateways)]
        recipient_id = recipient.id
        try:
            ok = _send_to_recipient(
                session=session,
                client=client,
                campaign=campaign,
                recipient=recipient,
                gateway=gateway,
            )
        except Exception as exc:
            logger.exception("bulk recipient %s failed unexpectedly", recipient_id)
            session.rollback()
            _mark_recipient_failed(session=session, recipient_id=recipient_id, error=str(exc))
            ok = False
        if ok:
            sent += 1
        else:
            failed += 1
        observe_bulk_recipient(outcome="sent" if ok else "failed")

        campaign.sent_count = sent
        campaign.failed_count = failed
        session.add(campaign)
        session.commit()

    campaign.status = CampaignStatus.completed if sent > 0 else CampaignStatus.failed
    campaign.completed_at = datetime.now(UTC)
    session.add(campaign)
    log_event(
        session=session,
        tenant_id=campaign.tenant_id,
        actor_user_id=actor_user_id,
        event_type="campaign.run",
        entity_type="bulk_campaign",
        entity_id=campaign.id,
        event_data={"status": campaign.status.value, "sent": sent, "failed": failed, "total": len(recipients)},
    )
    session.flush()
    log_structured(
        logger,
        "bulk.campaign_finished",
        campaign_id=campaign.id,
        status=campaign.status.value,
        sent=sent,
        failed=failed,
    )
    return BulkRunResult(
        campaign_id=campaign.id,
        status=campaign.status,
        sent=sent,
        failed=failed,
        total=len(recipients),
    )
