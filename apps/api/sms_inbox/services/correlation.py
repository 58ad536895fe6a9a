from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from sms_inbox.core.logging_config import log_structured
from sms_inbox.models.campaigns import BulkRecipient
from sms_inbox.models.enums import RecipientStatus
from sms_inbox.models.messaging import Message

logger = logging.getLogger("sms_inbox.correlation")


@dataclass(frozen=True)
class CampaignCorrelation:
    campaign_id: UUID
    recipient_id: UUID | None
    marked_replied: bool


def correlate_reply(
    *,
    session: Session,
    prior_outbound: Message | None,
    contact_number: str,
    response_message_id: UUID,
    now: datetime,
) -> CampaignCorrelation | None:
    """Tie an inbound reply back to the bulk recipient it answers.

    Only a `sent` recipient moves to `replied`; later replies leave it as is.
    """
    if prior_outbound is None or prior_outbound.campaign_id is None:
        return None

    recipient = (
        session.execute(
            select(BulkRecipient)
            .where(
                BulkRecipient.campaign_id == prior_outbound.campaign_id,
                or_(
                    BulkRecipient.phone_number == contact_number,
                    BulkRecipient.sent_message_id == prior_outbound.id,
                ),
            )
            .order_by(BulkRecipient.position.asc())
            .with_for_update()
        )
        .scalars()
        .first()
    )
    if recipient is None:
        return CampaignCorrelation(
            campaign_id=prior_outbound.campaign_id, recipient_id=None, marked_replied=False
        )

    if recipient.status != RecipientStatus.sent:
        return CampaignCorrelation(
            campaign_id=prior_outbound.campaign_id, recipient_id=recipient.id, marked_replied=False
        )

    recipient.status = RecipientStatus.replied
    recipient.replied_at = now
    recipient.response_message_id = response_message_id
    session.add(recipient)
    session.flush()

    log_structured(
        logger,
        "campaign.recipient_replied",
        campaign_id=prior_outbound.campaign_id,
        recipient_id=recipient.id,
        response_message_id=response_message_id,
    )
    return CampaignCorrelation(
        campaign_id=prior_outbound.campaign_id, recipient_id=recipient.id, marked_replied=True
    )
