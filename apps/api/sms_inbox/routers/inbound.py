from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from sms_inbox.core.deps import require_webhook_signature
from sms_inbox.db.session import get_session
from sms_inbox.schemas.inbound import InboundMessageOut, InboundMessageRequest
from sms_inbox.services.ingest.inbound import InboundMessageInput, ingest_inbound_message

router = APIRouter(prefix="/inbound", tags=["inbound"], dependencies=[Depends(require_webhook_signature)])


@router.post("/messages", response_model=InboundMessageOut, status_code=status.HTTP_200_OK)
def inbound_message_ingest(
    payload: InboundMessageRequest,
    session: Session = Depends(get_session),
) -> InboundMessageOut:
    result = ingest_inbound_message(
        session=session,
        payload=InboundMessageInput(
            gateway_id=payload.gateway_id,
            from_number=payload.from_number,
            to_number=payload.to_number,
            content=payload.content,
            received_at=payload.received_at,
            campaign_id=payload.campaign_id,
            parent_message_id=payload.parent_message_id,
            external_message_id=payload.external_message_id,
            media_urls=payload.media_urls,
        ),
    )
    session.commit()
    return InboundMessageOut(
        message_id=result.message_id,
        thread_id=result.thread_id,
        resolved_group_id=result.resolved_group_id,
        is_bulk_response=result.is_bulk_response,
        campaign_id=result.campaign_id,
        parent_message_id=result.parent_message_id,
        is_fallback=result.is_fallback,
        duplicate=result.duplicate,
        auto_reply_message_id=result.auto_reply_message_id,
    )
