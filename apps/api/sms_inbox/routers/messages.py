from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sms_inbox.core.deps import TenantContext, require_tenant
from sms_inbox.core.http import get_http_client
from sms_inbox.db.session import get_session
from sms_inbox.schemas.messages import AcknowledgeOut, AcknowledgeRequest, MessageSendOut
from sms_inbox.services.acknowledgement import acknowledge_message
from sms_inbox.services.outbound import send_outbound_message

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/acknowledge", response_model=AcknowledgeOut)
def messages_acknowledge(
    payload: AcknowledgeRequest,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> AcknowledgeOut:
    result = acknowledge_message(
        session=session,
        tenant_id=ctx.tenant_id,
        message_id=payload.message_id,
        user_id=ctx.user.id,
        now=datetime.now(UTC),
    )
    session.commit()
    return AcknowledgeOut(
        message_id=result.message_id,
        acknowledged_at=result.acknowledged_at,
        acknowledged_by=result.acknowledged_by,
    )


@router.post("/{message_id}/send", response_model=MessageSendOut)
def messages_send(
    message_id: UUID,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
    client: httpx.Client = Depends(get_http_client),
) -> MessageSendOut:
    result = send_outbound_message(
        session=session,
        client=client,
        tenant_id=ctx.tenant_id,
        message_id=message_id,
        actor_user_id=ctx.user.id,
    )
    session.commit()
    return MessageSendOut(
        message_id=result.message_id,
        status=result.status,
        external_message_id=result.external_message_id,
        error_message=result.error_message,
    )
