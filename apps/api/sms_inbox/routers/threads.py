from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from sms_inbox.core.deps import TenantContext, require_tenant
from sms_inbox.db.session import get_session
from sms_inbox.schemas.messages import AcknowledgeOut, MessageOut, ThreadAcknowledgeOut, ThreadReplyRequest
from sms_inbox.schemas.threads import ThreadListItem, ThreadOut, ThreadReclassifyRequest
from sms_inbox.services.acknowledgement import acknowledge_thread
from sms_inbox.services.outbound import queue_thread_reply
from sms_inbox.services.threads import close_thread, list_thread_messages, list_threads, reclassify_thread

router = APIRouter(prefix="/threads", tags=["threads"])


@router.get("", response_model=list[ThreadListItem])
def threads_list(
    group_id: UUID | None = Query(default=None),
    include_resolved: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> list[ThreadListItem]:
    items = list_threads(
        session=session,
        tenant_id=ctx.tenant_id,
        group_id=group_id,
        include_resolved=include_resolved,
        limit=limit,
    )
    return [ThreadListItem(**item) for item in items]


@router.get("/{thread_id}/messages", response_model=list[MessageOut])
def thread_messages(
    thread_id: UUID,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> list[MessageOut]:
    messages = list_thread_messages(session=session, tenant_id=ctx.tenant_id, thread_id=thread_id)
    return [MessageOut.model_validate(m) for m in messages]


@router.post("/{thread_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def thread_reply(
    thread_id: UUID,
    payload: ThreadReplyRequest,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> MessageOut:
    message = queue_thread_reply(
        session=session,
        tenant_id=ctx.tenant_id,
        thread_id=thread_id,
        content=payload.content,
        actor_user_id=ctx.user.id,
        now=datetime.now(UTC),
    )
    session.commit()
    return MessageOut.model_validate(message)


@router.patch("/{thread_id}", response_model=ThreadOut)
def thread_reclassify(
    thread_id: UUID,
    payload: ThreadReclassifyRequest,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> ThreadOut:
    thread = reclassify_thread(
        session=session,
        tenant_id=ctx.tenant_id,
        thread_id=thread_id,
        group_id=payload.resolved_group_id,
        actor_user_id=ctx.user.id,
    )
    session.commit()
    return ThreadOut.model_validate(thread)


@router.post("/{thread_id}/resolve", response_model=ThreadOut)
def thread_resolve(
    thread_id: UUID,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> ThreadOut:
    thread = close_thread(
        session=session,
        tenant_id=ctx.tenant_id,
        thread_id=thread_id,
        actor_user_id=ctx.user.id,
    )
    session.commit()
    return ThreadOut.model_validate(thread)


@router.post("/{thread_id}/acknowledge", response_model=ThreadAcknowledgeOut)
def thread_acknowledge(
    thread_id: UUID,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> ThreadAcknowledgeOut:
    results = acknowledge_thread(
        session=session,
        tenant_id=ctx.tenant_id,
        thread_id=thread_id,
        user_id=ctx.user.id,
        now=datetime.now(UTC),
    )
    session.commit()
    return ThreadAcknowledgeOut(
        thread_id=thread_id,
        acknowledged_count=len(results),
        acknowledged=[
            AcknowledgeOut(
                message_id=r.message_id,
                acknowledged_at=r.acknowledged_at,
                acknowledged_by=r.acknowledged_by,
            )
            for r in results
        ],
    )
