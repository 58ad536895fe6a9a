from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sms_inbox.core.config import get_settings
from sms_inbox.core.deps import TenantContext, require_tenant
from sms_inbox.core.http import get_http_client
from sms_inbox.db.session import get_session
from sms_inbox.schemas.campaigns import CampaignRunOut, CampaignRunRequest
from sms_inbox.services.bulk_send import run_bulk_campaign

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


@router.post("/run", response_model=CampaignRunOut)
def campaigns_run(
    payload: CampaignRunRequest,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
    client: httpx.Client = Depends(get_http_client),
) -> CampaignRunOut:
    settings = get_settings()
    result = run_bulk_campaign(
        session=session,
        client=client,
        tenant_id=ctx.tenant_id,
        campaign_id=payload.campaign_id,
        delay_seconds=settings.BULK_SEND_DELAY_SECONDS,
        actor_user_id=ctx.user.id,
    )
    session.commit()
    return CampaignRunOut(
        campaign_id=result.campaign_id,
        status=result.status.value,
        sent=result.sent,
        failed=result.failed,
        total=result.total,
    )
