from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sms_inbox.core.deps import TenantContext, require_tenant
from sms_inbox.db.session import get_session
from sms_inbox.schemas.routing import RoutingSimulateMatchedRule, RoutingSimulateOut, RoutingSimulateRequest
from sms_inbox.services.routing import simulate_route

router = APIRouter(prefix="/routing", tags=["routing"])


@router.post("/simulate", response_model=RoutingSimulateOut)
def routing_simulate(
    payload: RoutingSimulateRequest,
    ctx: TenantContext = Depends(require_tenant),
    session: Session = Depends(get_session),
) -> RoutingSimulateOut:
    result = simulate_route(
        session=session,
        tenant_id=ctx.tenant_id,
        gateway_id=payload.gateway_id,
        from_number=payload.from_number,
        body=payload.content,
    )
    decision = result.decision
    return RoutingSimulateOut(
        resolved_group_id=decision.group_id if decision else None,
        source=decision.source.value if decision else None,
        is_fallback=decision.is_fallback if decision else False,
        matched_rule=RoutingSimulateMatchedRule(**result.matched_rule) if result.matched_rule else None,
        explanation=result.explanation,
    )
