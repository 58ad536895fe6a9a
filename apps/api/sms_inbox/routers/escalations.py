from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sms_inbox.core.deps import require_cron_token
from sms_inbox.db.session import get_session
from sms_inbox.schemas.escalations import EscalationSweepOut
from sms_inbox.services.escalation import run_escalation_sweep

router = APIRouter(prefix="/escalations", tags=["escalations"], dependencies=[Depends(require_cron_token)])


@router.post("/sweep", response_model=EscalationSweepOut)
def escalations_sweep(session: Session = Depends(get_session)) -> EscalationSweepOut:
    result = run_escalation_sweep(session=session, now=datetime.now(UTC))
    session.commit()
    return EscalationSweepOut(
        escalated_count=result.escalated_count,
        failed_count=result.failed_count,
        by_level={str(level): count for level, count in sorted(result.by_level.items())},
        skipped=result.skipped,
    )
