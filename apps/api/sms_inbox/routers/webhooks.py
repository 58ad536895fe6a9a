from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sms_inbox.core.deps import require_webhook_signature
from sms_inbox.db.session import get_session
from sms_inbox.schemas.webhooks import DeliveryStatusOut, DeliveryStatusRequest
from sms_inbox.services.delivery import DeliveryStatusInput, apply_delivery_status

router = APIRouter(prefix="/webhooks", tags=["webhooks"], dependencies=[Depends(require_webhook_signature)])


@router.post("/delivery-status", response_model=DeliveryStatusOut)
def delivery_status_webhook(
    payload: DeliveryStatusRequest,
    session: Session = Depends(get_session),
) -> DeliveryStatusOut:
    result = apply_delivery_status(
        session=session,
        payload=DeliveryStatusInput(
            external_message_id=payload.external_message_id,
            status=payload.status,
            error_code=str(payload.error_code) if payload.error_code is not None else None,
            error_message=payload.error_message,
            timestamp=payload.timestamp,
            raw_payload=payload.model_dump(mode="json"),
        ),
    )
    session.commit()
    return DeliveryStatusOut(status=result.status, message_id=result.message_id)
