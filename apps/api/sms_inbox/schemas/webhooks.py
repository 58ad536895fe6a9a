from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DeliveryStatusRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    external_message_id: str | None = None
    status: str | None = None
    error_code: str | int | None = None
    error_message: str | None = None
    timestamp: datetime | None = None


class DeliveryStatusOut(BaseModel):
    status: str
    message_id: UUID | None = None
