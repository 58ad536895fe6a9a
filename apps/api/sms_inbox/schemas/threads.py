from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ThreadListItem(BaseModel):
    id: UUID
    contact_id: UUID
    contact_phone_number: str
    contact_display_name: str | None
    gateway_id: UUID
    resolved_group_id: UUID
    is_resolved: bool
    resolved_at: datetime | None
    last_message_at: datetime | None
    unacknowledged_count: int


class ThreadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID
    gateway_id: UUID
    resolved_group_id: UUID
    is_resolved: bool
    resolved_at: datetime | None
    last_message_at: datetime | None
    updated_at: datetime


class ThreadReclassifyRequest(BaseModel):
    resolved_group_id: UUID
