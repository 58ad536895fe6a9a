from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sms_inbox.models.enums import MessageDirection, MessageStatus


class AcknowledgeRequest(BaseModel):
    message_id: UUID


class AcknowledgeOut(BaseModel):
    message_id: UUID
    acknowledged_at: datetime
    acknowledged_by: UUID


class ThreadAcknowledgeOut(BaseModel):
    thread_id: UUID
    acknowledged_count: int
    acknowledged: list[AcknowledgeOut]


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    thread_id: UUID
    gateway_id: UUID
    direction: MessageDirection
    from_number: str
    to_number: str
    content: str
    media_urls: list[str] | None
    resolved_group_id: UUID | None
    campaign_id: UUID | None
    parent_message_id: UUID | None
    is_fallback: bool
    status: MessageStatus
    external_message_id: str | None
    error_message: str | None
    sent_at: datetime | None
    delivered_at: datetime | None
    acknowledged_at: datetime | None
    acknowledged_by_user_id: UUID | None
    escalation_level: int
    escalated_at: datetime | None
    created_at: datetime


class ThreadReplyRequest(BaseModel):
    content: str = Field(min_length=1, max_length=1600)


class MessageSendOut(BaseModel):
    message_id: UUID
    status: MessageStatus
    external_message_id: str | None
    error_message: str | None
