from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class InboundMessageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Required fields are checked by the service so a missing one is a plain 400.
    gateway_id: str | None = None
    from_number: str | None = None
    to_number: str | None = None
    content: str | None = None
    received_at: datetime | None = None
    campaign_id: UUID | None = None
    parent_message_id: UUID | None = None
    external_message_id: str | None = Field(default=None, max_length=256)
    media_urls: list[str] | None = None


class InboundMessageOut(BaseModel):
    message_id: UUID
    thread_id: UUID
    resolved_group_id: UUID | None
    is_bulk_response: bool
    campaign_id: UUID | None
    parent_message_id: UUID | None
    is_fallback: bool
    duplicate: bool
    auto_reply_message_id: UUID | None = None
