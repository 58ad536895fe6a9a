from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class CampaignRunRequest(BaseModel):
    campaign_id: UUID


class CampaignRunOut(BaseModel):
    campaign_id: UUID
    status: str
    sent: int
    failed: int
    total: int
