from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class RoutingSimulateRequest(BaseModel):
    gateway_id: UUID
    from_number: str | None = Field(default=None, max_length=64)
    content: str = Field(default="", max_length=2000)


class RoutingSimulateMatchedRule(BaseModel):
    id: UUID
    name: str
    kind: str
    priority: int


class RoutingSimulateOut(BaseModel):
    resolved_group_id: UUID | None
    source: str | None
    is_fallback: bool
    matched_rule: RoutingSimulateMatchedRule | None
    explanation: str
