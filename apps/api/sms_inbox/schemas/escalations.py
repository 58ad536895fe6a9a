from __future__ import annotations

from pydantic import BaseModel


class EscalationSweepOut(BaseModel):
    escalated_count: int
    failed_count: int
    by_level: dict[str, int]
    skipped: bool = False
