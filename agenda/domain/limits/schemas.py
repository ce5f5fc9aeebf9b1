"""Limits domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ViolationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: str
    type: str
    severity: str
    message: Optional[str] = None
    action: str
    details: Optional[dict] = None
    resolved: bool
    created_at: Optional[datetime] = None


class LimiterStats(BaseModel):
    totalKeys: int
    activeWindows: int
