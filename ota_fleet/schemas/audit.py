from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    action: str
    target_type: str
    target_id: str | None
    details: dict[str, Any] | None
    created_at: datetime


class StatsResponse(BaseModel):
    total_devices: int
    active_updates: int
    firmware_versions: int
    success_rate: float
