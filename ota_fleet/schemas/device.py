from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class DeviceRegisterRequest(BaseModel):
    device_identifier: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    device_group: str = Field(..., min_length=1, max_length=128)
    metadata: dict[str, Any] | None = None


class DeviceResponse(BaseModel):
    id: UUID
    device_identifier: str
    name: str
    device_group: str
    last_seen_at: datetime | None
    current_firmware_id: UUID | None
    is_online: bool
    created_at: datetime
