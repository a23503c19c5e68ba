from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ota_fleet.models import JobStatus, RolloutStrategy, TransportType


class JobTriggerRequest(BaseModel):
    firmware_id: UUID
    transport_type: TransportType
    strategy: RolloutStrategy = RolloutStrategy.sequential


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    firmware_id: UUID
    initiated_by: UUID
    transport_type: TransportType
    strategy: RolloutStrategy
    status: JobStatus
    progress: int
    total_devices: int
    completed_devices: int
    failed_devices: int
    created_at: datetime
    updated_at: datetime


class JobUpdate(BaseModel):
    """One job-state delta as pushed to subscribers."""

    type: str = "job_update"
    job_id: UUID
    data: dict[str, Any]
