"""Pydantic schemas for firmware endpoints."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ota_fleet.models.firmware import TransportType


class FirmwareMetadata(BaseModel):
    """Metadata supplied alongside an uploaded binary."""

    name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(
        ...,
        max_length=32,
        pattern=r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$",
        description="Semantic version, optionally with pre-release and build parts (e.g., '1.0.0-rc.1')",
    )
    target_device_group: str = Field(..., min_length=1, max_length=128)
    transport_type: TransportType
    description: Optional[str] = None
    release_notes: Optional[str] = None
    original_filename: Optional[str] = Field(default=None, max_length=255)


class FirmwareResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    version: str
    description: Optional[str] = None
    release_notes: Optional[str] = None
    target_device_group: str
    transport_type: TransportType
    uploader_id: UUID
    file_size: int
    sha256: str
    hmac: str
    is_active: bool
    created_at: datetime


class FirmwareVerifyResponse(BaseModel):
    firmware_id: UUID
    hash_ok: bool
    hmac_ok: bool
    valid: bool
