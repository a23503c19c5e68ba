from ota_fleet.schemas.audit import AuditEntryResponse, StatsResponse
from ota_fleet.schemas.auth import LoginRequest, TokenResponse, UserCreateRequest, UserResponse
from ota_fleet.schemas.device import DeviceRegisterRequest, DeviceResponse
from ota_fleet.schemas.firmware import FirmwareMetadata, FirmwareResponse, FirmwareVerifyResponse
from ota_fleet.schemas.job import JobResponse, JobTriggerRequest, JobUpdate

__all__ = [
    "AuditEntryResponse",
    "StatsResponse",
    "LoginRequest",
    "TokenResponse",
    "UserCreateRequest",
    "UserResponse",
    "DeviceRegisterRequest",
    "DeviceResponse",
    "FirmwareMetadata",
    "FirmwareResponse",
    "FirmwareVerifyResponse",
    "JobResponse",
    "JobTriggerRequest",
    "JobUpdate",
]
