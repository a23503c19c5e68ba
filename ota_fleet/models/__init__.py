from ota_fleet.models.audit_log import AuditLog
from ota_fleet.models.device import Device
from ota_fleet.models.firmware import Firmware, TransportType
from ota_fleet.models.update_job import JobStatus, RolloutStrategy, UpdateJob
from ota_fleet.models.user import User, UserRole

__all__ = [
    "AuditLog",
    "Device",
    "Firmware",
    "JobStatus",
    "RolloutStrategy",
    "TransportType",
    "UpdateJob",
    "User",
    "UserRole",
]
