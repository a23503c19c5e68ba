from dataclasses import dataclass

from sqlalchemy.orm import Session

from ota_fleet.models import Device, Firmware, JobStatus, UpdateJob


@dataclass(frozen=True)
class FleetStats:
    total_devices: int
    active_updates: int
    firmware_versions: int
    success_rate: float


def get_stats(db: Session) -> FleetStats:
    total_devices = db.query(Device).count()
    active_updates = db.query(UpdateJob).filter(UpdateJob.status == JobStatus.in_progress).count()
    firmware_versions = db.query(Firmware).filter(Firmware.is_active.is_(True)).count()

    completed = db.query(UpdateJob).filter(UpdateJob.status == JobStatus.completed).count()
    failed = db.query(UpdateJob).filter(UpdateJob.status == JobStatus.failed).count()
    finished = completed + failed
    success_rate = round(completed / finished * 100, 1) if finished else 0.0

    return FleetStats(
        total_devices=total_devices,
        active_updates=active_updates,
        firmware_versions=firmware_versions,
        success_rate=success_rate,
    )
