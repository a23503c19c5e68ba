"""Device registry: identity, group membership, heartbeat and firmware pointer."""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from ota_fleet.models import Device
from ota_fleet.services import audit
from ota_fleet.services.auth import DEVICES_WRITE, CallerIdentity, require_capability
from ota_fleet.services.errors import ConflictError, NotFoundError, ValidationError
from ota_fleet.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

ONLINE_WINDOW = timedelta(minutes=5)


def register(
    db: Session,
    identifier: str,
    name: str,
    group: str,
    actor: CallerIdentity,
    metadata: dict | None = None,
) -> Device:
    require_capability(actor, DEVICES_WRITE)

    fields = {}
    for field, value in (("device_identifier", identifier), ("name", name), ("device_group", group)):
        if not value or not value.strip():
            fields[field] = "must not be empty"
    if fields:
        raise ValidationError("Invalid device registration", fields=fields)

    identifier = identifier.strip()
    if db.query(Device).filter(Device.device_identifier == identifier).first():
        raise ConflictError("Device identifier already exists")

    device = Device(device_identifier=identifier, name=name.strip(), device_group=group.strip(), meta=metadata)
    db.add(device)
    try:
        db.flush()
    except sa_exc.IntegrityError as exc:
        db.rollback()
        raise ConflictError("Device identifier already exists") from exc

    audit.record(
        db,
        actor_id=actor.user_id,
        action="device_register",
        target_type="device",
        target_id=device.id,
        details={"identifier": device.device_identifier, "name": device.name},
    )
    db.commit()
    db.refresh(device)
    logger.info("Registered device %s in group %s", device.device_identifier, device.device_group)
    return device


def get_device(db: Session, device_id: uuid.UUID) -> Device:
    device = db.get(Device, device_id)
    if not device:
        raise NotFoundError("Device not found")
    return device


def list_devices(db: Session) -> list[Device]:
    # Most recently seen first; never-seen devices last, newest registrations first among them.
    return (
        db.query(Device)
        .order_by(Device.last_seen_at.is_(None), Device.last_seen_at.desc(), Device.created_at.desc())
        .all()
    )


def list_by_group(db: Session, group: str) -> list[Device]:
    """Devices in ``group``, in registration order."""
    return (
        db.query(Device)
        .filter(Device.device_group == group)
        .order_by(Device.created_at.asc())
        .all()
    )


def count_by_group(db: Session, group: str) -> int:
    return db.query(Device).filter(Device.device_group == group).count()


def touch(db: Session, device_id: uuid.UUID) -> Device:
    device = get_device(db, device_id)
    device.last_seen_at = utcnow()
    db.commit()
    db.refresh(device)
    return device


def assign_firmware(db: Session, device_id: uuid.UUID, firmware_id: uuid.UUID) -> None:
    """Point the device at ``firmware_id``; the caller commits."""
    device = get_device(db, device_id)
    device.current_firmware_id = firmware_id


def is_online(device: Device, now: datetime | None = None, window: timedelta = ONLINE_WINDOW) -> bool:
    if device.last_seen_at is None:
        return False
    now = now or utcnow()
    return now - as_utc(device.last_seen_at) < window
