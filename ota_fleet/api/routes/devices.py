import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ota_fleet.api.deps import get_db, get_identity
from ota_fleet.config import get_settings
from ota_fleet.models import Device
from ota_fleet.schemas import DeviceRegisterRequest, DeviceResponse
from ota_fleet.services import registry
from ota_fleet.services.auth import DEVICES_WRITE, READ, CallerIdentity, require_capability
from ota_fleet.utils.time import utcnow

router = APIRouter(prefix="/api/devices", tags=["devices"])
settings = get_settings()


def serialize_device(device: Device) -> DeviceResponse:
    return DeviceResponse(
        id=device.id,
        device_identifier=device.device_identifier,
        name=device.name,
        device_group=device.device_group,
        last_seen_at=device.last_seen_at,
        current_firmware_id=device.current_firmware_id,
        is_online=registry.is_online(device, utcnow(), timedelta(seconds=settings.device_online_window_seconds)),
        created_at=device.created_at,
    )


@router.get("", response_model=list[DeviceResponse])
def list_devices(
    identity: CallerIdentity = Depends(get_identity), db: Session = Depends(get_db)
) -> list[DeviceResponse]:
    require_capability(identity, READ)
    return [serialize_device(device) for device in registry.list_devices(db)]


@router.post("/register", response_model=DeviceResponse, status_code=201)
def register_device(
    payload: DeviceRegisterRequest,
    identity: CallerIdentity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> DeviceResponse:
    device = registry.register(
        db,
        payload.device_identifier,
        payload.name,
        payload.device_group,
        actor=identity,
        metadata=payload.metadata,
    )
    return serialize_device(device)


@router.post("/{device_id}/heartbeat", response_model=DeviceResponse)
def heartbeat(
    device_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> DeviceResponse:
    require_capability(identity, DEVICES_WRITE)
    return serialize_device(registry.touch(db, device_id))
