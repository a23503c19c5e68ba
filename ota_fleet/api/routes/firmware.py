"""Firmware upload, listing and download routes."""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ota_fleet.api.deps import get_db, get_identity, get_services
from ota_fleet.schemas import FirmwareResponse, FirmwareVerifyResponse
from ota_fleet.services.auth import READ, CallerIdentity, require_capability
from ota_fleet.services.container import Services
from ota_fleet.services.errors import ValidationError
from ota_fleet.services.firmware import parse_metadata

router = APIRouter(prefix="/api/firmware", tags=["firmware"])

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


@router.post("/upload", response_model=FirmwareResponse, status_code=201)
async def upload_firmware(
    firmware: UploadFile = File(...),
    name: str = Form(...),
    version: str = Form(...),
    target_device_group: str = Form(...),
    transport_type: str = Form(...),
    description: Optional[str] = Form(None),
    release_notes: Optional[str] = Form(None),
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> FirmwareResponse:
    """Upload a firmware binary with its metadata.

    The binary is hashed, authenticated and (optionally) encrypted before it is
    stored; the firmware record is created only once the blob is on disk.
    """
    metadata = parse_metadata(
        name=name,
        version=version,
        target_device_group=target_device_group,
        transport_type=transport_type,
        description=description,
        release_notes=release_notes,
        original_filename=firmware.filename,
    )
    limit = services.firmware.max_upload_bytes
    content = bytearray()
    while chunk := await firmware.read(UPLOAD_CHUNK_SIZE):
        content.extend(chunk)
        if len(content) > limit:
            raise ValidationError("Firmware binary too large", fields={"firmware": f"max {limit} bytes"})
    record = services.firmware.upload_firmware(db, bytes(content), metadata, identity)
    return FirmwareResponse.model_validate(record)


@router.get("", response_model=list[FirmwareResponse])
async def list_firmware(
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> list[FirmwareResponse]:
    require_capability(identity, READ)
    return [FirmwareResponse.model_validate(f) for f in services.firmware.list_firmware(db)]


@router.get("/{firmware_id}", response_model=FirmwareResponse)
async def get_firmware(
    firmware_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> FirmwareResponse:
    require_capability(identity, READ)
    return FirmwareResponse.model_validate(services.firmware.get_firmware(db, firmware_id))


@router.get("/{firmware_id}/download")
async def download_firmware(
    firmware_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> Response:
    """Download the decrypted firmware binary."""
    require_capability(identity, READ)
    firmware = services.firmware.get_firmware(db, firmware_id)
    content, filename = services.firmware.download_firmware(db, firmware_id)
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Firmware-Version": firmware.version,
            "X-Firmware-Hash": firmware.sha256,
            "X-Firmware-Hmac": firmware.hmac,
        },
    )


@router.post("/{firmware_id}/verify", response_model=FirmwareVerifyResponse)
async def verify_firmware(
    firmware_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> FirmwareVerifyResponse:
    require_capability(identity, READ)
    check = services.firmware.verify_stored_firmware(db, firmware_id)
    return FirmwareVerifyResponse(
        firmware_id=firmware_id, hash_ok=check.hash_ok, hmac_ok=check.hmac_ok, valid=check.valid
    )


@router.delete("/{firmware_id}", response_model=FirmwareResponse)
async def deactivate_firmware(
    firmware_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> FirmwareResponse:
    """Deactivate firmware; records are never hard-deleted."""
    firmware = services.firmware.deactivate_firmware(db, firmware_id, identity)
    logger.info(f"Deactivated firmware {firmware.name} v{firmware.version}")
    return FirmwareResponse.model_validate(firmware)
