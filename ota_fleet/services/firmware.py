"""Firmware ingestion, download and lifecycle."""
import logging
import uuid
from typing import Any

import pydantic
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from ota_fleet.models import Firmware
from ota_fleet.schemas.firmware import FirmwareMetadata
from ota_fleet.services import audit
from ota_fleet.services.auth import FIRMWARE_WRITE, CallerIdentity, require_capability
from ota_fleet.services.errors import NotFoundError, StorageInconsistencyError, ValidationError
from ota_fleet.services.integrity import IntegrityCheck, IntegrityPipeline

logger = logging.getLogger(__name__)


def parse_metadata(**fields: Any) -> FirmwareMetadata:
    """Build upload metadata, reporting schema errors field by field."""
    try:
        return FirmwareMetadata(**fields)
    except pydantic.ValidationError as exc:
        details = {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
        raise ValidationError("Invalid firmware metadata", fields=details) from exc


class FirmwareService:
    """Service for managing firmware artifacts."""

    def __init__(self, pipeline: IntegrityPipeline, max_upload_bytes: int = 50 * 1024 * 1024):
        self.pipeline = pipeline
        self.max_upload_bytes = max_upload_bytes

    def upload_firmware(
        self,
        db: Session,
        data: bytes,
        metadata: FirmwareMetadata,
        uploader: CallerIdentity,
    ) -> Firmware:
        """Ingest ``data`` and create its firmware record.

        The blob is stored first; the record is only committed afterwards, so a
        firmware id never points at a missing blob.

        Raises:
            IntegrityError: empty binary or encryption failure
            ValidationError: binary exceeds the upload limit
            StorageInconsistencyError: blob stored but the record could not be created
        """
        require_capability(uploader, FIRMWARE_WRITE)
        if len(data) > self.max_upload_bytes:
            raise ValidationError(
                "Firmware binary too large", fields={"firmware": f"max {self.max_upload_bytes} bytes"}
            )

        ingested = self.pipeline.ingest(data)

        try:
            firmware = Firmware(
                name=metadata.name,
                version=metadata.version,
                description=metadata.description,
                release_notes=metadata.release_notes,
                original_filename=metadata.original_filename,
                uploader_id=uploader.user_id,
                target_device_group=metadata.target_device_group,
                transport_type=metadata.transport_type,
                storage_path=ingested.storage_ref,
                file_size=ingested.size,
                sha256=ingested.content_hash,
                hmac=ingested.auth_code,
            )
            db.add(firmware)
            db.flush()
            audit.record(
                db,
                actor_id=uploader.user_id,
                action="firmware_upload",
                target_type="firmware",
                target_id=firmware.id,
                details={"name": firmware.name, "version": firmware.version},
            )
            db.commit()
        except sa_exc.SQLAlchemyError as exc:
            db.rollback()
            logger.error("Firmware record creation failed after storing %s: %s", ingested.storage_ref, exc)
            self.pipeline.store.delete(ingested.storage_ref)
            raise StorageInconsistencyError("Firmware stored but record creation failed") from exc

        db.refresh(firmware)
        logger.info(
            f"Uploaded firmware {firmware.name} v{firmware.version} "
            f"for group {firmware.target_device_group} ({firmware.file_size} bytes)"
        )
        return firmware

    def get_firmware(self, db: Session, firmware_id: uuid.UUID) -> Firmware:
        firmware = db.get(Firmware, firmware_id)
        if not firmware:
            raise NotFoundError("Firmware not found")
        return firmware

    def list_firmware(self, db: Session) -> list[Firmware]:
        return db.query(Firmware).order_by(Firmware.created_at.desc()).all()

    def read_plaintext(self, firmware: Firmware) -> bytes:
        try:
            return self.pipeline.retrieve(firmware.storage_path)
        except NotFoundError as exc:
            logger.error(f"Firmware blob missing: {firmware.storage_path}")
            raise StorageInconsistencyError("Firmware record has no stored binary") from exc

    def download_firmware(self, db: Session, firmware_id: uuid.UUID) -> tuple[bytes, str]:
        """Return decrypted bytes and a filename hint for ``firmware_id``."""
        firmware = self.get_firmware(db, firmware_id)
        return self.read_plaintext(firmware), f"{firmware.name}-{firmware.version}.bin"

    def verify_stored_firmware(self, db: Session, firmware_id: uuid.UUID) -> IntegrityCheck:
        firmware = self.get_firmware(db, firmware_id)
        check = self.pipeline.check(firmware, self.read_plaintext(firmware))
        if not check.valid:
            logger.warning(
                "Integrity check failed for firmware %s (hash_ok=%s, hmac_ok=%s)",
                firmware.id, check.hash_ok, check.hmac_ok,
            )
        return check

    def deactivate_firmware(self, db: Session, firmware_id: uuid.UUID, actor: CallerIdentity) -> Firmware:
        """Deactivate firmware (sets is_active=False instead of hard delete)."""
        require_capability(actor, FIRMWARE_WRITE)
        firmware = self.get_firmware(db, firmware_id)
        if firmware.is_active:
            firmware.is_active = False
            audit.record(
                db,
                actor_id=actor.user_id,
                action="firmware_deactivate",
                target_type="firmware",
                target_id=firmware.id,
                details={"name": firmware.name, "version": firmware.version},
            )
            db.commit()
            db.refresh(firmware)
        return firmware
