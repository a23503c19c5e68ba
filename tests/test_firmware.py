import pytest
from sqlalchemy.exc import OperationalError

from ota_fleet.models import AuditLog, Firmware
from ota_fleet.services.errors import (
    AuthorizationError,
    IntegrityError,
    NotFoundError,
    StorageInconsistencyError,
    ValidationError,
)
from ota_fleet.services.firmware import FirmwareService, parse_metadata


def metadata(**overrides):
    fields = {
        "name": "Main",
        "version": "1.0.0",
        "target_device_group": "esp32-cam",
        "transport_type": "mqtt",
    }
    fields.update(overrides)
    return parse_metadata(**fields)


def test_upload_creates_active_record(db, firmware_service, operator):
    firmware = firmware_service.upload_firmware(db, b"\xa5" * 1024, metadata(), operator)

    assert firmware.is_active is True
    assert firmware.file_size == 1024
    assert len(firmware.sha256) == 64
    assert len(firmware.hmac) == 64
    assert firmware.uploader_id == operator.user_id
    assert firmware_service.pipeline.store.exists(firmware.storage_path)

    actions = [entry.action for entry in db.query(AuditLog).all()]
    assert "firmware_upload" in actions


def test_empty_upload_creates_nothing(db, firmware_service, operator):
    with pytest.raises(IntegrityError):
        firmware_service.upload_firmware(db, b"", metadata(), operator)

    assert db.query(Firmware).count() == 0


def test_upload_size_limit(db, pipeline, operator):
    service = FirmwareService(pipeline, max_upload_bytes=10)

    with pytest.raises(ValidationError) as excinfo:
        service.upload_firmware(db, b"x" * 11, metadata(), operator)

    assert "firmware" in excinfo.value.fields


@pytest.mark.parametrize("version", ["1.0", "v1.0.0", "1.0.0-", "1.0.0+", "1.0.0 beta", ""])
def test_metadata_rejects_bad_version(version):
    with pytest.raises(ValidationError) as excinfo:
        metadata(version=version)

    assert "version" in excinfo.value.fields


@pytest.mark.parametrize("version", ["1.0.0", "10.20.30", "1.0.0-rc.1", "1.0.0+build.5", "2.1.0-beta.2+exp.sha.5114f85"])
def test_metadata_accepts_semantic_versions(version):
    assert metadata(version=version).version == version


def test_metadata_rejects_unknown_transport():
    with pytest.raises(ValidationError) as excinfo:
        metadata(transport_type="wifi")

    assert "transport_type" in excinfo.value.fields


def test_record_failure_removes_stored_blob(db, firmware_service, operator, monkeypatch):
    def failing_commit():
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(StorageInconsistencyError):
        firmware_service.upload_firmware(db, b"payload", metadata(), operator)

    monkeypatch.undo()
    assert db.query(Firmware).count() == 0
    assert list(firmware_service.pipeline.store.root.iterdir()) == []


def test_download_returns_plaintext(db, upload, firmware_service):
    firmware = upload(data=b"binary-image")

    content, filename = firmware_service.download_firmware(db, firmware.id)

    assert content == b"binary-image"
    assert filename == "Main-1.0.0.bin"


def test_missing_blob_is_storage_inconsistency(db, upload, firmware_service):
    firmware = upload()
    firmware_service.pipeline.store.delete(firmware.storage_path)

    with pytest.raises(StorageInconsistencyError):
        firmware_service.download_firmware(db, firmware.id)


def test_verify_stored_firmware(db, upload, firmware_service):
    firmware = upload()

    assert firmware_service.verify_stored_firmware(db, firmware.id).valid

    firmware.sha256 = "0" * 64
    db.commit()
    check = firmware_service.verify_stored_firmware(db, firmware.id)
    assert not check.hash_ok
    assert check.hmac_ok


def test_list_and_get(db, upload, firmware_service):
    first = upload(version="1.0.0")
    second = upload(version="1.1.0")

    assert {f.id for f in firmware_service.list_firmware(db)} == {first.id, second.id}
    assert firmware_service.get_firmware(db, second.id).version == "1.1.0"


def test_get_unknown_firmware(db, firmware_service):
    import uuid

    with pytest.raises(NotFoundError):
        firmware_service.get_firmware(db, uuid.uuid4())


def test_deactivate_keeps_record(db, upload, firmware_service, operator):
    firmware = upload()

    result = firmware_service.deactivate_firmware(db, firmware.id, operator)

    assert result.is_active is False
    assert db.query(Firmware).count() == 1
