import hashlib
import hmac
import os

import pytest

from ota_fleet.services.content_store import ContentStore
from ota_fleet.services.errors import IntegrityError, NotFoundError, ValidationError
from ota_fleet.services.integrity import (
    ENCRYPTED_SUFFIX,
    NONCE_SIZE,
    PLAIN_SUFFIX,
    TAG_SIZE,
    IngestResult,
    IntegrityPipeline,
    auth_code,
    content_hash,
)


class Record:
    def __init__(self, result: IngestResult):
        self.sha256 = result.content_hash
        self.hmac = result.auth_code


def test_ingest_records_hash_and_auth_code(pipeline, master_key):
    data = os.urandom(1024)

    result = pipeline.ingest(data)

    assert result.size == 1024
    assert result.content_hash == hashlib.sha256(data).hexdigest()
    assert result.auth_code == hmac.new(master_key, data, hashlib.sha256).hexdigest()
    assert len(result.content_hash) == 64
    assert len(result.auth_code) == 64
    assert result.storage_ref.endswith(ENCRYPTED_SUFFIX)


def test_encrypted_blob_differs_from_plaintext(pipeline, store):
    data = b"firmware" * 64

    result = pipeline.ingest(data)
    raw = store.read(result.storage_ref)

    assert len(raw) == NONCE_SIZE + len(data) + TAG_SIZE
    assert data not in raw
    assert pipeline.retrieve(result.storage_ref) == data


def test_plain_storage_when_encryption_disabled(store, master_key):
    pipeline = IntegrityPipeline(store, master_key, encrypt=False)
    data = b"\x00\x01\x02" * 10

    result = pipeline.ingest(data)

    assert result.storage_ref.endswith(PLAIN_SUFFIX)
    assert store.read(result.storage_ref) == data
    assert pipeline.retrieve(result.storage_ref) == data


def test_empty_binary_rejected(pipeline, store):
    with pytest.raises(IntegrityError):
        pipeline.ingest(b"")

    assert list(store.root.iterdir()) == []


def test_tampered_ciphertext_fails_authentication(pipeline, store):
    result = pipeline.ingest(b"A" * 256)
    path = store.root / result.storage_ref
    blob = bytearray(path.read_bytes())
    blob[NONCE_SIZE + 5] ^= 0xFF
    path.write_bytes(bytes(blob))

    with pytest.raises(IntegrityError):
        pipeline.retrieve(result.storage_ref)


def test_truncated_blob_rejected(pipeline, store):
    result = pipeline.ingest(b"B" * 64)
    (store.root / result.storage_ref).write_bytes(b"short")

    with pytest.raises(IntegrityError):
        pipeline.retrieve(result.storage_ref)


def test_check_detects_modified_plaintext(pipeline):
    data = b"C" * 128
    record = Record(pipeline.ingest(data))

    assert pipeline.verify_integrity(record, data)

    check = pipeline.check(record, data + b"!")
    assert not check.hash_ok
    assert not check.hmac_ok
    assert not check.valid


def test_check_detects_forged_auth_code(pipeline):
    data = b"D" * 128
    record = Record(pipeline.ingest(data))
    record.hmac = auth_code(data, b"some-other-key")

    check = pipeline.check(record, data)

    assert check.hash_ok
    assert not check.hmac_ok


def test_different_master_keys_cannot_read_each_other(store):
    first = IntegrityPipeline(store, b"key-one", encrypt=True)
    second = IntegrityPipeline(store, b"key-two", encrypt=True)
    result = first.ingest(b"E" * 32)

    with pytest.raises(IntegrityError):
        second.retrieve(result.storage_ref)


def test_empty_master_key_rejected(store):
    with pytest.raises(ValueError):
        IntegrityPipeline(store, b"")


def test_content_hash_is_lowercase_hex():
    digest = content_hash(b"x")
    assert digest == digest.lower()
    int(digest, 16)


def test_store_rejects_escaping_reference(tmp_path):
    store = ContentStore(str(tmp_path / "blobs"))

    with pytest.raises(ValidationError):
        store.write("../outside.bin", b"data")


def test_store_read_missing_blob(tmp_path):
    store = ContentStore(str(tmp_path / "blobs"))

    with pytest.raises(NotFoundError):
        store.read("missing.bin")


def test_store_write_replaces_atomically(tmp_path):
    store = ContentStore(str(tmp_path / "blobs"))

    store.write("blob.bin", b"first")
    store.write("blob.bin", b"second")

    assert store.read("blob.bin") == b"second"
    assert [p.name for p in store.root.iterdir()] == ["blob.bin"]

    store.delete("blob.bin")
    assert not store.exists("blob.bin")
    store.delete("blob.bin")
