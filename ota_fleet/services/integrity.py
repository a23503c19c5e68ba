"""Integrity and at-rest encryption for firmware binaries.

Two independent layers are applied to every upload:

* SHA-256 content hash: tamper evidence any party can check.
* HMAC-SHA256 under the master key: provenance, only this server can produce it.

Optionally the plaintext is encrypted with AES-256-GCM before it reaches the
content store. The stored blob is ``nonce || ciphertext || tag``; whether a blob
is encrypted is encoded in its storage reference suffix.
"""
import hashlib
import hmac
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ota_fleet.services.content_store import ContentStore
from ota_fleet.services.errors import IntegrityError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
ENCRYPTED_SUFFIX = ".enc"
PLAIN_SUFFIX = ".bin"
_KEY_INFO = b"ota-fleet:firmware-at-rest:v1"


class Artifact(Protocol):
    sha256: str
    hmac: str


@dataclass(frozen=True)
class IngestResult:
    storage_ref: str
    content_hash: str
    auth_code: str
    size: int


@dataclass(frozen=True)
class IntegrityCheck:
    hash_ok: bool
    hmac_ok: bool

    @property
    def valid(self) -> bool:
        return self.hash_ok and self.hmac_ok


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def auth_code(data: bytes, master_key: bytes) -> str:
    return hmac.new(master_key, data, hashlib.sha256).hexdigest()


def derive_encryption_key(master_key: bytes) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=_KEY_INFO)
    return hkdf.derive(master_key)


class IntegrityPipeline:
    """Turns uploaded plaintext into a stored, verifiable artifact."""

    def __init__(self, store: ContentStore, master_key: bytes, encrypt: bool = True):
        if not master_key:
            raise ValueError("master key must not be empty")
        self.store = store
        self.encrypt = encrypt
        self._master_key = master_key
        self._aead = AESGCM(derive_encryption_key(master_key))

    def __repr__(self) -> str:
        return f"<IntegrityPipeline encrypt={self.encrypt}>"

    def ingest(self, plaintext: bytes) -> IngestResult:
        """Hash, authenticate, optionally encrypt and store ``plaintext``.

        Raises:
            IntegrityError: empty input or encryption failure
            StorageInconsistencyError: the content store write failed
        """
        if not plaintext:
            raise IntegrityError("Empty firmware binary rejected")

        digest = content_hash(plaintext)
        mac = auth_code(plaintext, self._master_key)

        if self.encrypt:
            payload = self._seal(plaintext)
            storage_ref = f"{uuid.uuid4().hex}{ENCRYPTED_SUFFIX}"
        else:
            payload = plaintext
            storage_ref = f"{uuid.uuid4().hex}{PLAIN_SUFFIX}"

        self.store.write(storage_ref, payload)
        logger.info("Ingested %d bytes as %s (encrypted=%s)", len(plaintext), storage_ref, self.encrypt)
        return IngestResult(storage_ref=storage_ref, content_hash=digest, auth_code=mac, size=len(plaintext))

    def retrieve(self, storage_ref: str) -> bytes:
        """Return the plaintext for ``storage_ref``.

        Hash and HMAC are not re-checked here; call ``verify_integrity`` before
        handing the bytes to devices.
        """
        raw = self.store.read(storage_ref)
        if storage_ref.endswith(ENCRYPTED_SUFFIX):
            return self._open(raw)
        return raw

    def check(self, artifact: Artifact, plaintext: bytes) -> IntegrityCheck:
        return IntegrityCheck(
            hash_ok=hmac.compare_digest(content_hash(plaintext), artifact.sha256.lower()),
            hmac_ok=hmac.compare_digest(auth_code(plaintext, self._master_key), artifact.hmac.lower()),
        )

    def verify_integrity(self, artifact: Artifact, plaintext: bytes) -> bool:
        return self.check(artifact, plaintext).valid

    def _seal(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        try:
            return nonce + self._aead.encrypt(nonce, plaintext, None)
        except (ValueError, OverflowError) as exc:
            raise IntegrityError("Firmware encryption failed") from exc

    def _open(self, blob: bytes) -> bytes:
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise IntegrityError("Encrypted blob is truncated")
        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise IntegrityError("Encrypted blob failed authentication") from exc
