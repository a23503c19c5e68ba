"""Blob storage for firmware binaries."""
import logging
import os
from pathlib import Path

from ota_fleet.services.errors import NotFoundError, StorageInconsistencyError, ValidationError

logger = logging.getLogger(__name__)


class ContentStore:
    """Durable blob storage keyed by an opaque, root-relative path.

    I/O failures are retried once before surfacing as ``StorageInconsistencyError``.
    """

    def __init__(self, base_path: str = "storage/firmwares"):
        """Initialize the store.

        Args:
            base_path: Directory under which all blobs are written
        """
        self.root = Path(base_path)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, storage_ref: str) -> Path:
        path = (self.root / storage_ref.lstrip("/")).resolve()
        root = self.root.resolve()
        if path != root and root not in path.parents:
            raise ValidationError("Invalid storage reference", fields={"storage_ref": "escapes storage root"})
        return path

    def write(self, storage_ref: str, data: bytes) -> str:
        """Write ``data`` under ``storage_ref`` and return the reference.

        The blob is written to a temporary file and moved into place, so a
        reader never observes a half-written blob.
        """
        path = self._resolve(storage_ref)
        for attempt in (1, 2):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp = path.with_suffix(path.suffix + ".tmp")
                tmp.write_bytes(data)
                os.replace(tmp, path)
                return storage_ref
            except OSError as exc:
                logger.warning("Write of %s failed (attempt %d): %s", storage_ref, attempt, exc)
        raise StorageInconsistencyError(f"Could not write blob {storage_ref}")

    def read(self, storage_ref: str) -> bytes:
        path = self._resolve(storage_ref)
        if not path.exists():
            raise NotFoundError(f"Blob {storage_ref} not found")
        for attempt in (1, 2):
            try:
                return path.read_bytes()
            except OSError as exc:
                logger.warning("Read of %s failed (attempt %d): %s", storage_ref, attempt, exc)
        raise StorageInconsistencyError(f"Could not read blob {storage_ref}")

    def exists(self, storage_ref: str) -> bool:
        return self._resolve(storage_ref).exists()

    def delete(self, storage_ref: str) -> None:
        path = self._resolve(storage_ref)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Error deleting blob %s: %s", storage_ref, exc)
