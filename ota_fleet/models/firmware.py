"""Firmware artifact model."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ota_fleet.db.base import Base
from ota_fleet.utils.time import utcnow


class TransportType(str, enum.Enum):
    mqtt = "mqtt"
    ble = "ble"


class Firmware(Base):
    """Uploaded firmware binary plus metadata and integrity values.

    Integrity columns are written once at ingestion; only ``is_active`` changes afterwards.
    """

    __tablename__ = "firmware"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploader_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    target_device_group: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    transport_type: Mapped[TransportType] = mapped_column(Enum(TransportType), nullable=False)

    # Integrity
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    hmac: Mapped[str] = mapped_column(String(64), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Firmware {self.name} v{self.version} group={self.target_device_group}>"
