import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ota_fleet.db.base import Base
from ota_fleet.models.firmware import TransportType
from ota_fleet.utils.time import utcnow


class RolloutStrategy(str, enum.Enum):
    sequential = "sequential"
    parallel = "parallel"
    rolling = "rolling"


class JobStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed, JobStatus.cancelled)


class UpdateJob(Base):
    __tablename__ = "update_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    firmware_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("firmware.id"), nullable=False, index=True
    )
    initiated_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    transport_type: Mapped[TransportType] = mapped_column(Enum(TransportType), nullable=False)
    strategy: Mapped[RolloutStrategy] = mapped_column(
        Enum(RolloutStrategy), nullable=False, default=RolloutStrategy.sequential
    )
    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), nullable=False, default=JobStatus.pending, index=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_devices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_devices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_devices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    firmware = relationship("Firmware")

    @property
    def processed_devices(self) -> int:
        return self.completed_devices + self.failed_devices
