"""Update job state machine.

    pending -> in_progress -> completed | failed
    pending | in_progress -> cancelled

Terminal jobs are never mutated again. A job's counters are only touched by
``advance`` and ``cancel``; the scheduler guarantees at most one of them runs
per job at a time.
"""
import enum
import logging
import uuid

from sqlalchemy.orm import Session

from ota_fleet.models import Firmware, JobStatus, RolloutStrategy, TransportType, UpdateJob
from ota_fleet.schemas.job import JobUpdate
from ota_fleet.services import audit, registry
from ota_fleet.services.auth import JOBS_WRITE, CallerIdentity, require_capability
from ota_fleet.services.errors import (
    IntegrityError,
    InvalidTransitionError,
    NotFoundError,
    StorageInconsistencyError,
    ValidationError,
)
from ota_fleet.services.firmware import FirmwareService
from ota_fleet.services.transport import TransportAdapter
from ota_fleet.utils.time import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.in_progress, JobStatus.cancelled}),
    JobStatus.in_progress: frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
    JobStatus.cancelled: frozenset(),
}


class JobFailurePolicy(str, enum.Enum):
    strict = "strict"
    best_effort = "best_effort"


def compute_progress(job: UpdateJob) -> int:
    if job.total_devices == 0:
        return 100
    return round(100 * job.processed_devices / job.total_devices)


def transition(job: UpdateJob, target: JobStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[job.status]:
        raise InvalidTransitionError(f"Cannot move job {job.id} from {job.status.value} to {target.value}")
    logger.info("Job %s: %s -> %s", job.id, job.status.value, target.value)
    job.status = target
    job.updated_at = utcnow()


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field}", fields={field: f"expected one of {allowed}"}) from exc


class JobStateMachine:
    """Owns update job lifecycle, device accounting and progress."""

    def __init__(
        self,
        firmware_service: FirmwareService,
        transport: TransportAdapter,
        parallel_concurrency: int = 10,
        rolling_batch_size: int = 3,
        failure_policy: JobFailurePolicy = JobFailurePolicy.strict,
    ):
        self.firmware_service = firmware_service
        self.transport = transport
        self.parallel_concurrency = parallel_concurrency
        self.rolling_batch_size = rolling_batch_size
        self.failure_policy = JobFailurePolicy(failure_policy)

    # Queries

    def get_job(self, db: Session, job_id: uuid.UUID) -> UpdateJob:
        job = db.get(UpdateJob, job_id)
        if not job:
            raise NotFoundError("Update job not found")
        return job

    def list_jobs(self, db: Session) -> list[UpdateJob]:
        return db.query(UpdateJob).order_by(UpdateJob.created_at.desc()).all()

    def list_unfinished(self, db: Session) -> list[UpdateJob]:
        return (
            db.query(UpdateJob)
            .filter(UpdateJob.status.in_([JobStatus.pending, JobStatus.in_progress]))
            .order_by(UpdateJob.created_at.asc())
            .all()
        )

    # Commands

    def trigger(
        self,
        db: Session,
        firmware_id: uuid.UUID,
        transport_type: TransportType | str,
        strategy: RolloutStrategy | str,
        initiator: CallerIdentity,
    ) -> UpdateJob:
        """Create a pending job targeting every device in the firmware's group."""
        require_capability(initiator, JOBS_WRITE)
        transport_type = _coerce(TransportType, transport_type, "transport_type")
        strategy = _coerce(RolloutStrategy, strategy, "strategy")

        firmware = self.firmware_service.get_firmware(db, firmware_id)
        if not firmware.is_active:
            raise ValidationError("Firmware is inactive", fields={"firmware_id": "inactive firmware"})

        total = registry.count_by_group(db, firmware.target_device_group)
        job = UpdateJob(
            firmware_id=firmware.id,
            initiated_by=initiator.user_id,
            transport_type=transport_type,
            strategy=strategy,
            status=JobStatus.pending,
            progress=0,
            total_devices=total,
            completed_devices=0,
            failed_devices=0,
        )
        db.add(job)
        db.flush()
        audit.record(
            db,
            actor_id=initiator.user_id,
            action="update_job_create",
            target_type="update_job",
            target_id=job.id,
            details={"firmware_id": str(firmware.id), "total_devices": total, "strategy": strategy.value},
        )
        db.commit()
        db.refresh(job)
        logger.info("Created job %s for firmware %s (%d devices, %s)", job.id, firmware.id, total, strategy.value)
        return job

    def rollback(self, db: Session, original_job_id: uuid.UUID, initiator: CallerIdentity) -> UpdateJob:
        """Create a new pending job redeploying the original job's firmware to the same device count."""
        require_capability(initiator, JOBS_WRITE)
        original = self.get_job(db, original_job_id)
        if not original.firmware.is_active:
            raise ValidationError("Firmware is inactive", fields={"firmware_id": "inactive firmware"})
        job = UpdateJob(
            firmware_id=original.firmware_id,
            initiated_by=initiator.user_id,
            transport_type=original.transport_type,
            strategy=original.strategy,
            status=JobStatus.pending,
            progress=0,
            total_devices=original.total_devices,
            completed_devices=0,
            failed_devices=0,
        )
        db.add(job)
        db.flush()
        audit.record(
            db,
            actor_id=initiator.user_id,
            action="rollback_job_create",
            target_type="update_job",
            target_id=job.id,
            details={"original_job_id": str(original.id)},
        )
        db.commit()
        db.refresh(job)
        return job

    def cancel(self, db: Session, job_id: uuid.UUID, actor: CallerIdentity) -> tuple[UpdateJob, JobUpdate]:
        require_capability(actor, JOBS_WRITE)
        job = self.get_job(db, job_id)
        transition(job, JobStatus.cancelled)
        audit.record(
            db,
            actor_id=actor.user_id,
            action="update_job_cancel",
            target_type="update_job",
            target_id=job.id,
            details={"progress": job.progress},
        )
        db.commit()
        db.refresh(job)
        return job, self._event(job, terminal=True)

    def abort(self, db: Session, job_id: uuid.UUID, reason: str) -> JobUpdate | None:
        """Fail a job that can no longer be progressed; a terminal job is left untouched."""
        job = self.get_job(db, job_id)
        if job.status.is_terminal:
            return None
        if job.status == JobStatus.pending:
            transition(job, JobStatus.in_progress)
        transition(job, JobStatus.failed)
        db.commit()
        logger.error("Job %s aborted: %s", job.id, reason)
        return self._event(job, terminal=True, reason=reason)

    def advance(self, db: Session, job_id: uuid.UUID) -> list[JobUpdate]:
        """Run one tick of ``job_id`` and return the events it produced, in order."""
        job = self.get_job(db, job_id)
        if job.status.is_terminal:
            return []

        events: list[JobUpdate] = []
        firmware = job.firmware

        if job.status == JobStatus.pending:
            transition(job, JobStatus.in_progress)
            events.append(self._event(job))
            if not self._artifact_trusted(firmware):
                transition(job, JobStatus.failed)
                db.commit()
                events.append(self._event(job, terminal=True, reason="integrity_check_failed"))
                return events

        remaining = job.total_devices - job.processed_devices
        if remaining > 0:
            unit = min(self._unit_size(job.strategy), remaining)
            targets = registry.list_by_group(db, firmware.target_device_group)
            start = job.processed_devices
            batch = targets[start:start + unit]
            for offset in range(unit):
                device = batch[offset] if offset < len(batch) else None
                events.append(self._process_device(db, job, firmware, device))

        if job.processed_devices >= job.total_devices:
            job.progress = compute_progress(job)
            transition(job, self._final_status(job))
            events.append(self._event(job, terminal=True))

        db.commit()
        return events

    # Internals

    def _unit_size(self, strategy: RolloutStrategy) -> int:
        if strategy == RolloutStrategy.parallel:
            return self.parallel_concurrency
        if strategy == RolloutStrategy.rolling:
            return self.rolling_batch_size
        return 1

    def _artifact_trusted(self, firmware: Firmware) -> bool:
        try:
            plaintext = self.firmware_service.read_plaintext(firmware)
        except (IntegrityError, StorageInconsistencyError) as exc:
            logger.error("Cannot read firmware %s for distribution: %s", firmware.id, exc)
            return False
        if not self.firmware_service.pipeline.verify_integrity(firmware, plaintext):
            logger.error("Firmware %s failed integrity verification; refusing to distribute", firmware.id)
            return False
        return True

    def _process_device(self, db: Session, job: UpdateJob, firmware: Firmware, device) -> JobUpdate:
        if device is None:
            # The group shrank since the job was sized.
            ok = False
        else:
            try:
                ok = self.transport.deliver(device, firmware, job.transport_type)
            except Exception as exc:
                logger.warning("Delivery to %s raised: %s", device.device_identifier, exc)
                ok = False

        if ok:
            job.completed_devices += 1
            registry.assign_firmware(db, device.id, firmware.id)
        else:
            job.failed_devices += 1
        job.progress = compute_progress(job)
        job.updated_at = utcnow()

        data = {
            "device_id": str(device.id) if device is not None else None,
            "device_identifier": device.device_identifier if device is not None else None,
            "outcome": "completed" if ok else "failed",
        }
        return self._event(job, **data)

    def _final_status(self, job: UpdateJob) -> JobStatus:
        if job.failed_devices == 0:
            return JobStatus.completed
        if self.failure_policy == JobFailurePolicy.best_effort and job.completed_devices > 0:
            return JobStatus.completed
        return JobStatus.failed

    @staticmethod
    def _event(job: UpdateJob, terminal: bool = False, **extra) -> JobUpdate:
        data = {
            "status": job.status.value,
            "progress": job.progress,
            "total_devices": job.total_devices,
            "completed_devices": job.completed_devices,
            "failed_devices": job.failed_devices,
            "terminal": terminal,
        }
        data.update(extra)
        return JobUpdate(job_id=job.id, data=data)
