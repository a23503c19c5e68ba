"""Wiring of the core services from settings."""
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from ota_fleet.config import Settings
from ota_fleet.services.broadcaster import ProgressBroadcaster
from ota_fleet.services.content_store import ContentStore
from ota_fleet.services.firmware import FirmwareService
from ota_fleet.services.integrity import IntegrityPipeline
from ota_fleet.services.jobs import JobStateMachine
from ota_fleet.services.scheduler import JobScheduler
from ota_fleet.services.transport import SimulatedTransport, TransportAdapter


@dataclass
class Services:
    firmware: FirmwareService
    jobs: JobStateMachine
    broadcaster: ProgressBroadcaster
    scheduler: JobScheduler


def build_services(
    settings: Settings,
    session_factory: Callable[[], Session],
    transport: TransportAdapter | None = None,
) -> Services:
    store = ContentStore(settings.firmware_storage_dir)
    pipeline = IntegrityPipeline(store, settings.master_key_bytes, encrypt=settings.encrypt_at_rest)
    firmware = FirmwareService(pipeline, max_upload_bytes=settings.max_upload_bytes)
    jobs = JobStateMachine(
        firmware,
        transport or SimulatedTransport(settings.simulated_failure_rate),
        parallel_concurrency=settings.parallel_concurrency,
        rolling_batch_size=settings.rolling_batch_size,
        failure_policy=settings.job_failure_policy,
    )
    broadcaster = ProgressBroadcaster(max_queue_size=settings.subscriber_queue_size)
    scheduler = JobScheduler(
        jobs,
        broadcaster,
        session_factory,
        start_delay=settings.job_start_delay_seconds,
        tick_interval=settings.job_tick_seconds,
    )
    return Services(firmware=firmware, jobs=jobs, broadcaster=broadcaster, scheduler=scheduler)
