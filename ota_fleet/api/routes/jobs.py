"""Update job routes."""
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ota_fleet.api.deps import get_db, get_identity, get_services
from ota_fleet.schemas import JobResponse, JobTriggerRequest
from ota_fleet.services.auth import READ, CallerIdentity, require_capability
from ota_fleet.services.container import Services

router = APIRouter(prefix="/api/update", tags=["update-jobs"])


@router.post("/trigger", response_model=JobResponse, status_code=201)
async def trigger_update_job(
    payload: JobTriggerRequest,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> JobResponse:
    """Create a pending job and hand it to the scheduler; progress arrives over the event feed."""
    job = services.jobs.trigger(db, payload.firmware_id, payload.transport_type, payload.strategy, identity)
    response = JobResponse.model_validate(job)
    services.scheduler.schedule(job.id)
    return response


@router.get("", response_model=list[JobResponse])
async def list_update_jobs(
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> list[JobResponse]:
    require_capability(identity, READ)
    return [JobResponse.model_validate(job) for job in services.jobs.list_jobs(db)]


@router.get("/{job_id}/status", response_model=JobResponse)
async def get_update_job_status(
    job_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> JobResponse:
    require_capability(identity, READ)
    return JobResponse.model_validate(services.jobs.get_job(db, job_id))


@router.post("/{job_id}/rollback", response_model=JobResponse, status_code=201)
async def rollback_update_job(
    job_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> JobResponse:
    job = services.jobs.rollback(db, job_id, identity)
    response = JobResponse.model_validate(job)
    services.scheduler.schedule(job.id)
    return response


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_update_job(
    job_id: uuid.UUID,
    identity: CallerIdentity = Depends(get_identity),
    services: Services = Depends(get_services),
) -> JobResponse:
    job = await services.scheduler.cancel(job_id, identity)
    return JobResponse.model_validate(job)
