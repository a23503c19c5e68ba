from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ota_fleet.api.deps import get_db, get_identity
from ota_fleet.schemas import AuditEntryResponse, StatsResponse
from ota_fleet.services import audit, stats
from ota_fleet.services.auth import AUDIT_READ, READ, CallerIdentity, require_capability

router = APIRouter(prefix="/api", tags=["audit"])


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_entries(
    limit: int = Query(default=100, ge=1, le=1000),
    identity: CallerIdentity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> list[AuditEntryResponse]:
    require_capability(identity, AUDIT_READ)
    return [AuditEntryResponse.model_validate(entry) for entry in audit.list_entries(db, limit=limit)]


@router.get("/stats", response_model=StatsResponse)
def get_stats(identity: CallerIdentity = Depends(get_identity), db: Session = Depends(get_db)) -> StatsResponse:
    require_capability(identity, READ)
    result = stats.get_stats(db)
    return StatsResponse(
        total_devices=result.total_devices,
        active_updates=result.active_updates,
        firmware_versions=result.firmware_versions,
        success_rate=result.success_rate,
    )
