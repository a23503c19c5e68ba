import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from ota_fleet.models import AuditLog

logger = logging.getLogger(__name__)


def record(
    db: Session,
    actor_id: uuid.UUID,
    action: str,
    target_type: str,
    target_id: uuid.UUID | str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Add an audit entry to ``db``; it commits together with the mutation it describes."""
    entry = AuditLog(
        user_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=details,
    )
    db.add(entry)
    logger.debug("audit %s %s/%s by %s", action, target_type, target_id, actor_id)
    return entry


def list_entries(db: Session, limit: int = 100) -> list[AuditLog]:
    return db.query(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit).all()
