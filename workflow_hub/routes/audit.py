import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..services.audit import get_audit_logs


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    rows = get_audit_logs(db, entity_type=entity_type, entity_id=entity_id, limit=limit, offset=offset)
    return [
        {
            "id": str(a.id),
            "entity_type": a.entity_type,
            "entity_id": str(a.entity_id),
            "action": a.action,
            "actor_id": str(a.actor_id) if a.actor_id else None,
            "actor_role": a.actor_role,
            "source": a.source,
            "changes": a.changes_json,
            "context": a.context,
            "timestamp_utc": a.timestamp_utc.isoformat() if a.timestamp_utc else None,
            "integrity_hash": a.integrity_hash,
        }
        for a in rows
    ]
