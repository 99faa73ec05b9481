"""
Append-only audit trail for payments, jobs, resources and users.

Entries are staged in the caller's session so they commit, or roll back,
together with the change they describe. Each entry carries a SHA-256 hash
over its canonical JSON, keyed with the JWT secret.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AuditLog


Diff = Dict[str, Dict[str, Any]]


def _jsonable(value: Optional[Dict]) -> Optional[Dict]:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def integrity_hash(fields: Dict[str, Any], secret: str) -> str:
    canonical = json.dumps({k: v for k, v in fields.items() if v is not None}, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,  # payment|job|resource|user
    entity_id,
    action: str,  # CREATE|UPDATE|STATUS|APPROVE|REJECT|ASSIGN
    actor_id=None,
    actor_role: Optional[str] = None,
    changes_json: Optional[Diff] = None,
    context: Optional[Dict] = None,
) -> AuditLog:
    """Stage one audit entry; the caller commits."""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source="api",
        changes_json=_jsonable(changes_json),
        context=_jsonable(context),
        timestamp_utc=datetime.now(timezone.utc),
    )
    entry.integrity_hash = integrity_hash(
        {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "timestamp_utc": entry.timestamp_utc.isoformat(),
            "changes": entry.changes_json,
            "context": entry.context,
        },
        settings.jwt_secret,
    )
    db.add(entry)
    return entry


def get_audit_logs(db: Session, entity_type: Optional[str] = None, entity_id=None,
                   limit: int = 100, offset: int = 0) -> List[AuditLog]:
    """Newest first, optionally narrowed to one entity type or record."""
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.timestamp_utc.desc()).offset(offset).limit(limit).all()


def compute_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Diff:
    """{field: {"before", "after"}} for the fields whose serialized value changed."""
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }
