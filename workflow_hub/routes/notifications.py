import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Notification, User
from ..services import notifications as notification_service


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_dict(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "kind": n.kind,
        "title": n.title,
        "message": n.message,
        "template_key": n.template_key,
        "payload": n.payload_json or {},
        "created_at": n.created_at.isoformat() if n.created_at else None,
        "read": n.read_at is not None,
    }


@router.get("")
def list_notifications(
    limit: Optional[int] = 50,
    unread_only: Optional[bool] = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List notifications for the current user, newest first.
    """
    limit = min(max(1, limit or 50), 200)
    rows = notification_service.list_notifications(db, user.id, unread_only=bool(unread_only), limit=limit)
    return [_notification_to_dict(n) for n in rows]


@router.get("/unread-count")
def get_unread_count(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"count": notification_service.unread_count(db, user.id)}


@router.post("/{notification_id}/read")
def mark_notification_as_read(notification_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    n = notification_service.mark_read(db, user.id, notification_id)
    if n is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return _notification_to_dict(n)
