"""
Notification service.

Two surfaces live here:
- Notice: the single user-facing outcome of a mutation attempt
  (success, warning or error), reported through a NotificationSurface.
- Notification rows: persistent in-app messages addressed to a user,
  e.g. telling a leader their payment request was approved.
"""
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, List

import structlog
from sqlalchemy.orm import Session

from ..models.models import Notification, PaymentRequest


log = structlog.get_logger("workflow_hub.notifications")

NOTICE_KINDS = ("success", "warning", "error")
DECISION_STATUS = {"approved": "completed", "rejected": "failed"}


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class NotificationSurface:
    def notify(self, kind: str, message: str) -> None:
        raise NotImplementedError


class NoticeCollector(NotificationSurface):
    """Keeps the notices of one request so the API can return them."""

    def __init__(self) -> None:
        self.notices: List[Notice] = []

    def notify(self, kind: str, message: str) -> None:
        if kind not in NOTICE_KINDS:
            raise ValueError(f"Unknown notice kind '{kind}'")
        notice = Notice(kind=kind, message=message)
        self.notices.append(notice)
        log.info("notice", kind=kind, message=message)

    @property
    def last(self) -> Optional[Notice]:
        return self.notices[-1] if self.notices else None


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    title: str,
    message: Optional[str] = None,
    kind: str = "success",
    template_key: Optional[str] = None,
    payload_json: Optional[Dict] = None,
) -> Notification:
    """
    Stage an in-app notification for a user in the caller's transaction.
    """
    notification = Notification(
        user_id=user_id,
        kind=kind,
        title=title,
        message=message,
        template_key=template_key,
        payload_json=payload_json,
    )
    db.add(notification)
    return notification


def send_payment_decision_notification(
    db: Session,
    payment: PaymentRequest,
    decision: str,  # "approved"|"rejected"
    note: Optional[str] = None,
) -> Notification:
    """
    Tell the submitter of a payment request how it was decided.
    """
    title = f"Payment request {decision}: {payment.title}"
    payload = {
        "payment_id": str(payment.id),
        "status": DECISION_STATUS[decision],
        "amount": payment.amount,
        "note": note,
    }
    return create_notification(
        db,
        payment.created_by,
        title,
        message=note,
        kind="success" if decision == "approved" else "warning",
        template_key=f"payment_{decision}",
        payload_json=payload,
    )


def list_notifications(db: Session, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: uuid.UUID) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read_at.is_(None),
    ).count()


def mark_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Optional[Notification]:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if notification is None:
        return None
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification
