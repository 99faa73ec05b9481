"""
Role checks shared by routes, the workflow and the live change stream.
"""
from typing import Any, Dict, Mapping

from ..auth.security import Actor
from ..models.models import PaymentRequest


VIEW_ALL_PAYMENT_ROLES = ("admin", "checker")


def is_admin(actor: Actor) -> bool:
    return actor.role == "admin"


def can_view_payment(actor: Actor, row: Mapping[str, Any]) -> bool:
    """Admin and checker see every request, a leader only their own, a worker none."""
    if actor.role in VIEW_ALL_PAYMENT_ROLES:
        return True
    if actor.role == "leader":
        return str(row.get("created_by")) == str(actor.id)
    return False


def can_view_change(actor: Actor, table: str, row: Mapping[str, Any]) -> bool:
    """
    Whether a change event on a table may be streamed to this actor.
    Mirrors what the same actor can read over REST.
    """
    if table == "payments":
        return can_view_payment(actor, row)
    if actor.role != "worker":
        return True
    if table == "jobs":
        return str(row.get("assigned_to")) == str(actor.id)
    # Resource rows only carry the job id; workers refetch through their jobs
    return False


def payment_permissions(actor: Actor, payment: PaymentRequest) -> Dict[str, bool]:
    """
    What the viewer may do with a payment request.
    Only hints for the dashboards; the workflow enforces the same rules.
    """
    reviewable = is_admin(actor) and payment.status in ("pending", "flagged")
    return {
        "can_approve": reviewable,
        "can_reject": reviewable,
    }
