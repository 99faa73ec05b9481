"""
Payment request workflow.

Leaders submit a cost breakdown against a job; the total excludes mileage,
which only feeds the fuel-cost-per-mile fraud rule. Administrators then
approve or reject requests that are still pending or flagged.

Transitions are conditional writes on (id, version): the first reviewer
wins and a concurrent second reviewer gets a Conflict instead of silently
overwriting the decision.
"""
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.security import Actor
from ..config import settings
from ..models.models import Job, PaymentRequest
from ..schemas.payments import PaymentRequestResponse
from .audit import create_audit_log
from .dashboard import StatusCounts, status_counts
from .errors import (
    Conflict,
    InvalidTransition,
    NotFound,
    PersistenceFailed,
    Unauthorized,
    ValidationFailed,
    WorkflowError,
)
from .notifications import NotificationSurface, send_payment_decision_notification
from .permissions import VIEW_ALL_PAYMENT_ROLES, can_view_payment
from .realtime import ChangeFeed, feed as default_feed


log = structlog.get_logger("workflow_hub.payments")

PAYMENT_STATUSES = ("pending", "flagged", "completed", "failed")
OPEN_STATUSES = ("pending", "flagged")
TERMINAL_STATUSES = ("completed", "failed")

SUBMIT_ROLES = ("admin", "leader")

COST_FIELDS = ("food_cost", "labor_cost", "vehicle_cost", "fuel_cost")

_FLOAT_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_cost(value: Any) -> float:
    """Parse a cost field the way a browser form does with parseFloat.

    Numbers pass through; strings yield their leading numeric prefix
    ("12.5kg" -> 12.5); anything unparseable, blank or None yields 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _FLOAT_PREFIX.match(str(value).strip())
        if not match:
            return 0.0
        number = float(match.group(0))
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


@dataclass(frozen=True)
class CostBreakdown:
    title: str = ""
    food_cost: float = 0.0
    labor_cost: float = 0.0
    vehicle_cost: float = 0.0
    fuel_cost: float = 0.0
    mileage: float = 0.0
    notes: str = ""

    @classmethod
    def from_input(cls, data: Mapping[str, Any]) -> "CostBreakdown":
        return cls(
            title=str(data.get("title") or "").strip(),
            food_cost=parse_cost(data.get("food_cost")),
            labor_cost=parse_cost(data.get("labor_cost")),
            vehicle_cost=parse_cost(data.get("vehicle_cost")),
            fuel_cost=parse_cost(data.get("fuel_cost")),
            mileage=parse_cost(data.get("mileage")),
            notes=str(data.get("notes") or ""),
        )

    @property
    def amount(self) -> float:
        return total_amount(self)

    def negative_fields(self) -> List[str]:
        return [name for name in COST_FIELDS + ("mileage",) if getattr(self, name) < 0]


def total_amount(costs: CostBreakdown) -> float:
    """Sum of the four cost fields. Mileage is not money and is excluded."""
    return costs.food_cost + costs.labor_cost + costs.vehicle_cost + costs.fuel_cost


def fuel_cost_per_mile(costs: CostBreakdown) -> Optional[float]:
    if costs.mileage > 0 and costs.fuel_cost > 0:
        return costs.fuel_cost / costs.mileage
    return None


def is_potentially_fraudulent(costs: CostBreakdown, threshold: Optional[float] = None) -> bool:
    """Flag when fuel cost per mile is strictly above the threshold (default 0.5)."""
    if threshold is None:
        threshold = settings.fraud_fuel_cost_per_mile
    ratio = fuel_cost_per_mile(costs)
    return ratio is not None and ratio > threshold


def append_note(existing: Optional[str], label: str, note: str) -> str:
    prefix = f"{existing}\n\n" if existing else ""
    return f"{prefix}{label}: {note}"


def serialize_payment(payment: PaymentRequest) -> Dict[str, Any]:
    return PaymentRequestResponse.model_validate(payment).model_dump(mode="json")


def _as_uuid(raw: Any, what: str) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise NotFound(f"{what} not found")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentWorkflow:
    """Payment request operations for one actor.

    Every mutating call ends in exactly one notice on the notifier:
    success, warning (flagged) or error.
    """

    def __init__(
        self,
        db: Session,
        actor: Actor,
        notifier: NotificationSurface,
        feed: Optional[ChangeFeed] = None,
        clock: Optional[Callable[[], datetime]] = None,
        threshold: Optional[float] = None,
    ):
        self.db = db
        self.actor = actor
        self.notifier = notifier
        self.feed = feed or default_feed
        self.clock = clock or _utcnow
        self.threshold = settings.fraud_fuel_cost_per_mile if threshold is None else threshold

    @contextmanager
    def _attempt(self, failure_message: str) -> Iterator[None]:
        try:
            yield
        except WorkflowError as exc:
            self.db.rollback()
            self.notifier.notify("error", exc.message)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            log.exception("payment_persistence_failed", actor_id=str(self.actor.id), failure=failure_message)
            self.notifier.notify("error", failure_message)
            raise PersistenceFailed(failure_message) from exc

    def _require_role(self, roles, message: str) -> None:
        if self.actor.role not in roles:
            raise Unauthorized(message)

    def _load(self, payment_id: Any) -> PaymentRequest:
        payment = self.db.get(PaymentRequest, _as_uuid(payment_id, "Payment request"))
        if payment is None:
            raise NotFound("Payment request not found")
        return payment

    # ----- Creation -----
    def create(self, job_id: Any, form: Mapping[str, Any]) -> PaymentRequest:
        with self._attempt("Failed to submit payment request"):
            self._require_role(SUBMIT_ROLES, "Only team leaders and administrators can submit payment requests")
            if not job_id:
                raise ValidationFailed("No job selected")
            costs = CostBreakdown.from_input(form)
            if not costs.title:
                raise ValidationFailed("Please provide a payment request title")
            negative = costs.negative_fields()
            if negative:
                raise ValidationFailed(f"Costs cannot be negative: {', '.join(negative)}")
            job = self.db.get(Job, _as_uuid(job_id, "Job"))
            if job is None:
                raise NotFound("Job not found")

            flagged = is_potentially_fraudulent(costs, self.threshold)
            payment = PaymentRequest(
                title=costs.title,
                job_id=job.id,
                amount=costs.amount,
                food_cost=costs.food_cost,
                labor_cost=costs.labor_cost,
                vehicle_cost=costs.vehicle_cost,
                fuel_cost=costs.fuel_cost,
                mileage=costs.mileage,
                notes=costs.notes,
                status="flagged" if flagged else "pending",
                created_by=self.actor.id,
                version=1,
            )
            self.db.add(payment)
            self.db.flush()
            create_audit_log(
                self.db,
                "payment",
                payment.id,
                "CREATE",
                actor_id=self.actor.id,
                actor_role=self.actor.role,
                changes_json={"status": {"before": None, "after": payment.status}},
                context={"job_id": str(job.id), "amount": payment.amount, "fuel_cost_per_mile": fuel_cost_per_mile(costs)},
            )
            self.db.commit()
            self.db.refresh(payment)

        row = serialize_payment(payment)
        if flagged:
            log.warning("payment_request_flagged", payment_id=row["id"], job_id=row["job_id"],
                        fuel_cost_per_mile=fuel_cost_per_mile(costs), threshold=self.threshold)
        log.info("payment_request_created", payment_id=row["id"], status=row["status"], amount=row["amount"])
        self.feed.publish("payments", "insert", row)
        if flagged:
            self.notifier.notify("warning", "Payment request has been flagged for review due to potential anomalies")
        else:
            self.notifier.notify("success", "Payment request submitted successfully")
        return payment

    # ----- Review -----
    def approve(self, payment_id: Any, note: Optional[str] = None, expected_version: Optional[int] = None) -> PaymentRequest:
        note = (note or "").strip()
        with self._attempt("Failed to approve payment"):
            self._require_role(("admin",), "Only administrators can approve payment requests")
            payment = self._transition(
                payment_id,
                expected_version,
                status="completed",
                actor_columns={"approved_by": self.actor.id, "approved_at": self.clock()},
                note_label="Approval note",
                note=note or None,
                action="APPROVE",
                decision="approved",
            )
        log.info("payment_request_approved", payment_id=str(payment.id), actor_id=str(self.actor.id), version=payment.version)
        self.feed.publish("payments", "update", serialize_payment(payment))
        self.notifier.notify("success", "Payment request approved")
        return payment

    def reject(self, payment_id: Any, note: Optional[str], expected_version: Optional[int] = None) -> PaymentRequest:
        note = (note or "").strip()
        with self._attempt("Failed to reject payment"):
            self._require_role(("admin",), "Only administrators can reject payment requests")
            if not note:
                raise ValidationFailed("Please provide a reason for rejection")
            payment = self._transition(
                payment_id,
                expected_version,
                status="failed",
                actor_columns={"rejected_by": self.actor.id, "rejected_at": self.clock()},
                note_label="Rejection reason",
                note=note,
                action="REJECT",
                decision="rejected",
            )
        log.info("payment_request_rejected", payment_id=str(payment.id), actor_id=str(self.actor.id), version=payment.version)
        self.feed.publish("payments", "update", serialize_payment(payment))
        self.notifier.notify("success", "Payment request rejected")
        return payment

    def _transition(
        self,
        payment_id: Any,
        expected_version: Optional[int],
        *,
        status: str,
        actor_columns: Dict[str, Any],
        note_label: str,
        note: Optional[str],
        action: str,
        decision: str,
    ) -> PaymentRequest:
        payment = self._load(payment_id)
        if payment.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Payment request is already {payment.status}")
        if expected_version is not None and expected_version != payment.version:
            log.warning("payment_transition_conflict", payment_id=str(payment.id),
                        expected_version=expected_version, stored_version=payment.version)
            raise Conflict("Payment request was changed by someone else; refresh and try again")

        before_status = payment.status
        read_version = payment.version
        values: Dict[str, Any] = dict(actor_columns)
        values["status"] = status
        values["version"] = PaymentRequest.version + 1
        values["updated_at"] = self.clock()
        if note:
            values["notes"] = append_note(payment.notes, note_label, note)

        stmt = (
            update(PaymentRequest)
            .where(
                PaymentRequest.id == payment.id,
                PaymentRequest.version == read_version,
                PaymentRequest.status.in_(OPEN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:
            log.warning("payment_transition_conflict", payment_id=str(payment.id), stored_version=read_version)
            raise Conflict("Payment request was changed by someone else; refresh and try again")

        create_audit_log(
            self.db,
            "payment",
            payment.id,
            action,
            actor_id=self.actor.id,
            actor_role=self.actor.role,
            changes_json={
                "status": {"before": before_status, "after": status},
                "version": {"before": read_version, "after": read_version + 1},
            },
            context={"note": note},
        )
        send_payment_decision_notification(self.db, payment, decision, note)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    # ----- Queries -----
    def _visible_query(self):
        if self.actor.role in VIEW_ALL_PAYMENT_ROLES:
            return self.db.query(PaymentRequest)
        if self.actor.role == "leader":
            return self.db.query(PaymentRequest).filter(PaymentRequest.created_by == self.actor.id)
        raise Unauthorized("Your role cannot view payment requests")

    def can_view(self, row: Mapping[str, Any]) -> bool:
        return can_view_payment(self.actor, row)

    def list(self, status: Optional[str] = None, job_id: Any = None) -> List[PaymentRequest]:
        query = self._visible_query()
        if status:
            if status not in PAYMENT_STATUSES:
                raise ValidationFailed(f"Unknown status '{status}'")
            query = query.filter(PaymentRequest.status == status)
        if job_id:
            query = query.filter(PaymentRequest.job_id == _as_uuid(job_id, "Job"))
        return query.order_by(PaymentRequest.created_at.desc()).all()

    def get(self, payment_id: Any) -> PaymentRequest:
        payment = self._load(payment_id)
        if not self.can_view({"created_by": payment.created_by}):
            raise NotFound("Payment request not found")
        return payment

    def summary(self) -> StatusCounts:
        return status_counts(self._visible_query().all())
