import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor
from ..db import get_db
from ..models.models import PaymentRequest
from ..schemas.payments import PaymentRequestCreate, PaymentReview, PaymentSummary
from ..services.notifications import NoticeCollector
from ..services.payments import PaymentWorkflow, serialize_payment
from ..services.permissions import payment_permissions


router = APIRouter(prefix="/payments", tags=["payments"])


def get_workflow(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> PaymentWorkflow:
    return PaymentWorkflow(db, actor, NoticeCollector())


def _payment_to_dict(payment: PaymentRequest, actor: Actor) -> dict:
    data = serialize_payment(payment)
    data["permissions"] = payment_permissions(actor, payment)
    return data


def _mutation_result(wf: PaymentWorkflow, payment: PaymentRequest) -> dict:
    return {
        "payment": _payment_to_dict(payment, wf.actor),
        "flagged": payment.status == "flagged",
        "notice": wf.notifier.last.to_dict(),
    }


@router.get("")
def list_payment_requests(
    status: Optional[str] = None,
    job_id: Optional[uuid.UUID] = None,
    wf: PaymentWorkflow = Depends(get_workflow),
):
    return [_payment_to_dict(p, wf.actor) for p in wf.list(status=status, job_id=job_id)]


@router.get("/summary", response_model=PaymentSummary)
def payment_summary(wf: PaymentWorkflow = Depends(get_workflow)):
    """Status counters for the caller's dashboard."""
    return wf.summary().to_dict()


@router.get("/{payment_id}")
def get_payment_request(payment_id: uuid.UUID, wf: PaymentWorkflow = Depends(get_workflow)):
    return _payment_to_dict(wf.get(payment_id), wf.actor)


@router.post("", status_code=201)
def create_payment_request(payload: PaymentRequestCreate, wf: PaymentWorkflow = Depends(get_workflow)):
    payment = wf.create(payload.job_id, payload.model_dump())
    return _mutation_result(wf, payment)


@router.post("/{payment_id}/approve")
def approve_payment_request(payment_id: uuid.UUID, payload: PaymentReview, wf: PaymentWorkflow = Depends(get_workflow)):
    payment = wf.approve(payment_id, note=payload.note, expected_version=payload.expected_version)
    return _mutation_result(wf, payment)


@router.post("/{payment_id}/reject")
def reject_payment_request(payment_id: uuid.UUID, payload: PaymentReview, wf: PaymentWorkflow = Depends(get_workflow)):
    payment = wf.reject(payment_id, note=payload.note, expected_version=payload.expected_version)
    return _mutation_result(wf, payment)
