import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from workflow_hub.models.models import AuditLog, Notification, PaymentRequest
from workflow_hub.services.errors import (
    Conflict,
    InvalidTransition,
    NotFound,
    PersistenceFailed,
    Unauthorized,
    ValidationFailed,
)
from workflow_hub.services.payments import PaymentWorkflow


FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def workflow_for(db, actors, notices, change_feed):
    def _build(role):
        return PaymentWorkflow(db, actors[role], notices, feed=change_feed, clock=lambda: FIXED_NOW)

    return _build


@pytest.fixture
def pending_payment(workflow_for, job, notices):
    payment = workflow_for("leader").create(job.id, {
        "title": "Materials",
        "food_cost": 20,
        "labor_cost": 100,
        "notes": "Receipts attached",
    })
    notices.notices.clear()
    return payment


def test_create_pending_request(workflow_for, job, notices, actors):
    payment = workflow_for("leader").create(job.id, {
        "title": "Site visit",
        "food_cost": "100",
        "labor_cost": 200,
        "vehicle_cost": 50,
        "fuel_cost": 60,
        "mileage": 1000,
    })
    assert payment.status == "pending"
    assert payment.amount == 410
    assert payment.version == 1
    assert payment.created_by == actors["leader"].id
    assert payment.approved_at is None
    assert [(n.kind, n.message) for n in notices.notices] == [
        ("success", "Payment request submitted successfully"),
    ]


def test_create_flags_expensive_fuel(workflow_for, job, notices):
    payment = workflow_for("leader").create(job.id, {"title": "Fuel run", "fuel_cost": 80, "mileage": 100})
    assert payment.status == "flagged"
    assert payment.amount == 80
    assert notices.last.kind == "warning"
    assert notices.last.message == "Payment request has been flagged for review due to potential anomalies"
    assert len(notices.notices) == 1


def test_create_publishes_insert(workflow_for, job, change_feed):
    seen = []
    change_feed.subscribe("payments", on_insert=seen.append)
    payment = workflow_for("admin").create(job.id, {"title": "Lunch", "food_cost": 15})
    assert len(seen) == 1
    assert seen[0]["id"] == str(payment.id)
    assert seen[0]["status"] == "pending"


def test_create_writes_audit_entry(db, workflow_for, job):
    payment = workflow_for("leader").create(job.id, {"title": "Lunch", "food_cost": 15})
    entries = db.query(AuditLog).filter(AuditLog.entity_id == payment.id).all()
    assert [e.action for e in entries] == ["CREATE"]
    assert entries[0].integrity_hash


@pytest.mark.parametrize(
    "job_id, form, message",
    [
        (None, {"title": "x"}, "No job selected"),
        ("job", {"title": "   "}, "Please provide a payment request title"),
        ("job", {"title": "x", "fuel_cost": -5}, "Costs cannot be negative: fuel_cost"),
    ],
)
def test_create_validation(db, workflow_for, job, notices, job_id, form, message):
    with pytest.raises(ValidationFailed) as exc:
        workflow_for("leader").create(job.id if job_id else None, form)
    assert exc.value.message == message
    assert notices.last.kind == "error"
    assert notices.last.message == message
    assert len(notices.notices) == 1
    assert db.query(PaymentRequest).count() == 0


def test_create_unknown_job(workflow_for, actors, notices):
    with pytest.raises(NotFound):
        workflow_for("leader").create(uuid.uuid4(), {"title": "x"})
    assert notices.last.message == "Job not found"


@pytest.mark.parametrize("role", ["checker", "worker"])
def test_create_requires_leader_or_admin(workflow_for, job, role):
    with pytest.raises(Unauthorized):
        workflow_for(role).create(job.id, {"title": "x"})


def test_approve_pending(workflow_for, pending_payment, notices, actors, change_feed):
    updates = []
    change_feed.subscribe("payments", on_update=updates.append)

    payment = workflow_for("admin").approve(pending_payment.id)

    assert payment.status == "completed"
    assert payment.approved_by == actors["admin"].id
    assert payment.approved_at is not None
    assert payment.version == 2
    assert payment.notes == "Receipts attached"
    assert [(n.kind, n.message) for n in notices.notices] == [("success", "Payment request approved")]
    assert [row["status"] for row in updates] == ["completed"]


def test_approve_flagged_with_note(workflow_for, job, notices):
    wf = workflow_for("leader")
    flagged = wf.create(job.id, {"title": "Fuel run", "fuel_cost": 80, "mileage": 100})
    payment = workflow_for("admin").approve(flagged.id, note="  verified with receipt  ")
    assert payment.status == "completed"
    assert payment.notes == "Approval note: verified with receipt"


def test_approve_notifies_submitter(db, workflow_for, pending_payment, actors):
    workflow_for("admin").approve(pending_payment.id, note="ok")
    rows = db.query(Notification).filter(Notification.user_id == actors["leader"].id).all()
    assert len(rows) == 1
    assert rows[0].template_key == "payment_approved"
    assert rows[0].kind == "success"
    assert rows[0].payload_json["status"] == "completed"


def test_second_approve_is_rejected_and_keeps_timestamp(db, workflow_for, pending_payment, notices):
    admin = workflow_for("admin")
    first = admin.approve(pending_payment.id)
    approved_at = first.approved_at
    notices.notices.clear()

    with pytest.raises(InvalidTransition) as exc:
        admin.approve(pending_payment.id)

    assert exc.value.message == "Payment request is already completed"
    stored = db.get(PaymentRequest, pending_payment.id)
    assert stored.approved_at == approved_at
    assert stored.version == 2
    assert [(n.kind, n.message) for n in notices.notices] == [("error", "Payment request is already completed")]


def test_reject_requires_note(workflow_for, pending_payment, notices, db):
    with pytest.raises(ValidationFailed) as exc:
        workflow_for("admin").reject(pending_payment.id, "   ")
    assert exc.value.message == "Please provide a reason for rejection"
    assert db.get(PaymentRequest, pending_payment.id).status == "pending"
    assert notices.last.kind == "error"


def test_reject_appends_reason(db, workflow_for, pending_payment, notices, actors):
    payment = workflow_for("admin").reject(pending_payment.id, "duplicate of last week")
    assert payment.status == "failed"
    assert payment.rejected_by == actors["admin"].id
    assert payment.rejected_at is not None
    assert payment.approved_at is None
    assert payment.notes == "Receipts attached\n\nRejection reason: duplicate of last week"
    assert notices.last.message == "Payment request rejected"
    note = db.query(Notification).filter(Notification.user_id == actors["leader"].id).one()
    assert note.template_key == "payment_rejected"
    assert note.kind == "warning"


def test_cannot_approve_rejected(workflow_for, pending_payment):
    admin = workflow_for("admin")
    admin.reject(pending_payment.id, "no receipts")
    with pytest.raises(InvalidTransition):
        admin.approve(pending_payment.id)


@pytest.mark.parametrize("role", ["leader", "checker", "worker"])
def test_only_admin_reviews(db, workflow_for, pending_payment, notices, role):
    wf = workflow_for(role)
    with pytest.raises(Unauthorized) as exc:
        wf.approve(pending_payment.id)
    assert exc.value.message == "Only administrators can approve payment requests"
    with pytest.raises(Unauthorized):
        wf.reject(pending_payment.id, "nope")
    assert db.get(PaymentRequest, pending_payment.id).status == "pending"
    assert [n.kind for n in notices.notices] == ["error", "error"]


def test_stale_expected_version_conflicts(workflow_for, pending_payment):
    with pytest.raises(Conflict):
        workflow_for("admin").approve(pending_payment.id, expected_version=5)


def test_concurrent_change_conflicts(db, workflow_for, pending_payment, notices):
    payment = db.get(PaymentRequest, pending_payment.id)
    assert payment.version == 1
    # Another reviewer's write lands after this session read the row
    db.execute(
        update(PaymentRequest)
        .where(PaymentRequest.id == payment.id)
        .values(version=2)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(Conflict) as exc:
        workflow_for("admin").approve(payment.id)

    assert exc.value.message == "Payment request was changed by someone else; refresh and try again"
    assert notices.last.kind == "error"


def test_unknown_payment(workflow_for, actors):
    with pytest.raises(NotFound):
        workflow_for("admin").approve(uuid.uuid4())


def test_visibility_by_role(workflow_for, job, actors, db):
    workflow_for("leader").create(job.id, {"title": "Leader request", "food_cost": 5})
    workflow_for("admin").create(job.id, {"title": "Admin request", "food_cost": 5})

    assert len(workflow_for("admin").list()) == 2
    assert len(workflow_for("checker").list()) == 2
    assert [p.title for p in workflow_for("leader").list()] == ["Leader request"]
    with pytest.raises(Unauthorized):
        workflow_for("worker").list()


def test_leader_cannot_get_others_request(workflow_for, job):
    other = workflow_for("admin").create(job.id, {"title": "Admin request"})
    with pytest.raises(NotFound):
        workflow_for("leader").get(other.id)


def test_summary_counts(workflow_for, job):
    leader = workflow_for("leader")
    admin = workflow_for("admin")
    a = leader.create(job.id, {"title": "a", "food_cost": 1})
    b = leader.create(job.id, {"title": "b", "fuel_cost": 80, "mileage": 100})
    leader.create(job.id, {"title": "c", "food_cost": 1})
    admin.approve(a.id)
    admin.reject(b.id, "suspicious")

    assert admin.summary().to_dict() == {"pending": 1, "flagged": 0, "completed": 1, "failed": 1}


def test_list_filters_by_status(workflow_for, job):
    leader = workflow_for("leader")
    leader.create(job.id, {"title": "a", "food_cost": 1})
    leader.create(job.id, {"title": "b", "fuel_cost": 80, "mileage": 100})
    assert [p.title for p in leader.list(status="flagged")] == ["b"]
    with pytest.raises(ValidationFailed):
        leader.list(status="archived")


def _locked_database():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_create_commit_failure_rolls_back(db, workflow_for, job, notices, change_feed, monkeypatch):
    seen = []
    change_feed.subscribe("payments", on_insert=seen.append)
    monkeypatch.setattr(db, "commit", _locked_database)

    with pytest.raises(PersistenceFailed) as exc:
        workflow_for("leader").create(job.id, {"title": "Lunch", "food_cost": 15})

    monkeypatch.undo()
    assert exc.value.status_code == 503
    assert [(n.kind, n.message) for n in notices.notices] == [("error", "Failed to submit payment request")]
    assert seen == []
    assert db.query(PaymentRequest).count() == 0
    assert db.query(AuditLog).count() == 0


@pytest.mark.parametrize(
    "decide, message",
    [
        (lambda wf, pid: wf.approve(pid, note="ok"), "Failed to approve payment"),
        (lambda wf, pid: wf.reject(pid, "duplicate"), "Failed to reject payment"),
    ],
)
def test_decision_commit_failure_leaves_request_open(db, workflow_for, pending_payment, notices, change_feed,
                                                     monkeypatch, decide, message):
    seen = []
    change_feed.subscribe("payments", on_update=seen.append)
    monkeypatch.setattr(db, "commit", _locked_database)

    with pytest.raises(PersistenceFailed) as exc:
        decide(workflow_for("admin"), pending_payment.id)

    monkeypatch.undo()
    assert exc.value.message == message
    assert [(n.kind, n.message) for n in notices.notices] == [("error", message)]
    assert seen == []
    stored = db.get(PaymentRequest, pending_payment.id)
    assert stored.status == "pending"
    assert stored.version == 1
    assert stored.notes == "Receipts attached"
    assert db.query(Notification).count() == 0
