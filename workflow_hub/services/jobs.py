import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import Actor
from ..models.models import Job, User
from ..schemas.jobs import JobResponse
from .audit import create_audit_log, compute_diff
from .errors import NotFound, Unauthorized, ValidationFailed, persisting
from .realtime import ChangeFeed, feed as default_feed


log = structlog.get_logger("workflow_hub.jobs")

JOB_STATUSES = ("pending", "in-progress", "completed", "cancelled")
MANAGE_ROLES = ("admin", "leader", "checker")
# Workers may only move their own jobs forward
WORKER_STATUSES = ("in-progress", "completed")
EDITABLE_FIELDS = ("title", "description", "location", "budget", "status", "assigned_to", "due_date")


def serialize_job(job: Job) -> Dict[str, Any]:
    return JobResponse.model_validate(job).model_dump(mode="json")


def _as_uuid(raw: Any) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise NotFound("Job not found")


def _check_assignee(db: Session, user_id: Optional[uuid.UUID]) -> None:
    if user_id is None:
        return
    user = db.get(User, user_id)
    if user is None or user.is_archived:
        raise ValidationFailed("Assigned user does not exist")


def create_job(
    db: Session,
    actor: Actor,
    *,
    title: str,
    description: str,
    location: str,
    budget: float = 0,
    assigned_to: Optional[uuid.UUID] = None,
    due_date: Optional[datetime] = None,
    feed: Optional[ChangeFeed] = None,
) -> Job:
    if actor.role not in MANAGE_ROLES:
        raise Unauthorized("Your role cannot create jobs")
    title = (title or "").strip()
    if not title or not (description or "").strip() or not (location or "").strip():
        raise ValidationFailed("Please fill in all required fields")
    if budget is not None and budget < 0:
        raise ValidationFailed("Budget cannot be negative")
    _check_assignee(db, assigned_to)

    job = Job(
        title=title,
        description=description.strip(),
        location=location.strip(),
        budget=budget or 0,
        status="pending",
        assigned_to=assigned_to,
        due_date=due_date,
        created_by=actor.id,
    )
    with persisting(db, "Failed to create job", "job_persistence_failed", actor_id=str(actor.id)):
        db.add(job)
        db.flush()
        create_audit_log(db, "job", job.id, "CREATE", actor_id=actor.id, actor_role=actor.role,
                         context={"title": job.title})
    db.refresh(job)

    row = serialize_job(job)
    log.info("job_created", job_id=row["id"], actor_id=str(actor.id))
    (feed or default_feed).publish("jobs", "insert", row)
    return job


def list_jobs(
    db: Session,
    status: Optional[str] = None,
    assigned_to: Optional[uuid.UUID] = None,
) -> List[Job]:
    query = db.query(Job)
    if status:
        if status not in JOB_STATUSES:
            raise ValidationFailed(f"Unknown status '{status}'")
        query = query.filter(Job.status == status)
    if assigned_to:
        query = query.filter(Job.assigned_to == assigned_to)
    return query.order_by(Job.created_at.desc()).all()


def get_job(db: Session, job_id: Any) -> Job:
    job = db.get(Job, _as_uuid(job_id))
    if job is None:
        raise NotFound("Job not found")
    return job


def update_job(
    db: Session,
    actor: Actor,
    job_id: Any,
    changes: Dict[str, Any],
    feed: Optional[ChangeFeed] = None,
) -> Job:
    if actor.role not in MANAGE_ROLES:
        raise Unauthorized("Your role cannot edit jobs")
    job = get_job(db, job_id)

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Unknown job fields: {', '.join(sorted(unknown))}")
    if "status" in changes and str(getattr(changes["status"], "value", changes["status"])) not in JOB_STATUSES:
        raise ValidationFailed(f"Unknown status '{changes['status']}'")
    for field in ("title", "description", "location"):
        if field in changes and not (changes[field] or "").strip():
            raise ValidationFailed(f"{field.capitalize()} is required")
    if changes.get("budget") is not None and changes["budget"] < 0:
        raise ValidationFailed("Budget cannot be negative")
    if "assigned_to" in changes:
        _check_assignee(db, changes["assigned_to"])

    before = serialize_job(job)
    with persisting(db, "Failed to update job", "job_persistence_failed", job_id=str(job.id)):
        for field, value in changes.items():
            if isinstance(value, Enum):
                value = value.value
            if field == "budget" and value is None:
                continue
            setattr(job, field, value.strip() if isinstance(value, str) and field != "status" else value)
        db.flush()
        after = serialize_job(job)
        create_audit_log(db, "job", job.id, "UPDATE", actor_id=actor.id, actor_role=actor.role,
                         changes_json=compute_diff(before, after))
    db.refresh(job)

    row = serialize_job(job)
    log.info("job_updated", job_id=row["id"], fields=sorted(changes), actor_id=str(actor.id))
    (feed or default_feed).publish("jobs", "update", row)
    return job


def update_job_status(
    db: Session,
    actor: Actor,
    job_id: Any,
    status: str,
    feed: Optional[ChangeFeed] = None,
) -> Job:
    """Status-only update; the path workers use to mark their jobs done."""
    if status not in JOB_STATUSES:
        raise ValidationFailed(f"Unknown status '{status}'")
    if actor.role in MANAGE_ROLES:
        return update_job(db, actor, job_id, {"status": status}, feed=feed)

    job = get_job(db, job_id)
    if job.assigned_to != actor.id:
        raise Unauthorized("You can only update jobs assigned to you")
    if status not in WORKER_STATUSES:
        raise Unauthorized("Workers can only start or complete jobs")

    before_status = job.status
    with persisting(db, "Failed to update job", "job_persistence_failed", job_id=str(job.id)):
        job.status = status
        create_audit_log(db, "job", job.id, "STATUS", actor_id=actor.id, actor_role=actor.role,
                         changes_json={"status": {"before": before_status, "after": status}})
    db.refresh(job)

    row = serialize_job(job)
    log.info("job_updated", job_id=row["id"], fields=["status"], actor_id=str(actor.id))
    (feed or default_feed).publish("jobs", "update", row)
    return job
