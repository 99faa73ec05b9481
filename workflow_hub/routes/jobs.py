import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..db import get_db
from ..schemas.jobs import JobCreate, JobStatusUpdate, JobUpdate
from ..schemas.resources import VehicleAssignmentCreate
from ..services import jobs as job_service
from ..services import resources as resource_service
from ..services.errors import NotFound
from ..services.jobs import serialize_job
from ..services.resources import serialize_resource


router = APIRouter(tags=["jobs"])


@router.get("/jobs")
def list_jobs(
    status: Optional[str] = None,
    assigned_to: Optional[uuid.UUID] = None,
    mine: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    # Workers only ever see the jobs assigned to them
    if mine or actor.role == "worker":
        assigned_to = actor.id
    return [serialize_job(j) for j in job_service.list_jobs(db, status=status, assigned_to=assigned_to)]


@router.post("/jobs", status_code=201)
def create_job(payload: JobCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    job = job_service.create_job(
        db,
        actor,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        budget=payload.budget,
        assigned_to=payload.assigned_to,
        due_date=payload.due_date,
    )
    return {"job": serialize_job(job), "notice": {"kind": "success", "message": "Job created successfully"}}


@router.get("/jobs/{job_id}")
def get_job(job_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    job = job_service.get_job(db, job_id)
    if actor.role == "worker" and job.assigned_to != actor.id:
        raise NotFound("Job not found")
    return serialize_job(job)


@router.patch("/jobs/{job_id}")
def update_job(job_id: uuid.UUID, payload: JobUpdate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    job = job_service.update_job(db, actor, job_id, payload.model_dump(exclude_unset=True))
    return {"job": serialize_job(job), "notice": {"kind": "success", "message": "Job updated"}}


@router.post("/jobs/{job_id}/status")
def update_job_status(job_id: uuid.UUID, payload: JobStatusUpdate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    job = job_service.update_job_status(db, actor, job_id, payload.status.value)
    return {"job": serialize_job(job), "notice": {"kind": "success", "message": f"Job marked as {job.status}"}}


# ---------- RESOURCES ----------
@router.get("/jobs/{job_id}/resources")
def list_job_resources(job_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    job = job_service.get_job(db, job_id)
    if actor.role == "worker" and job.assigned_to != actor.id:
        raise NotFound("Job not found")
    return [serialize_resource(r) for r in resource_service.list_resources(db, job_id=job.id)]


@router.post("/jobs/{job_id}/resources", status_code=201)
def assign_job_resources(
    job_id: uuid.UUID,
    payload: VehicleAssignmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    resource = resource_service.assign_vehicle(db, actor, job_id, payload.model_dump())
    return {"resource": serialize_resource(resource), "notice": {"kind": "success", "message": "Resources assigned successfully"}}


@router.get("/resources")
def list_resources(db: Session = Depends(get_db), _=Depends(require_roles("admin", "leader", "checker"))):
    return [serialize_resource(r) for r in resource_service.list_resources(db)]


@router.get("/resources/{resource_id}")
def get_resource(resource_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles("admin", "leader", "checker"))):
    return serialize_resource(resource_service.get_resource(db, resource_id))
