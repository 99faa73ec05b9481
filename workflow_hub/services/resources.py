import uuid
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy.orm import Session

from ..auth.security import Actor
from ..models.models import Resource
from ..schemas.resources import ResourceResponse
from .audit import create_audit_log
from .errors import NotFound, Unauthorized, ValidationFailed, persisting
from .jobs import get_job
from .realtime import ChangeFeed, feed as default_feed


log = structlog.get_logger("workflow_hub.resources")

ASSIGN_ROLES = ("admin", "leader")
VEHICLE_FIELDS = ("vehicle_plate", "vehicle_type", "driver_name", "driver_license")


def serialize_resource(resource: Resource) -> Dict[str, Any]:
    return ResourceResponse.model_validate(resource).model_dump(mode="json")


def assign_vehicle(
    db: Session,
    actor: Actor,
    job_id: Any,
    details: Mapping[str, Any],
    feed: Optional[ChangeFeed] = None,
) -> Resource:
    """
    Record a vehicle and driver against a job.

    One row per call, no cap per job and no format checks on plate or
    license. The job is referenced only through assigned_to.
    """
    if actor.role not in ASSIGN_ROLES:
        raise Unauthorized("Your role cannot assign resources")
    values = {field: str(details.get(field) or "").strip() for field in VEHICLE_FIELDS}
    if not all(values.values()):
        raise ValidationFailed("Please fill in all required fields")
    job = get_job(db, job_id)

    resource = Resource(
        name=f"Vehicle: {values['vehicle_plate']}",
        type="vehicle",
        quantity=1,
        unit=values["vehicle_type"],
        cost_per_unit=0,
        available=False,
        status="assigned",
        assigned_to=job.id,
        driver_name=values["driver_name"],
        driver_license=values["driver_license"],
        created_by=actor.id,
    )
    with persisting(db, "Failed to assign resources", "resource_persistence_failed", job_id=str(job.id)):
        db.add(resource)
        db.flush()
        create_audit_log(db, "resource", resource.id, "ASSIGN", actor_id=actor.id, actor_role=actor.role,
                         context={"job_id": str(job.id), "vehicle_plate": values["vehicle_plate"]})
    db.refresh(resource)

    row = serialize_resource(resource)
    log.info("resource_assigned", resource_id=row["id"], job_id=str(job.id), actor_id=str(actor.id))
    (feed or default_feed).publish("resources", "insert", row)
    return resource


def list_resources(db: Session, job_id: Optional[uuid.UUID] = None) -> List[Resource]:
    query = db.query(Resource)
    if job_id is not None:
        query = query.filter(Resource.assigned_to == job_id)
    return query.order_by(Resource.created_at.desc()).all()


def get_resource(db: Session, resource_id: uuid.UUID) -> Resource:
    resource = db.get(Resource, resource_id)
    if resource is None:
        raise NotFound("Resource not found")
    return resource
