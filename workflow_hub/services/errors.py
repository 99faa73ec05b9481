"""
Domain errors raised by the workflow services.
Each carries a machine-readable kind and the HTTP status the API maps it to.
"""
from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


log = structlog.get_logger("workflow_hub.errors")


class WorkflowError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(WorkflowError):
    kind = "validation"
    status_code = 400


class Unauthorized(WorkflowError):
    kind = "unauthorized"
    status_code = 403


class NotFound(WorkflowError):
    kind = "not_found"
    status_code = 404


class InvalidTransition(WorkflowError):
    kind = "invalid_transition"
    status_code = 409


class Conflict(WorkflowError):
    kind = "conflict"
    status_code = 409


class PersistenceFailed(WorkflowError):
    kind = "persistence"
    status_code = 503


@contextmanager
def persisting(db: Session, failure_message: str, event: str, **context) -> Iterator[None]:
    """Run a unit of work and commit it.

    Any database error from flush, staging or commit rolls the session
    back, is logged under `event` and surfaces as PersistenceFailed.
    """
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log.exception(event, failure=failure_message, **context)
        raise PersistenceFailed(failure_message) from exc
