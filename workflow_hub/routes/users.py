import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_password_hash, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.auth import UserCreate, UserUpdate
from ..services.accounts import find_user_by_email, normalize_email
from ..services.audit import create_audit_log


router = APIRouter(prefix="/users", tags=["users"])


def _user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "is_active": u.is_active,
        "is_archived": u.is_archived,
        "avatar_url": u.avatar_url,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
    }


@router.get("")
def list_users(
    role: Optional[str] = None,
    include_archived: bool = False,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin", "leader", "checker")),
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if not include_archived:
        query = query.filter(User.is_archived.is_(False))
    return [_user_to_dict(u) for u in query.order_by(User.name.asc()).all()]


@router.post("", status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), actor: Actor = Depends(require_roles("admin"))):
    if find_user_by_email(db, payload.email):
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    u = User(
        name=payload.name.strip(),
        email=normalize_email(payload.email),
        role=payload.role.value,
        password_hash=get_password_hash(payload.password),
    )
    db.add(u)
    db.flush()
    create_audit_log(db, "user", u.id, "CREATE", actor_id=actor.id, actor_role=actor.role, context={"role": u.role})
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    db.refresh(u)
    return {"user": _user_to_dict(u), "notice": {"kind": "success", "message": "User created successfully"}}


@router.patch("/{user_id}")
def update_user(user_id: uuid.UUID, payload: UserUpdate, db: Session = Depends(get_db), actor: Actor = Depends(require_roles("admin"))):
    u = db.get(User, user_id)
    if not u:
        raise HTTPException(status_code=404, detail="Not found")
    changes = payload.model_dump(exclude_unset=True)
    if "role" in changes and changes["role"] is not None:
        changes["role"] = changes["role"].value
    before = {k: getattr(u, k) for k in changes}
    for field, value in changes.items():
        if value is not None:
            setattr(u, field, value)
    create_audit_log(
        db, "user", u.id, "UPDATE", actor_id=actor.id, actor_role=actor.role,
        changes_json={k: {"before": before[k], "after": getattr(u, k)} for k in changes},
    )
    db.commit()
    db.refresh(u)
    return {"user": _user_to_dict(u), "notice": {"kind": "success", "message": "User updated"}}
