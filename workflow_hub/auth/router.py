from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..schemas.auth import LoginRequest, MeResponse, SwitchRoleRequest, TokenResponse
from ..services.accounts import find_demo_user, find_user_by_email
from ..storage.provider import KeyValueStore
from .security import (
    create_access_token,
    get_current_user,
    get_session_store,
    get_token_payload,
    revoke_session,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger("workflow_hub.auth")


def _issue(user: User, store: KeyValueStore) -> TokenResponse:
    token, expires_at = create_access_token(user, store)
    return TokenResponse(access_token=token, expires_at=expires_at, role=user.role)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db), store: KeyValueStore = Depends(get_session_store)):
    user = find_user_by_email(db, req.email)
    if not user or not verify_password(req.password, user.password_hash):
        log.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active or user.is_archived:
        raise HTTPException(status_code=401, detail="User not active")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    log.info("login", user_id=str(user.id), role=user.role)
    return _issue(user, store)


@router.post("/logout")
def logout(payload: dict = Depends(get_token_payload), store: KeyValueStore = Depends(get_session_store)):
    revoke_session(payload, store)
    log.info("logout", user_id=payload.get("sub"))
    return {"status": "ok"}


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/switch-role", response_model=TokenResponse)
def switch_role(
    req: SwitchRoleRequest,
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_session_store),
):
    # Demo convenience: hop between the seeded accounts without a password
    if not settings.demo_mode:
        raise HTTPException(status_code=404, detail="Not found")
    target = find_demo_user(db, req.role.value)
    if target is None or not target.is_active or target.is_archived:
        raise HTTPException(status_code=404, detail="No demo account for that role")
    revoke_session(payload, store)
    log.info("switch_role", from_user=payload.get("sub"), to_user=str(target.id), role=target.role)
    return _issue(target, store)
