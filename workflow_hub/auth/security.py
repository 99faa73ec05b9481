import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..storage.factory import session_store
from ..storage.provider import KeyValueStore


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    id: uuid.UUID
    role: str
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role, name=user.name)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _session_key(jti: str) -> str:
    return f"session:{jti}"


def get_session_store() -> KeyValueStore:
    return session_store


def create_access_token(user: User, store: Optional[KeyValueStore] = None) -> Tuple[str, datetime]:
    """Issue a JWT for the user and register its session under the token's jti."""
    store = store or session_store
    now = datetime.now(tz=timezone.utc)
    expires_at = now + timedelta(seconds=settings.jwt_ttl_seconds)
    jti = str(uuid.uuid4())
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "jti": jti,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    store.set(
        _session_key(jti),
        {"user_id": str(user.id), "role": user.role, "expires_at": expires_at.isoformat()},
        expires_at=expires_at.timestamp(),
    )
    return token, expires_at


def session_active(payload: dict, store: Optional[KeyValueStore] = None) -> bool:
    """True while the token's session record is still in the store."""
    store = store or session_store
    jti = payload.get("jti")
    return bool(jti) and store.exists(_session_key(jti))


def revoke_session(payload: dict, store: Optional[KeyValueStore] = None) -> None:
    store = store or session_store
    jti = payload.get("jti")
    if jti:
        store.delete(_session_key(jti))


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def resolve_token(token: str, db: Session, store: Optional[KeyValueStore] = None) -> Tuple[User, dict]:
    """Validate a bearer token against its session record and load the user."""
    store = store or session_store
    payload = decode_token(token)
    if not session_active(payload, store):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session ended")
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active or user.is_archived:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user, payload


def get_token_payload(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_session_store),
) -> dict:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    _, payload = resolve_token(creds.credentials, db, store)
    return payload


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_session_store),
) -> User:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    user, _ = resolve_token(creds.credentials, db, store)
    return user


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


def require_roles(*allowed_roles: str):
    """Allow the request when the actor holds any of the given roles."""
    def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor

    return _dep
