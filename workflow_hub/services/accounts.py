from typing import List, Tuple

import structlog
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..config import settings
from ..models.models import User


log = structlog.get_logger("workflow_hub.accounts")

# (name, email, role)
DEMO_USERS: List[Tuple[str, str, str]] = [
    ("Admin User", "admin@example.com", "admin"),
    ("Team Leader", "leader@example.com", "leader"),
    ("Quality Checker", "checker@example.com", "checker"),
    ("Field Worker", "worker@example.com", "worker"),
]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_user_by_email(db: Session, email: str):
    return db.query(User).filter(User.email == normalize_email(email)).first()


def find_demo_user(db: Session, role: str):
    emails = [email for _, email, r in DEMO_USERS if r == role]
    if not emails:
        return None
    return find_user_by_email(db, emails[0])


def ensure_demo_users(db: Session, password: str = None) -> int:
    """Create any missing demo account. Returns how many were created."""
    password = password or settings.demo_password
    created = 0
    for name, email, role in DEMO_USERS:
        if find_user_by_email(db, email):
            continue
        db.add(User(name=name, email=email, role=role, password_hash=get_password_hash(password)))
        created += 1
    if created:
        db.commit()
        log.info("demo_users_seeded", created=created)
    return created
