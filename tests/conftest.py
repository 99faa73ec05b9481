"""
Pytest fixtures for the WorkFlow Hub test suite.

Provides:
- An in-memory SQLite database shared by the app and the test body
- One demo user per role, as Actor snapshots
- A TestClient wired to the test database and a fresh session store

Environment is set before the app is imported: settings are read once
at import time and the app is built at module level.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("DEMO_MODE", "true")

from typing import Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_hub.auth.security import Actor, create_access_token, get_session_store
from workflow_hub.db import Base, get_db
from workflow_hub.main import app
from workflow_hub.models import models  # noqa: F401  registers tables
from workflow_hub.models.models import Job, User
from workflow_hub.services.accounts import ensure_demo_users, find_demo_user
from workflow_hub.services.notifications import NoticeCollector
from workflow_hub.services.realtime import ChangeFeed
from workflow_hub.storage.memory_provider import MemoryKeyValueStore


DEMO_PASSWORD = "demo-pass-123"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def actors(db) -> Dict[str, Actor]:
    """role -> Actor for the four seeded demo accounts."""
    ensure_demo_users(db, password=DEMO_PASSWORD)
    return {role: Actor.from_user(find_demo_user(db, role)) for role in ("admin", "leader", "checker", "worker")}


@pytest.fixture
def job(db, actors) -> Job:
    j = Job(
        title="Warehouse re-roofing",
        description="Replace the membrane",
        location="Unit 4",
        budget=1000,
        status="pending",
        assigned_to=actors["worker"].id,
        created_by=actors["leader"].id,
    )
    db.add(j)
    db.commit()
    db.refresh(j)
    return j


@pytest.fixture
def change_feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def notices() -> NoticeCollector:
    return NoticeCollector()


@pytest.fixture
def session_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def client(db, session_store) -> Generator[TestClient, None, None]:
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_store] = lambda: session_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(db, actors, session_store):
    """Build a bearer header for the demo account holding a role."""

    def _headers(role: str) -> Dict[str, str]:
        user = db.get(User, actors[role].id)
        token, _ = create_access_token(user, session_store)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def demo_password() -> str:
    return DEMO_PASSWORD
