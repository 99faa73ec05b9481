"""
Seed the local database with the demo accounts and a couple of sample jobs.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: users are matched by email, jobs by title.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables before settings are read
from dotenv import load_dotenv

load_dotenv()

from workflow_hub.config import settings
from workflow_hub.db import SessionLocal, Base, engine
from workflow_hub.models.models import Job
from workflow_hub.services.accounts import ensure_demo_users, find_demo_user


SAMPLE_JOBS = [
    {
        "title": "Warehouse re-roofing",
        "description": "Strip and replace the membrane on the north warehouse.",
        "location": "Unit 4, Harbour Industrial Park",
        "budget": 18500,
    },
    {
        "title": "Fence line inspection",
        "description": "Walk the perimeter fence and log damaged panels.",
        "location": "Riverside Depot",
        "budget": 1200,
    },
]


def ensure_job(session, created_by, assigned_to, **fields) -> Job:
    job = session.query(Job).filter(Job.title == fields["title"]).first()
    if job:
        return job
    job = Job(status="pending", created_by=created_by, assigned_to=assigned_to, **fields)
    session.add(job)
    session.flush()
    return job


def main() -> None:
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        created = ensure_demo_users(session)
        print(f"Demo users created: {created}")
        leader = find_demo_user(session, "leader")
        worker = find_demo_user(session, "worker")
        for fields in SAMPLE_JOBS:
            job = ensure_job(session, leader.id, worker.id, **fields)
            print(f"Job ready: {job.title} ({job.id})")
        session.commit()
        print("Seed completed: demo users and jobs upserted.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
