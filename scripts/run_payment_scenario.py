"""
Walk one payment request through its lifecycle against the configured DB.

A leader files "Fuel run" with fuel 80 over 100 miles (0.8 per mile, so it
is flagged), then the admin approves it with a note. A live board prints
the status counters before and after each step.

Usage:
  python scripts/seed_demo_data.py
  python scripts/run_payment_scenario.py
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables before settings are read
from dotenv import load_dotenv

load_dotenv()

from workflow_hub.auth.security import Actor
from workflow_hub.db import SessionLocal
from workflow_hub.models.models import Job, PaymentRequest
from workflow_hub.services.accounts import find_demo_user
from workflow_hub.services.dashboard import PaymentBoard
from workflow_hub.services.notifications import NoticeCollector
from workflow_hub.services.payment_form import PaymentRequestForm
from workflow_hub.services.payments import PaymentWorkflow, serialize_payment
from workflow_hub.services.realtime import feed


def main() -> None:
    session = SessionLocal()
    board = PaymentBoard()
    try:
        leader = find_demo_user(session, "leader")
        admin = find_demo_user(session, "admin")
        if leader is None or admin is None:
            raise SystemExit("Demo users missing; run scripts/seed_demo_data.py first")
        job = session.query(Job).order_by(Job.created_at.asc()).first()
        if job is None:
            raise SystemExit("No jobs found; run scripts/seed_demo_data.py first")

        board.load(serialize_payment(p) for p in session.query(PaymentRequest).all())
        board.attach(feed)
        print(f"Before: {board.counts.to_dict()}")

        notices = NoticeCollector()
        form = PaymentRequestForm(job_id=job.id)
        form.change("title", "Fuel run")
        form.change("fuel_cost", "80")
        form.change("mileage", "100")
        payment = form.submit(PaymentWorkflow(session, Actor.from_user(leader), notices))
        print(f"Submitted {payment.id}: status={payment.status} amount={payment.amount}")
        print(f"  notice: {notices.last.kind} - {notices.last.message}")
        print(f"After submit: {board.counts.to_dict()}")

        review = PaymentWorkflow(session, Actor.from_user(admin), notices)
        payment = review.approve(payment.id, note="verified with receipt", expected_version=payment.version)
        print(f"Approved: status={payment.status} version={payment.version}")
        print(f"  notes: {payment.notes!r}")
        print(f"After approve: {board.counts.to_dict()}")
    finally:
        board.detach(feed)
        session.close()


if __name__ == "__main__":
    main()
