from workflow_hub.models.models import AuditLog
from workflow_hub.services.audit import compute_diff, create_audit_log, get_audit_logs, integrity_hash


def test_compute_diff_lists_only_changed_fields():
    before = {"status": "pending", "budget": 10.0, "title": "Fence"}
    after = {"status": "completed", "budget": 10.0, "assigned_to": "u1"}

    assert compute_diff(before, after) == {
        "assigned_to": {"before": None, "after": "u1"},
        "status": {"before": "pending", "after": "completed"},
        "title": {"before": "Fence", "after": None},
    }


def test_integrity_hash_ignores_empty_fields_and_depends_on_secret():
    fields = {"action": "APPROVE", "entity_id": "p1"}

    assert integrity_hash(fields, "s1") == integrity_hash({**fields, "context": None}, "s1")
    assert integrity_hash(fields, "s1") != integrity_hash(fields, "s2")
    assert integrity_hash(fields, "s1") != integrity_hash({**fields, "action": "REJECT"}, "s1")


def test_entries_are_staged_until_the_caller_commits(db, job, actors):
    admin = actors["admin"]
    entry = create_audit_log(db, "job", job.id, "UPDATE", actor_id=admin.id, actor_role="admin",
                             changes_json=compute_diff({"budget": 1}, {"budget": 2}))
    assert entry.source == "api"
    assert len(entry.integrity_hash) == 64

    db.rollback()
    assert db.query(AuditLog).filter(AuditLog.action == "UPDATE").count() == 0

    create_audit_log(db, "job", job.id, "UPDATE", actor_id=admin.id, actor_role="admin")
    db.commit()
    assert [e.action for e in get_audit_logs(db, entity_type="job", entity_id=job.id)] == ["UPDATE"]
