from types import SimpleNamespace

from workflow_hub.services.dashboard import LiveTable, PaymentBoard, StatusCounts, status_counts
from workflow_hub.services.payment_form import PaymentRequestForm
from workflow_hub.services.payments import PaymentWorkflow, serialize_payment
from workflow_hub.services.realtime import ChangeFeed


def test_status_counts_accepts_dicts_and_objects():
    rows = [
        {"status": "pending"},
        {"status": "flagged"},
        SimpleNamespace(status="completed"),
        SimpleNamespace(status="pending"),
        {"status": "something-else"},
    ]
    assert status_counts(rows) == StatusCounts(pending=2, flagged=1, completed=1, failed=0)


def test_live_table_merges_by_key():
    feed = ChangeFeed()
    table = LiveTable("jobs")
    table.load([{"id": "1", "title": "a"}])
    table.attach(feed)

    feed.publish("jobs", "insert", {"id": "2", "title": "b"})
    feed.publish("jobs", "update", {"id": "1", "title": "a2"})
    feed.publish("jobs", "delete", {"id": "2"})

    assert len(table) == 1
    assert table.get("1") == {"id": "1", "title": "a2"}
    assert table.get("2") is None


def test_live_table_update_replaces_whole_record():
    feed = ChangeFeed()
    table = LiveTable("jobs")
    table.attach(feed)
    feed.publish("jobs", "insert", {"id": "1", "title": "a", "location": "x"})
    feed.publish("jobs", "update", {"id": "1", "title": "b"})
    assert table.get("1") == {"id": "1", "title": "b"}


def test_live_table_drops_rows_that_stop_being_visible():
    feed = ChangeFeed()
    table = LiveTable("jobs", visible=lambda row: row["status"] != "cancelled")
    table.attach(feed)
    feed.publish("jobs", "insert", {"id": "1", "status": "pending"})
    feed.publish("jobs", "update", {"id": "1", "status": "cancelled"})
    assert len(table) == 0


def test_detach_stops_updates():
    feed = ChangeFeed()
    table = LiveTable("jobs")
    table.attach(feed)
    table.detach(feed)
    feed.publish("jobs", "insert", {"id": "1"})
    assert len(table) == 0
    assert feed.subscriber_count("jobs") == 0


def test_board_counts_follow_events():
    feed = ChangeFeed()
    board = PaymentBoard()
    board.load([{"id": "1", "status": "pending"}, {"id": "2", "status": "flagged"}])
    board.attach(feed)
    assert board.counts == StatusCounts(pending=1, flagged=1)

    feed.publish("payments", "update", {"id": "2", "status": "completed"})
    feed.publish("payments", "insert", {"id": "3", "status": "failed"})

    rows, counts = board.snapshot()
    assert counts == StatusCounts(pending=1, flagged=0, completed=1, failed=1)
    assert sorted(r["id"] for r in rows) == ["1", "2", "3"]


def test_board_for_leader_only_counts_own_requests(db, actors, job, notices):
    feed = ChangeFeed()
    leader_id = str(actors["leader"].id)
    board = PaymentBoard(visible=lambda row: row["created_by"] == leader_id)
    board.attach(feed)

    PaymentWorkflow(db, actors["leader"], notices, feed=feed).create(job.id, {"title": "mine", "food_cost": 1})
    PaymentWorkflow(db, actors["admin"], notices, feed=feed).create(job.id, {"title": "theirs", "food_cost": 1})

    assert [r["title"] for r in board.rows()] == ["mine"]
    assert board.counts.pending == 1


def test_fuel_run_scenario_moves_counters(db, actors, job, notices):
    feed = ChangeFeed()
    leader = PaymentWorkflow(db, actors["leader"], notices, feed=feed)
    admin = PaymentWorkflow(db, actors["admin"], notices, feed=feed)
    leader_board = PaymentBoard(visible=leader.can_view)
    admin_board = PaymentBoard(visible=admin.can_view)
    for board in (leader_board, admin_board):
        board.load(serialize_payment(p) for p in admin.list())
        board.attach(feed)

    form = PaymentRequestForm(job_id=job.id)
    form.change("title", "Fuel run")
    form.change("fuel_cost", "80")
    form.change("mileage", "100")
    payment = form.submit(leader)

    assert payment.status == "flagged"
    assert notices.last.kind == "warning"
    assert admin_board.counts == StatusCounts(flagged=1)

    admin.approve(payment.id, note="verified with receipt")

    for board in (leader_board, admin_board):
        row = board.get(payment.id)
        assert row["status"] == "completed"
        assert row["notes"] == "Approval note: verified with receipt"
        assert row["version"] == 2
        assert board.counts == StatusCounts(completed=1)
