from datetime import datetime, timedelta, timezone

import pytest

from wohub.models.models import AuditLog, PauseReason, Role, TimeEntry, WorkOrderStatus
from wohub.services import time_ledger
from wohub.services.errors import ConflictError, NotFoundError, ValidationError


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def worker(make_user):
    return make_user(Role.EMPLOYEE, name="Ana Silva")


@pytest.fixture()
def order(make_work_order, worker):
    return make_work_order(workers=[worker])


def _closed_entry(db, order, worker, hours):
    entry = time_ledger.start_session(db, order, worker.id, now=T0)
    time_ledger.close_session(db, entry, T0 + timedelta(hours=hours))
    db.commit()
    return entry


def test_start_session_opens_entry(db, order, worker):
    entry = time_ledger.start_session(db, order, worker.id, now=T0)
    db.commit()

    assert entry.end_time is None
    assert entry.duration_hours is None
    assert time_ledger.get_open_entry(db, order.id, worker.id).id == entry.id
    actions = {a.action for a in db.query(AuditLog).all()}
    assert "SESSION_START" in actions


def test_start_session_twice_conflicts(db, order, worker):
    time_ledger.start_session(db, order, worker.id, now=T0)
    db.commit()

    with pytest.raises(ConflictError):
        time_ledger.start_session(db, order, worker.id, now=T0 + timedelta(minutes=5))
    assert db.query(TimeEntry).count() == 1


@pytest.mark.parametrize("status", [WorkOrderStatus.AWAITING_APPROVAL, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED])
def test_start_session_rejected_for_non_workable_status(db, make_work_order, worker, status):
    order = make_work_order(status=status, workers=[worker])
    with pytest.raises(ValidationError):
        time_ledger.start_session(db, order, worker.id)
    assert db.query(TimeEntry).count() == 0


def test_close_session_computes_duration(db, order, worker):
    entry = time_ledger.start_session(db, order, worker.id, now=T0)
    time_ledger.close_session(db, entry, T0 + timedelta(hours=2, minutes=30), note="Replaced valve")
    db.commit()
    db.refresh(entry)

    assert entry.duration_hours == pytest.approx(2.5)
    assert entry.note == "Replaced valve"
    assert entry.pause_reason is None
    assert order.total_hours == pytest.approx(2.5)


def test_close_session_twice_is_rejected(db, order, worker):
    entry = _closed_entry(db, order, worker, 1)
    with pytest.raises(ValidationError):
        time_ledger.close_session(db, entry, T0 + timedelta(hours=3))


def test_close_with_pause_reason_validates_reason(db, order, worker):
    entry = time_ledger.start_session(db, order, worker.id, now=T0)
    with pytest.raises(ValidationError):
        time_ledger.close_session_with_pause_reason(db, entry, T0 + timedelta(hours=1), "coffee")
    assert entry.end_time is None

    time_ledger.close_session_with_pause_reason(db, entry, T0 + timedelta(hours=1), PauseReason.SENT_QUOTE)
    assert entry.pause_reason == PauseReason.SENT_QUOTE


def test_sum_durations_across_workers_ignores_open_entries(db, make_user, make_work_order):
    a = make_user(Role.EMPLOYEE)
    b = make_user(Role.EMPLOYEE)
    c = make_user(Role.EMPLOYEE)
    order = make_work_order(workers=[a, b, c])

    for worker, hours in ((a, 1.5), (b, 2.0)):
        entry = time_ledger.start_session(db, order, worker.id, now=T0)
        time_ledger.close_session(db, entry, T0 + timedelta(hours=hours))
    time_ledger.start_session(db, order, c.id, now=T0)
    db.commit()

    assert time_ledger.sum_durations(db, order.id) == pytest.approx(3.5)
    assert len(time_ledger.list_open_entries(db, order.id)) == 1
    assert time_ledger.count_other_open_entries(db, order.id, a.id) == 1
    assert time_ledger.count_other_open_entries(db, order.id, c.id) == 0


def test_edit_closed_entry_recomputes_end_time(db, order, worker):
    entry = _closed_entry(db, order, worker, 1)

    time_ledger.edit_closed_entry(db, entry, worker.id, 3.25, note="Corrected")
    db.commit()
    db.refresh(entry)

    assert entry.duration_hours == pytest.approx(3.25)
    assert time_ledger.hours_between(entry.start_time, entry.end_time) == pytest.approx(3.25)
    assert entry.note == "Corrected"
    assert order.total_hours == pytest.approx(3.25)


@pytest.mark.parametrize("hours", [0, -1.5])
def test_edit_with_non_positive_hours_leaves_entry_unchanged(db, order, worker, hours):
    entry = _closed_entry(db, order, worker, 2)
    end_before = entry.end_time

    with pytest.raises(ValidationError):
        time_ledger.edit_closed_entry(db, entry, worker.id, hours, note="bad")

    db.refresh(entry)
    assert entry.duration_hours == pytest.approx(2.0)
    assert entry.end_time == end_before
    assert entry.note is None


def test_edit_requires_owner_and_closed_entry(db, order, worker, make_user):
    other = make_user(Role.EMPLOYEE)
    entry = _closed_entry(db, order, worker, 1)
    with pytest.raises(NotFoundError):
        time_ledger.edit_closed_entry(db, entry, other.id, 2)

    open_entry = time_ledger.start_session(db, order, worker.id, now=T0 + timedelta(hours=4))
    with pytest.raises(ValidationError):
        time_ledger.edit_closed_entry(db, open_entry, worker.id, 2)


def test_delete_entry_updates_total(db, order, worker):
    first = _closed_entry(db, order, worker, 1)
    _closed_entry(db, order, worker, 2)
    assert order.total_hours == pytest.approx(3.0)

    time_ledger.delete_entry(db, first, worker.id)
    db.commit()

    assert db.query(TimeEntry).count() == 1
    assert order.total_hours == pytest.approx(2.0)


def test_delete_open_entry_is_rejected(db, order, worker):
    entry = time_ledger.start_session(db, order, worker.id, now=T0)
    with pytest.raises(ValidationError):
        time_ledger.delete_entry(db, entry, worker.id)


def test_get_entry_missing(db):
    import uuid

    with pytest.raises(NotFoundError):
        time_ledger.get_entry(db, uuid.uuid4())


def test_index_conflict_leaves_rollback_to_caller(db, order, worker, monkeypatch):
    time_ledger.start_session(db, order, worker.id, now=T0)
    db.commit()
    # Simulate a concurrent start slipping past the open-entry check
    monkeypatch.setattr(time_ledger, "get_open_entry", lambda *args: None)
    order.notes = "staged by caller"

    with pytest.raises(ConflictError):
        time_ledger.start_session(db, order, worker.id, now=T0 + timedelta(minutes=5))

    # Nothing was rolled back behind the caller's back
    assert order.notes == "staged by caller"
    db.rollback()
    open_entries = db.query(TimeEntry).filter(TimeEntry.end_time.is_(None)).count()
    assert open_entries == 1
