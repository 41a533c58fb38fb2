from datetime import datetime, timedelta, timezone

import pytest

from wohub.models.models import PauseReason, Role, TimeEntry, WorkOrderStatus
from wohub.services import time_ledger
from wohub.services.errors import NotFoundError, ValidationError
from wohub.services.pause import end_session, pause_work


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def setup(db, make_user, make_work_order):
    manager = make_user(Role.MANAGER)
    worker = make_user(Role.EMPLOYEE, name="Rui Costa")
    client = make_user(Role.CLIENT)
    order = make_work_order(client=client, workers=[worker])
    time_ledger.start_session(db, order, worker.id, now=T0)
    db.commit()
    return manager, worker, client, order


def test_pause_with_reason_closes_session_and_sets_pending(db, setup, notifier):
    _, worker, _, order = setup

    entry = pause_work(
        db, order.id, worker.id, PauseReason.SENT_TO_WORKSHOP, notifier=notifier, now=T0 + timedelta(hours=1.5)
    )

    assert entry.pause_reason == PauseReason.SENT_TO_WORKSHOP
    assert entry.duration_hours == pytest.approx(1.5)
    assert entry.note is None
    assert order.status == WorkOrderStatus.PENDING
    assert notifier.calls == []


def test_missing_material_requires_description(db, setup):
    _, worker, _, order = setup

    with pytest.raises(ValidationError):
        pause_work(db, order.id, worker.id, PauseReason.MISSING_MATERIAL, missing_material="   ")
    assert time_ledger.get_open_entry(db, order.id, worker.id) is not None


def test_missing_material_notes_and_notifies(db, setup, notifier):
    manager, worker, client, order = setup

    entry = pause_work(
        db,
        order.id,
        worker.id,
        PauseReason.MISSING_MATERIAL,
        missing_material="Válvula 3/4",
        notifier=notifier,
        now=T0 + timedelta(hours=1),
    )

    assert entry.note == "Material em falta: Válvula 3/4"
    recipients = notifier.recipients("missing_material")
    assert set(recipients) == {client.id, manager.id}
    assert notifier.calls[0]["data"]["material"] == "Válvula 3/4"


def test_missing_material_pause_survives_notifier_failure(db, setup):
    _, worker, _, order = setup

    def broken(*args, **kwargs):
        raise RuntimeError("smtp down")

    entry = pause_work(
        db, order.id, worker.id, PauseReason.MISSING_MATERIAL, missing_material="Cabo", notifier=broken, now=T0 + timedelta(hours=1)
    )
    assert entry.end_time is not None
    assert order.status == WorkOrderStatus.PENDING


@pytest.mark.parametrize("reason", [None, "", "lunch"])
def test_invalid_reason_is_rejected(db, setup, reason):
    _, worker, _, order = setup
    with pytest.raises(ValidationError):
        pause_work(db, order.id, worker.id, reason)
    assert time_ledger.get_open_entry(db, order.id, worker.id) is not None


def test_pause_without_open_session_twice(db, setup):
    _, worker, _, order = setup
    pause_work(db, order.id, worker.id, PauseReason.SENT_QUOTE, now=T0 + timedelta(hours=1))
    count = db.query(TimeEntry).count()

    for _ in range(2):
        with pytest.raises(NotFoundError):
            pause_work(db, order.id, worker.id, PauseReason.SENT_QUOTE)
    assert db.query(TimeEntry).count() == count


def test_pause_keeps_in_progress_while_colleague_works(db, setup, make_user):
    _, worker, _, order = setup
    colleague = make_user(Role.EMPLOYEE)
    time_ledger.start_session(db, order, colleague.id, now=T0)
    db.commit()

    pause_work(db, order.id, worker.id, PauseReason.MANAGER_SIGNATURE, now=T0 + timedelta(hours=1))
    assert order.status == WorkOrderStatus.IN_PROGRESS


def test_end_session_stores_note(db, setup):
    _, worker, _, order = setup

    entry = end_session(db, order.id, worker.id, note="  Done for today ", now=T0 + timedelta(hours=8))

    assert entry.note == "Done for today"
    assert entry.pause_reason is None
    assert entry.duration_hours == pytest.approx(8.0)
    assert order.total_hours == pytest.approx(8.0)
    assert order.status == WorkOrderStatus.PENDING


def test_end_session_without_open_session(db, setup, make_user):
    other = make_user(Role.EMPLOYEE)
    _, _, _, order = setup
    with pytest.raises(NotFoundError):
        end_session(db, order.id, other.id)
