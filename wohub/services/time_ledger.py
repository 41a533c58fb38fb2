"""
Time entry ledger: opens and closes work sessions and computes worked hours.

Functions stage changes on the given Session and flush; committing is left to
the caller so that multi-step workflows can share one transaction.
"""
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import PauseReason, TimeEntry, WorkOrder, WorkOrderStatus
from .audit import create_audit_log
from .errors import ConflictError, NotFoundError, ValidationError
from .time_rules import add_hours, ensure_utc, hours_between, utcnow


logger = structlog.get_logger(__name__)


def get_entry(db: Session, entry_id: uuid.UUID) -> TimeEntry:
    entry = db.query(TimeEntry).filter(TimeEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError("Time entry not found")
    return entry


def get_open_entry(db: Session, work_order_id: uuid.UUID, user_id: uuid.UUID) -> Optional[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(
            TimeEntry.work_order_id == work_order_id,
            TimeEntry.user_id == user_id,
            TimeEntry.end_time.is_(None),
        )
        .order_by(TimeEntry.start_time.desc())
        .first()
    )


def list_open_entries(db: Session, work_order_id: uuid.UUID) -> List[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.work_order_id == work_order_id, TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.asc())
        .all()
    )


def count_other_open_entries(db: Session, work_order_id: uuid.UUID, user_id: uuid.UUID) -> int:
    return (
        db.query(func.count(TimeEntry.id))
        .filter(
            TimeEntry.work_order_id == work_order_id,
            TimeEntry.end_time.is_(None),
            TimeEntry.user_id != user_id,
        )
        .scalar()
        or 0
    )


def list_entries(
    db: Session,
    work_order_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
) -> List[TimeEntry]:
    query = db.query(TimeEntry).filter(TimeEntry.work_order_id == work_order_id)
    if user_id is not None:
        query = query.filter(TimeEntry.user_id == user_id)
    return query.order_by(TimeEntry.start_time.desc()).all()


def sum_durations(db: Session, work_order_id: uuid.UUID) -> float:
    """Total worked hours across all workers. Open entries count as zero."""
    total = (
        db.query(func.coalesce(func.sum(TimeEntry.duration_hours), 0.0))
        .filter(TimeEntry.work_order_id == work_order_id)
        .scalar()
    )
    return float(total or 0.0)


def refresh_total_hours(db: Session, work_order: WorkOrder) -> float:
    db.flush()
    work_order.total_hours = sum_durations(db, work_order.id)
    return work_order.total_hours


def start_session(
    db: Session,
    work_order: WorkOrder,
    user_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Open a session for user_id on work_order and signal the status engine.

    Raises:
        ValidationError: work order is not in a workable status
        ConflictError: the user already has an open session on this order
    """
    from .status_engine import on_session_started

    if work_order.status not in WorkOrderStatus.WORKABLE:
        raise ValidationError(f"Work order {work_order.reference} is {work_order.status}; sessions cannot be started")
    if get_open_entry(db, work_order.id, user_id) is not None:
        raise ConflictError("You already have an active session on this work order")

    entry = TimeEntry(
        work_order_id=work_order.id,
        user_id=user_id,
        start_time=ensure_utc(now or utcnow()),
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as exc:
        # Partial unique index caught a concurrent start; the caller rolls back
        raise ConflictError("You already have an active session on this work order") from exc

    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="SESSION_START",
        actor_id=user_id,
        context={"work_order_id": work_order.id},
    )
    on_session_started(db, work_order, acting_user_id=user_id)
    logger.info("session_started", work_order=work_order.reference, user_id=str(user_id), entry_id=str(entry.id))
    return entry


def close_session(
    db: Session,
    entry: TimeEntry,
    end_time: datetime,
    note: Optional[str] = None,
    pause_reason: Optional[str] = None,
) -> TimeEntry:
    if entry.end_time is not None:
        raise ValidationError("Time entry is already closed")
    entry.end_time = ensure_utc(end_time)
    entry.duration_hours = hours_between(entry.start_time, entry.end_time)
    entry.note = note
    entry.pause_reason = pause_reason
    refresh_total_hours(db, entry.work_order)
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="SESSION_CLOSE",
        actor_id=entry.user_id,
        changes_json={"duration_hours": entry.duration_hours},
        context={"work_order_id": entry.work_order_id, "pause_reason": pause_reason},
    )
    return entry


def close_session_with_pause_reason(
    db: Session,
    entry: TimeEntry,
    end_time: datetime,
    reason: str,
    note: Optional[str] = None,
) -> TimeEntry:
    if reason not in PauseReason.ALL:
        raise ValidationError(f"Invalid pause reason: {reason}")
    return close_session(db, entry, end_time, note=note, pause_reason=reason)


def edit_closed_entry(
    db: Session,
    entry: TimeEntry,
    user_id: uuid.UUID,
    hours: float,
    note: Optional[str] = None,
) -> TimeEntry:
    """
    Rewrite a closed entry from an hours figure: end_time = start_time + hours.
    """
    if hours is None or hours <= 0:
        raise ValidationError("Hours must be greater than zero")
    if entry.user_id != user_id:
        raise NotFoundError("Time entry not found")
    if entry.end_time is None:
        raise ValidationError("Only closed time entries can be edited")

    before = {"duration_hours": entry.duration_hours, "note": entry.note}
    entry.end_time = add_hours(entry.start_time, hours)
    entry.duration_hours = float(hours)
    entry.note = note or None
    refresh_total_hours(db, entry.work_order)
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="UPDATE",
        actor_id=user_id,
        changes_json={"before": before, "after": {"duration_hours": entry.duration_hours, "note": entry.note}},
    )
    return entry


def delete_entry(db: Session, entry: TimeEntry, user_id: uuid.UUID) -> None:
    if entry.user_id != user_id:
        raise NotFoundError("Time entry not found")
    if entry.end_time is None:
        raise ValidationError("End the active session before deleting it")
    work_order = entry.work_order
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="DELETE",
        actor_id=user_id,
        changes_json={"duration_hours": entry.duration_hours},
        context={"work_order_id": entry.work_order_id},
    )
    db.delete(entry)
    refresh_total_hours(db, work_order)
