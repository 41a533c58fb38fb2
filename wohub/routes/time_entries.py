import uuid
from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import require_roles, role_of
from ..db import get_db
from ..models.models import Role, TimeEntry, User
from ..schemas.work_orders import EndSessionRequest, PauseRequest, TimeEntryEdit, TimeEntryResponse
from ..services import time_ledger
from ..services.errors import ValidationError
from ..services.pause import PAUSE_REASON_LABELS, end_session, pause_work
from ..services.user_directory import is_assigned
from ..services.work_orders import get_visible_work_order, get_work_order
from .work_orders import entry_response


router = APIRouter(prefix="/time-entries", tags=["time-entries"])
logger = structlog.get_logger(__name__)


def _require_assignment(db: Session, work_order_id: uuid.UUID, user: User) -> None:
    if not is_assigned(db, work_order_id, user.id):
        raise HTTPException(status_code=403, detail="You are not assigned to this work order")


@router.get("/pause-reasons")
def list_pause_reasons(_=Depends(require_roles())):
    return [{"value": value, "label": label} for value, label in PAUSE_REASON_LABELS.items()]


@router.get("/active", response_model=List[TimeEntryResponse])
def my_active_sessions(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    """Open sessions of the current worker across all work orders"""
    entries = (
        db.query(TimeEntry)
        .filter(TimeEntry.user_id == user.id, TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.asc())
        .all()
    )
    return [entry_response(e) for e in entries]


@router.get("/work-orders/{work_order_id}", response_model=List[TimeEntryResponse])
def list_work_order_entries(
    work_order_id: uuid.UUID,
    mine: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    wo = get_visible_work_order(db, work_order_id, user.id, role_of(user))
    entries = time_ledger.list_entries(db, wo.id, user_id=user.id if mine else None)
    return [entry_response(e) for e in entries]


@router.post("/work-orders/{work_order_id}/start", response_model=TimeEntryResponse, status_code=201)
def start_work(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    """Open a work session for the current worker"""
    wo = get_work_order(db, work_order_id)
    _require_assignment(db, wo.id, user)
    try:
        entry = time_ledger.start_session(db, wo, user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry_response(entry)


@router.post("/work-orders/{work_order_id}/pause", response_model=TimeEntryResponse)
def pause(
    work_order_id: uuid.UUID,
    payload: PauseRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    entry = pause_work(db, work_order_id, user.id, payload.reason.value, missing_material=payload.missing_material)
    return entry_response(entry)


@router.post("/work-orders/{work_order_id}/end", response_model=TimeEntryResponse)
def end(
    work_order_id: uuid.UUID,
    payload: EndSessionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    entry = end_session(db, work_order_id, user.id, note=payload.note)
    return entry_response(entry)


@router.put("/{entry_id}", response_model=TimeEntryResponse)
def edit_entry(
    entry_id: uuid.UUID,
    payload: TimeEntryEdit,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    """Correct the hours of one of the worker's closed sessions"""
    if payload.hours is None or payload.hours <= 0:
        raise ValidationError("Hours must be greater than zero")
    entry = time_ledger.get_entry(db, entry_id)
    try:
        time_ledger.edit_closed_entry(db, entry, user.id, payload.hours, note=payload.note)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    logger.info("time_entry_edited", entry_id=str(entry.id), hours=entry.duration_hours)
    return entry_response(entry)


@router.delete("/{entry_id}")
def delete_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.EMPLOYEE)),
):
    entry = time_ledger.get_entry(db, entry_id)
    try:
        time_ledger.delete_entry(db, entry, user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"message": "Time entry deleted successfully"}
