"""
Pause workflow: a worker stops their own session, with or without a reason.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import PauseReason, TimeEntry, WorkOrder
from .errors import NotFoundError, ValidationError
from .notifications import Notifier, notify_many
from .status_engine import on_session_closed
from .time_ledger import close_session, close_session_with_pause_reason, get_open_entry
from .time_rules import ensure_utc, format_hours, utcnow
from .user_directory import get_display_name, list_approved_manager_ids


logger = structlog.get_logger(__name__)

PAUSE_REASON_LABELS = {
    PauseReason.MISSING_MATERIAL: "Falta de material",
    PauseReason.SENT_TO_WORKSHOP: "Enviado para oficina",
    PauseReason.SENT_QUOTE: "Enviado orçamento",
    PauseReason.MANAGER_SIGNATURE: "Assinatura do gerente",
}


def _load_work_order(db: Session, work_order_id: uuid.UUID) -> WorkOrder:
    work_order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not work_order:
        raise NotFoundError("Work order not found")
    return work_order


def _require_open_entry(db: Session, work_order: WorkOrder, user_id: uuid.UUID) -> TimeEntry:
    entry = get_open_entry(db, work_order.id, user_id)
    if entry is None:
        raise NotFoundError("No active session on this work order")
    return entry


def pause_work(
    db: Session,
    work_order_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: Optional[str],
    missing_material: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Close the worker's open session with a pause reason and commit.

    falta_material needs a material description; it is stored as the entry
    note and announced to the client and managers after the commit.

    Raises:
        ValidationError: missing or unknown reason, missing material description
        NotFoundError: unknown work order or no active session (no mutation)
    """
    if not reason:
        raise ValidationError("Pause reason is required")
    if reason not in PauseReason.ALL:
        raise ValidationError(f"Invalid pause reason: {reason}")
    material = (missing_material or "").strip()
    if reason == PauseReason.MISSING_MATERIAL and not material:
        raise ValidationError("Describe the missing material")

    work_order = _load_work_order(db, work_order_id)
    entry = _require_open_entry(db, work_order, user_id)

    note = f"Material em falta: {material}" if reason == PauseReason.MISSING_MATERIAL else None
    try:
        close_session_with_pause_reason(db, entry, ensure_utc(now or utcnow()), reason, note=note)
        on_session_closed(db, work_order, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "session_paused",
        reference=work_order.reference,
        user_id=str(user_id),
        reason=reason,
        duration=format_hours(entry.duration_hours),
    )

    if reason == PauseReason.MISSING_MATERIAL:
        _notify_missing_material(db, work_order, user_id, material, notifier)
    return entry


def end_session(
    db: Session,
    work_order_id: uuid.UUID,
    user_id: uuid.UUID,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """Close the worker's open session without a reason and commit."""
    work_order = _load_work_order(db, work_order_id)
    entry = _require_open_entry(db, work_order, user_id)
    try:
        close_session(db, entry, ensure_utc(now or utcnow()), note=(note or "").strip() or None)
        on_session_closed(db, work_order, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("session_ended", reference=work_order.reference, user_id=str(user_id), duration=format_hours(entry.duration_hours))
    return entry


def _notify_missing_material(
    db: Session,
    work_order: WorkOrder,
    user_id: uuid.UUID,
    material: str,
    notifier: Optional[Notifier],
) -> int:
    data = {
        "reference": work_order.reference,
        "title": work_order.title,
        "material": material,
        "worker_name": get_display_name(db, user_id),
        "message": f"Trabalho pausado por falta de material: {material}",
    }
    recipients = [work_order.client_id] + list_approved_manager_ids(db)
    return notify_many(db, "missing_material", recipients, work_order_id=work_order.id, data=data, notifier=notifier)
