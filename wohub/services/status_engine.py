"""
Work order status engine.

Session-driven transitions (start / close) and explicit manager actions
(approve, reject, direct edit). completed and cancelled are never left
through the session-driven paths.
"""
import uuid
from datetime import date
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import WorkOrder, WorkOrderStatus
from .audit import create_audit_log
from .errors import InvalidTransitionError, ValidationError
from .time_ledger import count_other_open_entries


logger = structlog.get_logger(__name__)


# Explicit, non-manager transitions. Manager edits bypass this table.
ALLOWED_TRANSITIONS = {
    WorkOrderStatus.AWAITING_APPROVAL: {WorkOrderStatus.PENDING, WorkOrderStatus.CANCELLED},
    WorkOrderStatus.PENDING: {WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED},
    WorkOrderStatus.APPROVED: {WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED},
    WorkOrderStatus.IN_PROGRESS: {WorkOrderStatus.PENDING, WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED},
    WorkOrderStatus.COMPLETED: set(),
    WorkOrderStatus.CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _set_status(
    db: Session,
    work_order: WorkOrder,
    target: str,
    actor_id: Optional[uuid.UUID],
    reason: str,
) -> bool:
    current = work_order.status
    if current == target:
        return False
    work_order.status = target
    db.flush()
    create_audit_log(
        db,
        entity_type="work_order",
        entity_id=work_order.id,
        action="STATUS_CHANGE",
        actor_id=actor_id,
        changes_json={"status": {"before": current, "after": target}},
        context={"reason": reason},
    )
    logger.info("work_order_status_changed", reference=work_order.reference, before=current, after=target, reason=reason)
    return True


def transition(
    db: Session,
    work_order: WorkOrder,
    target: str,
    actor_id: Optional[uuid.UUID] = None,
    reason: str = "explicit",
) -> bool:
    if not can_transition(work_order.status, target):
        raise InvalidTransitionError(work_order.status, target)
    return _set_status(db, work_order, target, actor_id, reason)


def on_session_started(db: Session, work_order: WorkOrder, acting_user_id: uuid.UUID) -> bool:
    """A worker opened a session: pending/approved orders move to in_progress."""
    if work_order.status in (WorkOrderStatus.PENDING, WorkOrderStatus.APPROVED):
        return _set_status(db, work_order, WorkOrderStatus.IN_PROGRESS, acting_user_id, "session_started")
    return False


def on_session_closed(db: Session, work_order: WorkOrder, acting_user_id: uuid.UUID) -> bool:
    """
    A worker paused or ended their session.

    The order drops back to pending only when nobody else still has an open
    session. This is a read-then-write check; a stale in_progress is corrected
    by the next close.
    """
    if work_order.status != WorkOrderStatus.IN_PROGRESS:
        return False
    db.flush()
    if count_other_open_entries(db, work_order.id, acting_user_id) > 0:
        return False
    return _set_status(db, work_order, WorkOrderStatus.PENDING, acting_user_id, "no_active_sessions")


def approve_request(
    db: Session,
    work_order: WorkOrder,
    manager_id: uuid.UUID,
    scheduled_date: Optional[date] = None,
) -> WorkOrder:
    if work_order.status != WorkOrderStatus.AWAITING_APPROVAL:
        raise InvalidTransitionError(work_order.status, WorkOrderStatus.PENDING)
    if scheduled_date is not None:
        work_order.scheduled_date = scheduled_date
    _set_status(db, work_order, WorkOrderStatus.PENDING, manager_id, "request_approved")
    return work_order


def reject_request(db: Session, work_order: WorkOrder, manager_id: uuid.UUID) -> WorkOrder:
    if work_order.status != WorkOrderStatus.AWAITING_APPROVAL:
        raise InvalidTransitionError(work_order.status, WorkOrderStatus.CANCELLED)
    _set_status(db, work_order, WorkOrderStatus.CANCELLED, manager_id, "request_rejected")
    return work_order


def mark_completed(db: Session, work_order: WorkOrder, actor_id: uuid.UUID) -> bool:
    return transition(db, work_order, WorkOrderStatus.COMPLETED, actor_id, reason="completed")


def manager_set_status(db: Session, work_order: WorkOrder, target: str, manager_id: uuid.UUID) -> bool:
    """Manager direct edit: any valid status, including leaving completed."""
    if target not in WorkOrderStatus.ALL:
        raise ValidationError(f"Invalid status: {target}")
    return _set_status(db, work_order, target, manager_id, "manager_edit")
