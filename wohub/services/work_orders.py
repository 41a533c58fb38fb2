"""
Work order management: creation, listing, edits, assignment and client
request approval. Each public operation commits its own transaction and
sends its notifications afterwards.
"""
import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import (
    Equipment,
    Priority,
    Profile,
    Role,
    ServiceType,
    WorkOrder,
    WorkOrderAssignment,
    WorkOrderEquipment,
    WorkOrderStatus,
)
from ..storage.factory import get_storage_for_provider
from .audit import compute_diff, create_audit_log
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .notifications import Notifier, notify_many
from .status_engine import approve_request, manager_set_status, reject_request
from .user_directory import get_display_name, get_role, list_approved_manager_ids, list_assigned_workers


logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = ("title", "description", "priority", "service_type", "scheduled_date", "notes", "address")


def next_reference(db: Session, year: Optional[int] = None) -> str:
    """Next reference for the year, e.g. OT-2024-00042."""
    prefix = settings.reference_prefix
    year = year or datetime.now().year
    # Sequence is zero-padded, so the string max is the highest number issued
    last = (
        db.query(func.max(WorkOrder.reference))
        .filter(WorkOrder.reference.like(f"{prefix}-{year}-%"))
        .scalar()
    )
    seq = int(last.rsplit("-", 1)[-1]) + 1 if last else 1
    return f"{prefix}-{year}-{seq:05d}"


def get_work_order(db: Session, work_order_id: uuid.UUID) -> WorkOrder:
    work_order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not work_order:
        raise NotFoundError("Work order not found")
    return work_order


def can_view(db: Session, work_order: WorkOrder, user_id: uuid.UUID, role: str) -> bool:
    if role == Role.MANAGER:
        return True
    if role == Role.CLIENT:
        return work_order.client_id == user_id
    if role == Role.EMPLOYEE:
        return any(a.user_id == user_id for a in work_order.assignments)
    return False


def get_visible_work_order(db: Session, work_order_id: uuid.UUID, user_id: uuid.UUID, role: str) -> WorkOrder:
    """Load a work order the user may see; others are reported as missing."""
    work_order = get_work_order(db, work_order_id)
    if not can_view(db, work_order, user_id, role):
        raise NotFoundError("Work order not found")
    return work_order


def _validate_choices(priority: Optional[str], service_type: Optional[str]) -> None:
    if priority is not None and priority not in Priority.ALL:
        raise ValidationError(f"Invalid priority: {priority}")
    if service_type is not None and service_type not in ServiceType.ALL:
        raise ValidationError(f"Invalid service type: {service_type}")


def _link_equipments(db: Session, work_order: WorkOrder, equipment_ids: Iterable[uuid.UUID]) -> None:
    for equipment_id in dict.fromkeys(equipment_ids or []):
        equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
        if not equipment or equipment.client_id != work_order.client_id:
            raise ValidationError("Equipment does not belong to this client")
        db.add(WorkOrderEquipment(work_order_id=work_order.id, equipment_id=equipment.id))


def create_work_order(
    db: Session,
    creator_id: uuid.UUID,
    creator_role: str,
    title: str,
    client_id: Optional[uuid.UUID] = None,
    description: Optional[str] = None,
    priority: str = Priority.MEDIUM,
    service_type: str = ServiceType.MAINTENANCE,
    scheduled_date: Optional[date] = None,
    notes: Optional[str] = None,
    address: Optional[str] = None,
    equipment_ids: Optional[List[uuid.UUID]] = None,
    notifier: Optional[Notifier] = None,
) -> WorkOrder:
    """
    Managers create orders for a client (status pending); clients submit
    requests for themselves (status awaiting_approval).
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    _validate_choices(priority, service_type)

    if creator_role == Role.CLIENT:
        client_id = creator_id
        status = WorkOrderStatus.AWAITING_APPROVAL
    elif creator_role == Role.MANAGER:
        if not client_id:
            raise ValidationError("Client is required")
        client_role = get_role(db, client_id)
        if not client_role or client_role.role != Role.CLIENT:
            raise ValidationError("Client not found")
        status = WorkOrderStatus.PENDING
    else:
        raise AuthorizationError("Only managers and clients can create work orders")

    work_order = WorkOrder(
        reference=next_reference(db),
        title=title,
        description=description,
        status=status,
        priority=priority,
        service_type=service_type,
        scheduled_date=scheduled_date,
        notes=notes,
        address=address,
        total_hours=0.0,
        client_id=client_id,
        created_by=creator_id,
    )
    db.add(work_order)
    try:
        db.flush()
        _link_equipments(db, work_order, equipment_ids or [])
        create_audit_log(
            db,
            entity_type="work_order",
            entity_id=work_order.id,
            action="CREATE",
            actor_id=creator_id,
            changes_json={"reference": work_order.reference, "status": status},
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Could not allocate a unique reference, retry") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(work_order)
    logger.info("work_order_created", reference=work_order.reference, status=status, role=creator_role)

    if creator_role == Role.CLIENT:
        client_name = get_display_name(db, client_id)
        data = {"reference": work_order.reference, "title": work_order.title, "client_name": client_name}
        notify_many(
            db,
            "work_order_created_notify_managers",
            list_approved_manager_ids(db),
            work_order_id=work_order.id,
            data={**data, "message": f"Novo pedido de {client_name or 'cliente'}: {work_order.title}"},
            notifier=notifier,
        )
        notify_many(
            db,
            "work_order_request_received",
            [client_id],
            work_order_id=work_order.id,
            data={**data, "recipient_name": client_name, "message": "Recebemos o seu pedido. Será analisado em breve."},
            notifier=notifier,
        )
    return work_order


def list_work_orders(
    db: Session,
    user_id: uuid.UUID,
    role: str,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    client_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> Tuple[List[WorkOrder], int]:
    page = max(1, page)
    page_size = min(max(1, page_size or settings.default_page_size), settings.max_page_size)

    query = db.query(WorkOrder)
    if role == Role.CLIENT:
        query = query.filter(WorkOrder.client_id == user_id)
    elif role == Role.EMPLOYEE:
        query = query.join(WorkOrderAssignment, WorkOrderAssignment.work_order_id == WorkOrder.id).filter(
            WorkOrderAssignment.user_id == user_id
        )
    elif role != Role.MANAGER:
        return [], 0

    if status:
        query = query.filter(WorkOrder.status == status)
    if priority:
        query = query.filter(WorkOrder.priority == priority)
    if client_id and role == Role.MANAGER:
        query = query.filter(WorkOrder.client_id == client_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(WorkOrder.reference.ilike(like), WorkOrder.title.ilike(like)))

    total = query.count()
    items = (
        query.order_by(WorkOrder.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def update_work_order(
    db: Session,
    work_order: WorkOrder,
    manager_id: uuid.UUID,
    changes: Dict[str, Any],
    notifier: Optional[Notifier] = None,
) -> WorkOrder:
    """Manager edit of the editable fields and, optionally, the status."""
    _validate_choices(changes.get("priority"), changes.get("service_type"))
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Title is required")

    before = {f: getattr(work_order, f) for f in EDITABLE_FIELDS}
    before["status"] = work_order.status
    try:
        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(work_order, field, changes[field])
        if changes.get("status"):
            manager_set_status(db, work_order, changes["status"], manager_id)
        after = {f: getattr(work_order, f) for f in EDITABLE_FIELDS}
        after["status"] = work_order.status
        diff = compute_diff(before, after)
        if diff:
            create_audit_log(
                db,
                entity_type="work_order",
                entity_id=work_order.id,
                action="UPDATE",
                actor_id=manager_id,
                changes_json=diff,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(work_order)
    if not diff:
        return work_order

    data = {
        "reference": work_order.reference,
        "title": work_order.title,
        "status": work_order.status,
        "changes": sorted(diff.keys()),
        "message": f"A ordem {work_order.reference} foi atualizada",
    }
    recipients = [work_order.client_id]
    recipients += [w.id for w in list_assigned_workers(db, work_order.id)]
    recipients += [m for m in list_approved_manager_ids(db) if m != manager_id]
    notify_many(db, "work_order_updated", recipients, work_order_id=work_order.id, data=data, notifier=notifier)
    return work_order


def delete_work_order(db: Session, work_order: WorkOrder, manager_id: uuid.UUID) -> None:
    """Delete the order with its entries, links and attachments, then remove stored files."""
    stored = [(a.provider, a.key) for a in work_order.attachments]
    reference = work_order.reference
    try:
        create_audit_log(
            db,
            entity_type="work_order",
            entity_id=work_order.id,
            action="DELETE",
            actor_id=manager_id,
            changes_json={"reference": reference},
        )
        db.delete(work_order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    for provider, key in stored:
        try:
            get_storage_for_provider(provider).delete(key)
        except Exception as e:
            logger.warning("attachment_cleanup_failed", key=key, error=str(e))
    logger.info("work_order_deleted", reference=reference, attachments=len(stored))


def assign_worker(
    db: Session,
    work_order: WorkOrder,
    worker_id: uuid.UUID,
    manager_id: uuid.UUID,
    notifier: Optional[Notifier] = None,
) -> WorkOrderAssignment:
    role = get_role(db, worker_id)
    if not role or role.role != Role.EMPLOYEE or not role.approved:
        raise ValidationError("Only approved employees can be assigned")
    if any(a.user_id == worker_id for a in work_order.assignments):
        raise ConflictError("Employee is already assigned to this work order")

    assignment = WorkOrderAssignment(work_order_id=work_order.id, user_id=worker_id, assigned_by=manager_id)
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Employee is already assigned to this work order") from exc
    db.refresh(assignment)

    worker_name = get_display_name(db, worker_id)
    notify_many(
        db,
        "work_order_assigned",
        [worker_id],
        work_order_id=work_order.id,
        data={
            "reference": work_order.reference,
            "title": work_order.title,
            "recipient_name": worker_name,
            "scheduled_date": work_order.scheduled_date.isoformat() if work_order.scheduled_date else None,
            "message": f"Foi-lhe atribuída a ordem de trabalho {work_order.reference}",
        },
        notifier=notifier,
    )
    return assignment


def unassign_worker(db: Session, work_order: WorkOrder, worker_id: uuid.UUID) -> None:
    assignment = (
        db.query(WorkOrderAssignment)
        .filter(WorkOrderAssignment.work_order_id == work_order.id, WorkOrderAssignment.user_id == worker_id)
        .first()
    )
    if not assignment:
        raise NotFoundError("Assignment not found")
    db.delete(assignment)
    db.commit()


def approve_client_request(
    db: Session,
    work_order: WorkOrder,
    manager_id: uuid.UUID,
    scheduled_date: Optional[date] = None,
    notifier: Optional[Notifier] = None,
) -> WorkOrder:
    try:
        approve_request(db, work_order, manager_id, scheduled_date=scheduled_date)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(work_order)
    notify_many(
        db,
        "work_order_approved",
        [work_order.client_id],
        work_order_id=work_order.id,
        data={
            "reference": work_order.reference,
            "title": work_order.title,
            "recipient_name": get_display_name(db, work_order.client_id),
            "scheduled_date": work_order.scheduled_date.isoformat() if work_order.scheduled_date else None,
            "message": f"O seu pedido {work_order.reference} foi aprovado",
        },
        notifier=notifier,
    )
    return work_order


def reject_client_request(
    db: Session,
    work_order: WorkOrder,
    manager_id: uuid.UUID,
    reason: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> WorkOrder:
    try:
        reject_request(db, work_order, manager_id)
        if reason:
            work_order.notes = reason
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(work_order)
    message = f"O seu pedido {work_order.reference} foi rejeitado"
    if reason:
        message = f"{message}: {reason}"
    notify_many(
        db,
        "work_order_rejected",
        [work_order.client_id],
        work_order_id=work_order.id,
        data={
            "reference": work_order.reference,
            "title": work_order.title,
            "recipient_name": get_display_name(db, work_order.client_id),
            "message": message,
        },
        notifier=notifier,
    )
    return work_order


def serialize_work_order(wo: WorkOrder, client_name: Optional[str] = None) -> dict:
    return {
        "id": str(wo.id),
        "reference": wo.reference,
        "title": wo.title,
        "description": wo.description,
        "status": wo.status,
        "priority": wo.priority,
        "service_type": wo.service_type,
        "scheduled_date": wo.scheduled_date.isoformat() if wo.scheduled_date else None,
        "notes": wo.notes,
        "address": wo.address,
        "total_hours": wo.total_hours or 0.0,
        "client_id": str(wo.client_id),
        "client_name": client_name,
        "created_by": str(wo.created_by) if wo.created_by else None,
        "created_at": wo.created_at.isoformat() if wo.created_at else None,
        "updated_at": wo.updated_at.isoformat() if wo.updated_at else None,
    }


def client_names(db: Session, work_orders: Iterable[WorkOrder]) -> Dict[uuid.UUID, str]:
    ids = {wo.client_id for wo in work_orders}
    if not ids:
        return {}
    rows = db.query(Profile.id, Profile.name).filter(Profile.id.in_(ids)).all()
    return {pid: name for pid, name in rows}
