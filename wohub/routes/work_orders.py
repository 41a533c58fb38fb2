import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import require_roles, role_of
from ..config import settings
from ..db import get_db
from ..models.models import Role, User, WorkOrder
from ..schemas.work_orders import (
    ApproveRequest,
    AssignmentResponse,
    AssignRequest,
    AttachmentResponse,
    CompleteRequest,
    CompletionResponse,
    EquipmentSummary,
    PriorityEnum,
    RejectRequest,
    TimeEntryResponse,
    WorkOrderCreate,
    WorkOrderDetail,
    WorkOrderPage,
    WorkOrderResponse,
    WorkOrderStatusEnum,
    WorkOrderUpdate,
)
from ..services import work_orders as wo_service
from ..services.audit import get_audit_logs
from ..services.completion import complete_order
from ..services.time_ledger import list_entries
from ..services.user_directory import get_display_name, is_assigned


router = APIRouter(prefix="/work-orders", tags=["work-orders"])


def _response(db: Session, wo: WorkOrder, client_name: Optional[str] = None) -> WorkOrderResponse:
    if client_name is None:
        client_name = get_display_name(db, wo.client_id)
    return WorkOrderResponse(**wo_service.serialize_work_order(wo, client_name))


def entry_response(entry) -> TimeEntryResponse:
    return TimeEntryResponse(
        id=entry.id,
        work_order_id=entry.work_order_id,
        user_id=entry.user_id,
        worker_name=entry.worker.name if entry.worker else None,
        start_time=entry.start_time,
        end_time=entry.end_time,
        duration_hours=entry.duration_hours,
        note=entry.note,
        pause_reason=entry.pause_reason,
    )


def _detail(db: Session, wo: WorkOrder) -> WorkOrderDetail:
    base = wo_service.serialize_work_order(wo, get_display_name(db, wo.client_id))
    entries = list_entries(db, wo.id)
    return WorkOrderDetail(
        **base,
        assignments=[
            AssignmentResponse(user_id=a.user_id, name=a.worker.name if a.worker else None, assigned_at=a.assigned_at)
            for a in sorted(wo.assignments, key=lambda a: (a.worker.name if a.worker else ""))
        ],
        equipments=[
            EquipmentSummary(
                id=link.equipment.id,
                name=link.equipment.name,
                model=link.equipment.model,
                serial_number=link.equipment.serial_number,
            )
            for link in wo.equipment_links
            if link.equipment is not None
        ],
        attachments=[AttachmentResponse.model_validate(a) for a in wo.attachments],
        time_entries=[entry_response(e) for e in entries],
        active_sessions=sum(1 for e in entries if e.end_time is None),
    )


@router.post("", response_model=WorkOrderResponse, status_code=201)
def create_work_order(
    payload: WorkOrderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    """Managers create orders for a client; clients submit service requests."""
    wo = wo_service.create_work_order(
        db,
        creator_id=user.id,
        creator_role=role_of(user),
        title=payload.title,
        client_id=payload.client_id,
        description=payload.description,
        priority=payload.priority.value,
        service_type=payload.service_type.value,
        scheduled_date=payload.scheduled_date,
        notes=payload.notes,
        address=payload.address,
        equipment_ids=payload.equipment_ids,
    )
    return _response(db, wo)


@router.get("", response_model=WorkOrderPage)
def list_work_orders(
    status: Optional[WorkOrderStatusEnum] = Query(None),
    priority: Optional[PriorityEnum] = Query(None),
    client_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    """List work orders visible to the caller with filters and pagination"""
    items, total = wo_service.list_work_orders(
        db,
        user_id=user.id,
        role=role_of(user),
        status=status.value if status else None,
        priority=priority.value if priority else None,
        client_id=client_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    names = wo_service.client_names(db, items)
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    return WorkOrderPage(
        items=[_response(db, wo, names.get(wo.client_id, "")) for wo in items],
        total=total,
        page=page,
        page_size=size,
        total_pages=(total + size - 1) // size if size > 0 else 0,
    )


@router.get("/{work_order_id}", response_model=WorkOrderDetail)
def get_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    wo = wo_service.get_visible_work_order(db, work_order_id, user.id, role_of(user))
    return _detail(db, wo)


@router.put("/{work_order_id}", response_model=WorkOrderResponse)
def update_work_order(
    work_order_id: uuid.UUID,
    payload: WorkOrderUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    """Edit a work order; a status change here is a manager override"""
    wo = wo_service.get_work_order(db, work_order_id)
    changes = payload.model_dump(exclude_unset=True)
    for key in ("priority", "service_type", "status"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value
    wo = wo_service.update_work_order(db, wo, user.id, changes)
    return _response(db, wo)


@router.delete("/{work_order_id}")
def delete_work_order(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    wo = wo_service.get_work_order(db, work_order_id)
    wo_service.delete_work_order(db, wo, user.id)
    return {"message": "Work order deleted successfully"}


@router.get("/{work_order_id}/assignments", response_model=List[AssignmentResponse])
def list_assignments(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    wo = wo_service.get_visible_work_order(db, work_order_id, user.id, role_of(user))
    return _detail(db, wo).assignments


@router.post("/{work_order_id}/assignments", response_model=AssignmentResponse, status_code=201)
def assign_worker(
    work_order_id: uuid.UUID,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    wo = wo_service.get_work_order(db, work_order_id)
    assignment = wo_service.assign_worker(db, wo, payload.user_id, user.id)
    return AssignmentResponse(
        user_id=assignment.user_id,
        name=get_display_name(db, assignment.user_id),
        assigned_at=assignment.assigned_at,
    )


@router.delete("/{work_order_id}/assignments/{worker_id}")
def unassign_worker(
    work_order_id: uuid.UUID,
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    wo = wo_service.get_work_order(db, work_order_id)
    wo_service.unassign_worker(db, wo, worker_id)
    return {"message": "Assignment removed"}


@router.post("/{work_order_id}/approve", response_model=WorkOrderResponse)
def approve_work_order(
    work_order_id: uuid.UUID,
    payload: ApproveRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    """Accept a client request (awaiting_approval -> pending)"""
    wo = wo_service.get_work_order(db, work_order_id)
    wo = wo_service.approve_client_request(db, wo, user.id, scheduled_date=payload.scheduled_date)
    return _response(db, wo)


@router.post("/{work_order_id}/reject", response_model=WorkOrderResponse)
def reject_work_order(
    work_order_id: uuid.UUID,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    """Decline a client request (awaiting_approval -> cancelled)"""
    wo = wo_service.get_work_order(db, work_order_id)
    wo = wo_service.reject_client_request(db, wo, user.id, reason=payload.reason)
    return _response(db, wo)


@router.post("/{work_order_id}/complete", response_model=CompletionResponse)
def complete_work_order(
    work_order_id: uuid.UUID,
    payload: CompleteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.EMPLOYEE)),
):
    """
    Close all open sessions, generate the signed report and mark the order completed.
    Employees must be assigned to the order.
    """
    wo = wo_service.get_work_order(db, work_order_id)
    if role_of(user) == Role.EMPLOYEE and not is_assigned(db, wo.id, user.id):
        raise HTTPException(status_code=403, detail="You are not assigned to this work order")
    result = complete_order(db, wo.id, user.id, payload.signature, note=payload.note)
    return CompletionResponse(
        work_order=_response(db, result.work_order),
        total_hours=result.total_hours,
        attachment=AttachmentResponse.model_validate(result.attachment),
        document_url=result.document_url,
        closed_entry_ids=result.closed_entry_ids,
    )


@router.get("/{work_order_id}/history")
def work_order_history(
    work_order_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER)),
):
    """Audit trail of the order: status changes, edits and completion"""
    wo = wo_service.get_work_order(db, work_order_id)
    rows = get_audit_logs(db, entity_type="work_order", entity_id=wo.id, limit=limit)
    return [
        {
            "id": str(r.id),
            "action": r.action,
            "actor_id": str(r.actor_id) if r.actor_id else None,
            "actor_name": get_display_name(db, r.actor_id) if r.actor_id else None,
            "changes": r.changes_json,
            "context": r.context,
            "timestamp_utc": r.timestamp_utc.isoformat() if r.timestamp_utc else None,
        }
        for r in rows
    ]
