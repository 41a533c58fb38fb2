import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import EmailLog, Notification, Role, User


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _to_dict(n: Notification) -> dict:
    payload = n.payload or {}
    return {
        "id": str(n.id),
        "type": n.type,
        "work_order_id": str(n.work_order_id) if n.work_order_id else None,
        "reference": payload.get("reference"),
        "message": payload.get("message"),
        "payload": payload,
        "status": n.status,
        "read": bool(n.read),
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List notifications for the current user, newest first"""
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return [_to_dict(n) for n in query.order_by(Notification.created_at.desc()).limit(limit).all()]


@router.get("/unread-count")
def get_unread_count(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read.is_(False))
        .count()
    )
    return {"count": count}


@router.post("/{notification_id}/read")
def mark_notification_as_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notif = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if not notif:
        raise HTTPException(status_code=404, detail="Notification not found")
    notif.read = True
    db.commit()
    return {"status": "ok"}


@router.post("/mark-all-read")
def mark_all_as_read(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return {"status": "ok", "updated": updated}


@router.get("/email-logs")
def list_email_logs(
    status: Optional[str] = Query(None),
    work_order_id: Optional[uuid.UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_roles(Role.MANAGER)),
):
    """Outgoing email history (managers)"""
    query = db.query(EmailLog)
    if status:
        query = query.filter(EmailLog.status == status)
    if work_order_id:
        query = query.filter(EmailLog.work_order_id == work_order_id)
    rows = query.order_by(EmailLog.created_at.desc()).limit(limit).all()
    return [
        {
            "id": str(r.id),
            "recipient": r.recipient,
            "subject": r.subject,
            "type": r.type,
            "status": r.status,
            "error_message": r.error_message,
            "work_order_id": str(r.work_order_id) if r.work_order_id else None,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
