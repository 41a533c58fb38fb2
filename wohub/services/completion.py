"""
Completion workflow: close every open session, total the hours, render and
store the signed report, mark the order completed, then notify.

Closing, attaching and the status flip share one transaction. A render or
upload failure rolls all of it back, so a retry starts from the same state.
Notifications run after the commit and never fail the completion.
"""
import base64
import binascii
import io
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

import structlog
from PIL import Image as PILImage, UnidentifiedImageError
from sqlalchemy.orm import Session

from ..config import settings
from ..documents.completion_pdf import CompletionDocumentData, render_completion_pdf
from ..models.models import Attachment, Profile, WorkOrder, WorkOrderStatus
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider
from .audit import create_audit_log
from .errors import DependencyFailure, InvalidTransitionError, NotFoundError, ValidationError
from .notifications import Notifier, notify, notify_many
from .status_engine import mark_completed
from .time_ledger import close_session, list_open_entries, refresh_total_hours
from .time_rules import ensure_utc, utcnow
from .user_directory import (
    get_display_name,
    list_approved_manager_ids,
    list_assigned_workers,
    resolve_user_email,
)


logger = structlog.get_logger(__name__)

COMPLETABLE = (WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.PENDING, WorkOrderStatus.APPROVED)

Renderer = Callable[[CompletionDocumentData, bytes], bytes]


@dataclass
class CompletionResult:
    work_order: WorkOrder
    total_hours: float
    attachment: Attachment
    document_url: str
    closed_entry_ids: List[uuid.UUID] = field(default_factory=list)
    notifications_sent: int = 0


def decode_signature(signature: Union[str, bytes, None]) -> bytes:
    """
    Accept raw image bytes, base64 or a data URL ("data:image/png;base64,...").

    Raises:
        ValidationError: empty, not base64, too large or not an image
    """
    if not signature:
        raise ValidationError("Signature is required")
    if isinstance(signature, str):
        payload = signature.strip()
        if payload.startswith("data:"):
            payload = payload.split(",", 1)[1] if "," in payload else ""
        if not payload:
            raise ValidationError("Signature is required")
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Signature is not valid base64") from exc
    else:
        raw = bytes(signature)
    if not raw:
        raise ValidationError("Signature is required")
    if len(raw) > settings.max_signature_bytes:
        raise ValidationError("Signature image is too large")
    try:
        PILImage.open(io.BytesIO(raw)).verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("Signature is not a valid image") from exc
    return raw


def _snapshot(
    db: Session,
    work_order: WorkOrder,
    acting_user_id: uuid.UUID,
    total_hours: float,
    completed_at: datetime,
    note: Optional[str],
) -> CompletionDocumentData:
    client: Optional[Profile] = db.query(Profile).filter(Profile.id == work_order.client_id).first()
    return CompletionDocumentData(
        reference=work_order.reference,
        title=work_order.title,
        description=work_order.description,
        priority=work_order.priority,
        service_type=work_order.service_type,
        scheduled_date=work_order.scheduled_date,
        client_name=client.name if client else "Cliente",
        client_email=resolve_user_email(db, work_order.client_id),
        client_company=client.company_name if client else None,
        workers=[w.name for w in list_assigned_workers(db, work_order.id)],
        total_hours=total_hours,
        completed_at=completed_at,
        completed_by=get_display_name(db, acting_user_id),
        note=note,
    )


def complete_order(
    db: Session,
    work_order_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    signature: Union[str, bytes, None],
    note: Optional[str] = None,
    storage: Optional[StorageProvider] = None,
    notifier: Optional[Notifier] = None,
    renderer: Optional[Renderer] = None,
    now: Optional[datetime] = None,
) -> CompletionResult:
    """
    Finalize a work order with a signed completion report.

    Raises:
        ValidationError: missing/invalid signature or order not completable (no mutation)
        NotFoundError: unknown work order
        DependencyFailure: report rendering or upload failed (rolled back)
    """
    signature_png = decode_signature(signature)
    work_order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not work_order:
        raise NotFoundError("Work order not found")
    if work_order.status not in COMPLETABLE:
        raise InvalidTransitionError(work_order.status, WorkOrderStatus.COMPLETED)

    note = (note or "").strip() or None
    completed_at = ensure_utc(now or utcnow())
    storage = storage or get_storage()
    renderer = renderer or render_completion_pdf
    uploaded_key = None

    try:
        closed_ids = []
        for entry in list_open_entries(db, work_order.id):
            close_session(db, entry, completed_at, note=note if entry.user_id == acting_user_id else None)
            closed_ids.append(entry.id)

        total_hours = refresh_total_hours(db, work_order)
        document = _snapshot(db, work_order, acting_user_id, total_hours, completed_at, note)

        try:
            pdf_bytes = renderer(document, signature_png)
        except Exception as exc:
            raise DependencyFailure("Failed to generate the completion report") from exc

        filename = f"{work_order.reference}_concluido_{int(completed_at.timestamp() * 1000)}.pdf"
        try:
            uploaded_key = storage.upload_bytes(f"{work_order.id}/{filename}", pdf_bytes, "application/pdf")
        except Exception as exc:
            raise DependencyFailure("Failed to store the completion report") from exc

        attachment = Attachment(
            work_order_id=work_order.id,
            uploaded_by=acting_user_id,
            filename=filename,
            key=uploaded_key,
            provider=storage.name,
            content_type="application/pdf",
            size_bytes=len(pdf_bytes),
            kind="completion_report",
        )
        db.add(attachment)
        db.flush()

        mark_completed(db, work_order, acting_user_id)
        create_audit_log(
            db,
            entity_type="work_order",
            entity_id=work_order.id,
            action="COMPLETE",
            actor_id=acting_user_id,
            changes_json={"total_hours": total_hours},
            context={"attachment_id": attachment.id, "closed_entries": closed_ids},
        )
        db.commit()
    except Exception:
        db.rollback()
        if uploaded_key:
            try:
                storage.delete(uploaded_key)
            except Exception as e:
                logger.warning("completion_report_cleanup_failed", key=uploaded_key, error=str(e))
        logger.error("work_order_completion_failed", work_order_id=str(work_order_id), exc_info=True)
        raise

    db.refresh(work_order)
    document_url = f"{settings.public_base_url}/attachments/{attachment.id}/download"
    logger.info(
        "work_order_completed",
        reference=work_order.reference,
        total_hours=total_hours,
        closed_entries=len(closed_ids),
    )

    sent = _notify_completion(db, work_order, acting_user_id, document_url, notifier or notify)
    return CompletionResult(
        work_order=work_order,
        total_hours=total_hours,
        attachment=attachment,
        document_url=document_url,
        closed_entry_ids=closed_ids,
        notifications_sent=sent,
    )


def _notify_completion(
    db: Session,
    work_order: WorkOrder,
    acting_user_id: uuid.UUID,
    document_url: str,
    notifier: Notifier,
) -> int:
    completed_by = get_display_name(db, acting_user_id)
    client_name = get_display_name(db, work_order.client_id) or "Cliente"
    base = {
        "reference": work_order.reference,
        "title": work_order.title,
        "document_url": document_url,
        "completed_by": completed_by,
    }
    sent = 0
    if work_order.client_id:
        sent += notify_many(
            db,
            "work_order_completed",
            [work_order.client_id],
            work_order_id=work_order.id,
            data={**base, "recipient_name": client_name, "message": f"A sua ordem de trabalho {work_order.reference} foi concluída"},
            notifier=notifier,
        )
    sent += notify_many(
        db,
        "work_order_completed",
        list_approved_manager_ids(db),
        work_order_id=work_order.id,
        data={**base, "client_name": client_name, "is_manager": True, "message": f"Ordem {work_order.reference} concluída"},
        notifier=notifier,
    )
    return sent
