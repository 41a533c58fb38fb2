import os
import uuid
from typing import List
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import RedirectResponse, Response
from slugify import slugify
from sqlalchemy.orm import Session

from ..auth.security import require_roles, role_of
from ..config import settings
from ..db import get_db
from ..models.models import Attachment, Role, User
from ..schemas.work_orders import AttachmentResponse
from ..services.work_orders import can_view, get_visible_work_order, get_work_order
from ..storage.factory import get_storage, get_storage_for_provider


router = APIRouter(prefix="/attachments", tags=["attachments"])
logger = structlog.get_logger(__name__)


def attachment_key(work_order_id: uuid.UUID, original_name: str) -> str:
    """<work_order_id>/<random>_<slugified name><ext>"""
    base, ext = os.path.splitext(original_name or "file")
    safe_name = slugify(base) or "file"
    return f"{work_order_id}/{uuid.uuid4().hex[:8]}_{safe_name}{ext.lower()}"


def content_disposition(filename: str) -> str:
    """ASCII fallback name plus RFC 5987 filename* so any UTF-8 name survives the latin-1 header."""
    name = os.path.basename(filename or "") or "file"
    base, ext = os.path.splitext(name)
    ext = slugify(ext)
    fallback = (slugify(base) or "file") + (f".{ext}" if ext else "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name)}"


def _load_visible(db: Session, attachment_id: uuid.UUID, user: User) -> Attachment:
    att = db.query(Attachment).filter(Attachment.id == attachment_id).first()
    if not att or not can_view(db, get_work_order(db, att.work_order_id), user.id, role_of(user)):
        raise HTTPException(status_code=404, detail="Attachment not found")
    return att


@router.post("/work-orders/{work_order_id}", response_model=AttachmentResponse, status_code=201)
def upload_attachment(
    work_order_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    wo = get_visible_work_order(db, work_order_id, user.id, role_of(user))
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="File too large")

    storage = get_storage()
    key = storage.upload_bytes(
        attachment_key(wo.id, file.filename),
        data,
        file.content_type or "application/octet-stream",
    )
    att = Attachment(
        work_order_id=wo.id,
        uploaded_by=user.id,
        filename=file.filename or os.path.basename(key),
        key=key,
        provider=storage.name,
        content_type=file.content_type,
        size_bytes=len(data),
        kind="upload",
    )
    db.add(att)
    try:
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(key)
        raise
    db.refresh(att)
    logger.info("attachment_uploaded", work_order=wo.reference, key=key, size=len(data))
    return att


@router.get("/work-orders/{work_order_id}", response_model=List[AttachmentResponse])
def list_attachments(
    work_order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    wo = get_visible_work_order(db, work_order_id, user.id, role_of(user))
    return (
        db.query(Attachment)
        .filter(Attachment.work_order_id == wo.id)
        .order_by(Attachment.created_at.desc())
        .all()
    )


@router.get("/{attachment_id}/download")
def download_attachment(
    attachment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    att = _load_visible(db, attachment_id, user)
    storage = get_storage_for_provider(att.provider)

    url = storage.get_download_url(att.key, expires_s=300)
    if url:
        return RedirectResponse(url=url, status_code=307)

    data = storage.read_bytes(att.key)
    if data is None:
        logger.warning("attachment_missing_in_storage", attachment_id=str(att.id), key=att.key, provider=att.provider)
        raise HTTPException(status_code=404, detail="File not found")
    return Response(
        content=data,
        media_type=att.content_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(att.filename)},
    )


@router.delete("/{attachment_id}")
def delete_attachment(
    attachment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles()),
):
    """Uploader or manager only"""
    att = _load_visible(db, attachment_id, user)
    if att.uploaded_by != user.id and role_of(user) != Role.MANAGER:
        raise HTTPException(status_code=403, detail="Only the uploader or a manager can delete this file")
    provider, key = att.provider, att.key
    db.delete(att)
    db.commit()
    get_storage_for_provider(provider).delete(key)
    return {"message": "Attachment deleted successfully"}
