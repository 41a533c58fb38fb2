"""
Notification service: in-app notification row plus email.

Dispatch is an at-most-once side channel. notify() never raises; failures
are logged and recorded in email_logs. Call it only after the business
transaction has been committed.
"""
import smtplib
import uuid
from email.message import EmailMessage
from typing import Any, Callable, Dict, Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import EmailLog, Notification
from .user_directory import resolve_user_email


logger = structlog.get_logger(__name__)

Notifier = Callable[..., Optional[Notification]]


SUBJECTS = {
    "work_order_assigned": "Nova Ordem de Trabalho - {reference}",
    "work_order_completed": "Ordem Concluída - {reference}",
    "work_order_approved": "Pedido Aprovado - {reference}",
    "work_order_rejected": "Pedido Rejeitado - {reference}",
    "work_order_updated": "Ordem Atualizada - {reference}",
    "work_order_request_received": "Pedido Recebido - {reference}",
    "work_order_created_notify_managers": "Novo Pedido de Cliente - {reference}",
    "missing_material": "Material em Falta - {reference}",
}


def render_email(notification_type: str, data: Dict[str, Any]) -> tuple[str, str]:
    reference = data.get("reference") or ""
    subject = SUBJECTS.get(notification_type, "Notificação - {reference}").format(reference=reference)
    lines = []
    if data.get("recipient_name"):
        lines.append(f"Olá {data['recipient_name']},")
        lines.append("")
    lines.append(data.get("message") or subject)
    if data.get("title"):
        lines.append(f"Ordem: {reference} - {data['title']}")
    if data.get("document_url"):
        lines.append(f"Relatório: {data['document_url']}")
    if data.get("link"):
        lines.append(f"Detalhes: {data['link']}")
    return subject, "\n".join(lines)


def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Send a plain-text email over SMTP.

    Returns False when SMTP is not configured; raises on transport errors.
    """
    if not (settings.smtp_host and settings.mail_from):
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    msg.set_content(body)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)
    return True


def notify(
    db: Session,
    notification_type: str,
    user_id: uuid.UUID,
    work_order_id: Optional[uuid.UUID] = None,
    data: Optional[Dict[str, Any]] = None,
    email: bool = True,
) -> Optional[Notification]:
    """
    Insert an in-app notification and send the matching email.

    Args:
        db: Database session (its pending work must already be committed)
        notification_type: Template identifier, e.g. "work_order_completed"
        user_id: Recipient user ID
        work_order_id: Related work order
        data: Template data (reference, title, message, document_url, ...)
        email: Also send an email

    Returns:
        The Notification, or None if dispatch failed
    """
    data = dict(data or {})
    try:
        notification = Notification(
            user_id=user_id,
            work_order_id=work_order_id,
            type=notification_type,
            channel="email",
            payload=data,
            status="pending",
        )
        db.add(notification)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("notification_insert_failed", type=notification_type, user_id=str(user_id), error=str(e))
        return None

    if email and settings.enable_email:
        _dispatch_email(db, notification, data)
    return notification


def _dispatch_email(db: Session, notification: Notification, data: Dict[str, Any]) -> None:
    subject, body = render_email(notification.type, data)
    recipient = None
    try:
        recipient = resolve_user_email(db, notification.user_id)
        if not recipient:
            raise LookupError("recipient has no email address")
        sent = send_email(recipient, subject, body)
        notification.status = "sent" if sent else "pending"
        log_status, error = ("sent", None) if sent else ("skipped", "SMTP not configured")
    except Exception as e:
        notification.status = "failed"
        log_status, error = "failed", str(e)
        logger.warning("notification_email_failed", type=notification.type, user_id=str(notification.user_id), error=str(e))
    try:
        db.add(EmailLog(
            recipient=recipient,
            subject=subject,
            type=notification.type,
            status=log_status,
            error_message=error,
            work_order_id=notification.work_order_id,
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("email_log_failed", type=notification.type, error=str(e))


def notify_many(
    db: Session,
    notification_type: str,
    user_ids: Iterable[uuid.UUID],
    work_order_id: Optional[uuid.UUID] = None,
    data: Optional[Dict[str, Any]] = None,
    notifier: Optional[Notifier] = None,
) -> int:
    """Fan out one notification per distinct recipient. Returns how many were recorded."""
    notifier = notifier or notify
    sent = 0
    seen = set()
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        try:
            if notifier(db, notification_type, user_id, work_order_id=work_order_id, data=data):
                sent += 1
        except Exception as e:
            logger.warning("notification_dispatch_failed", type=notification_type, user_id=str(user_id), error=str(e))
    return sent
