import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.models import Profile, Role, User, UserRole, WorkOrderAssignment


def resolve_user_email(db: Session, user_id: Optional[uuid.UUID]) -> Optional[str]:
    """
    Privileged lookup: read the address from the credentials table.
    Profiles never carry the email, so ordinary read paths cannot see it.
    """
    if not user_id:
        return None
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        return None
    return user.email


def get_display_name(db: Session, user_id: Optional[uuid.UUID]) -> Optional[str]:
    if not user_id:
        return None
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile and profile.name:
        return profile.name
    return None


def get_role(db: Session, user_id: uuid.UUID) -> Optional[UserRole]:
    return db.query(UserRole).filter(UserRole.user_id == user_id).first()


def list_approved_manager_ids(db: Session) -> List[uuid.UUID]:
    rows = (
        db.query(UserRole.user_id)
        .filter(UserRole.role == Role.MANAGER, UserRole.approved.is_(True))
        .all()
    )
    return [r[0] for r in rows]


def list_assigned_workers(db: Session, work_order_id: uuid.UUID) -> List[Profile]:
    return (
        db.query(Profile)
        .join(WorkOrderAssignment, WorkOrderAssignment.user_id == Profile.id)
        .filter(WorkOrderAssignment.work_order_id == work_order_id)
        .order_by(Profile.name.asc())
        .all()
    )


def is_assigned(db: Session, work_order_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    return (
        db.query(WorkOrderAssignment.id)
        .filter(WorkOrderAssignment.work_order_id == work_order_id, WorkOrderAssignment.user_id == user_id)
        .first()
        is not None
    )
