from datetime import datetime, timezone
from typing import Optional
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_roles
from ..db import get_db
from ..models.models import Profile, Role, User, UserRole
from ..schemas.auth import UserCreate, UserUpdate


router = APIRouter(prefix="/users", tags=["users"])
logger = structlog.get_logger(__name__)


def _user_to_dict(u: User, profile: Optional[Profile], role: Optional[UserRole]) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "is_active": u.is_active,
        "name": profile.name if profile else None,
        "phone": profile.phone if profile else None,
        "company_name": profile.company_name if profile else None,
        "address": profile.address if profile else None,
        "role": role.role if role else None,
        "approved": bool(role and role.approved),
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _query(db: Session):
    return (
        db.query(User, Profile, UserRole)
        .outerjoin(Profile, Profile.id == User.id)
        .outerjoin(UserRole, UserRole.user_id == User.id)
    )


@router.get("")
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    approved: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _=Depends(require_roles(Role.MANAGER)),
):
    """
    List users with pagination

    Args:
        q: Search on email or name
        role: manager|employee|client
        approved: Filter by approval state
        page: Page number (1-indexed)
        limit: Items per page (max 200)
    """
    limit = min(max(1, limit), 200)
    page = max(1, page)
    query = _query(db).filter(User.is_active.is_(True))
    if q:
        like = f"%{q}%"
        query = query.filter((User.email.ilike(like)) | (Profile.name.ilike(like)))
    if role:
        query = query.filter(UserRole.role == role)
    if approved is not None:
        query = query.filter(UserRole.approved.is_(approved))

    total_count = query.count()
    rows = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [_user_to_dict(u, p, r) for u, p, r in rows],
        "total": total_count,
        "page": page,
        "limit": limit,
        "total_pages": (total_count + limit - 1) // limit,
    }


@router.get("/pending")
def list_pending(db: Session = Depends(get_db), _=Depends(require_roles(Role.MANAGER))):
    """Accounts waiting for manager approval"""
    rows = (
        _query(db)
        .filter(User.is_active.is_(True), UserRole.approved.is_(False))
        .order_by(User.created_at.asc())
        .all()
    )
    return [_user_to_dict(u, p, r) for u, p, r in rows]


def _list_by_role(db: Session, role: str) -> list:
    rows = (
        _query(db)
        .filter(User.is_active.is_(True), UserRole.role == role, UserRole.approved.is_(True))
        .order_by(Profile.name.asc())
        .all()
    )
    return [_user_to_dict(u, p, r) for u, p, r in rows]


@router.get("/clients")
def list_clients(db: Session = Depends(get_db), _=Depends(require_roles(Role.MANAGER))):
    return _list_by_role(db, Role.CLIENT)


@router.get("/employees")
def list_employees(db: Session = Depends(get_db), _=Depends(require_roles(Role.MANAGER))):
    return _list_by_role(db, Role.EMPLOYEE)


def _load(db: Session, user_id: uuid.UUID):
    row = _query(db).filter(User.id == user_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return row


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_roles(Role.MANAGER))):
    return _user_to_dict(*_load(db, user_id))


@router.post("/{user_id}/approve")
def approve_user(user_id: uuid.UUID, db: Session = Depends(get_db), manager: User = Depends(require_roles(Role.MANAGER))):
    u, p, r = _load(db, user_id)
    if r is None:
        raise HTTPException(status_code=400, detail="User has no role")
    r.approved = True
    r.approved_at = datetime.now(timezone.utc)
    r.approved_by = manager.id
    u.is_active = True
    db.commit()
    logger.info("user_approved", user_id=str(u.id), role=r.role, by=str(manager.id))
    return _user_to_dict(u, p, r)


@router.post("/{user_id}/reject")
def reject_user(user_id: uuid.UUID, db: Session = Depends(get_db), manager: User = Depends(require_roles(Role.MANAGER))):
    """Deactivate a pending or existing account"""
    u, p, r = _load(db, user_id)
    if u.id == manager.id:
        raise HTTPException(status_code=400, detail="You cannot reject your own account")
    if r is not None:
        r.approved = False
    u.is_active = False
    db.commit()
    logger.info("user_rejected", user_id=str(u.id), by=str(manager.id))
    return _user_to_dict(u, p, r)


@router.post("", status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), manager: User = Depends(require_roles(Role.MANAGER))):
    """Create an employee or client account; it is approved immediately"""
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(email=email, password_hash=get_password_hash(payload.password), is_active=True)
    db.add(user)
    db.flush()
    profile = Profile(
        id=user.id,
        name=payload.name.strip(),
        phone=payload.phone,
        company_name=payload.company_name,
        address=payload.address,
    )
    role = UserRole(
        user_id=user.id,
        role=payload.role,
        approved=True,
        approved_at=datetime.now(timezone.utc),
        approved_by=manager.id,
    )
    db.add_all([profile, role])
    db.commit()
    logger.info("user_created", user_id=str(user.id), role=payload.role, by=str(manager.id))
    return _user_to_dict(user, profile, role)


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    manager: User = Depends(require_roles(Role.MANAGER)),
):
    """Edit profile fields and role"""
    u, p, r = _load(db, user_id)
    data = payload.model_dump(exclude_unset=True)
    new_role = data.pop("role", None)
    if "name" in data and not (data["name"] or "").strip():
        raise HTTPException(status_code=400, detail="Name is required")

    if p is None:
        p = Profile(id=u.id, name=(data.get("name") or u.email).strip())
        db.add(p)
    for field, value in data.items():
        setattr(p, field, value.strip() if field == "name" else value)

    if new_role is not None:
        if u.id == manager.id and new_role != Role.MANAGER:
            raise HTTPException(status_code=400, detail="You cannot change your own role")
        if r is None:
            r = UserRole(user_id=u.id, role=new_role, approved=True, approved_at=datetime.now(timezone.utc), approved_by=manager.id)
            db.add(r)
        else:
            r.role = new_role
    db.commit()
    logger.info("user_updated", user_id=str(u.id), fields=sorted(data), role=new_role, by=str(manager.id))
    return _user_to_dict(u, p, r)
