import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Profile, Role, User, UserRole
from ..schemas.auth import LoginRequest, MeResponse, ProfileUpdate, RegisterRequest, TokenResponse
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_password_hash,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _tokens_for(user: User) -> TokenResponse:
    role = user.role.role if user.role else None
    return TokenResponse(
        access_token=create_access_token(str(user.id), role=role),
        refresh_token=create_refresh_token(str(user.id)),
    )


def _me(user: User) -> MeResponse:
    profile = user.profile
    return MeResponse(
        id=str(user.id),
        email=user.email,
        name=profile.name if profile else None,
        role=user.role.role if user.role else None,
        approved=bool(user.role and user.role.approved),
        phone=profile.phone if profile else None,
        company_name=profile.company_name if profile else None,
        address=profile.address if profile else None,
    )


@router.post("/register", response_model=TokenResponse)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")

    # Bootstrap: the first manager of an empty installation is approved on signup
    has_manager = (
        db.query(UserRole.id)
        .filter(UserRole.role == Role.MANAGER, UserRole.approved.is_(True))
        .first()
        is not None
    )
    auto_approve = payload.role == Role.MANAGER and not has_manager

    user = User(email=email, password_hash=get_password_hash(payload.password), is_active=True)
    db.add(user)
    db.flush()
    db.add(Profile(
        id=user.id,
        name=payload.name.strip(),
        phone=payload.phone,
        company_name=payload.company_name,
        address=payload.address,
    ))
    db.add(UserRole(
        user_id=user.id,
        role=payload.role,
        approved=auto_approve,
        approved_at=datetime.now(timezone.utc) if auto_approve else None,
    ))
    db.commit()
    db.refresh(user)
    logger.info("user_registered", user_id=str(user.id), role=payload.role, approved=auto_approve)
    return _tokens_for(user)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return _tokens_for(user)


@router.post("/refresh", response_model=TokenResponse)
def refresh(token: str, db: Session = Depends(get_db)):
    payload = decode_token(token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    return _tokens_for(user)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return _me(user)


@router.put("/me/profile", response_model=MeResponse)
def update_my_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    profile = user.profile
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and not (data["name"] or "").strip():
        raise HTTPException(status_code=400, detail="Name is required")
    for field, value in data.items():
        setattr(profile, field, value)
    db.commit()
    db.refresh(user)
    return _me(user)
