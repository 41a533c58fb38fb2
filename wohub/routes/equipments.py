import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import require_roles, role_of
from ..db import get_db
from ..models.models import Equipment, Role, User
from ..schemas.equipments import EquipmentCreate, EquipmentResponse, EquipmentUpdate
from ..services.user_directory import get_role


router = APIRouter(prefix="/equipments", tags=["equipments"])


def _load_owned(db: Session, equipment_id: uuid.UUID, user: User) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment or (role_of(user) == Role.CLIENT and equipment.client_id != user.id):
        raise HTTPException(status_code=404, detail="Equipment not found")
    return equipment


@router.get("", response_model=List[EquipmentResponse])
def list_equipments(
    client_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    """List equipment; clients only see their own"""
    query = db.query(Equipment)
    if role_of(user) == Role.CLIENT:
        query = query.filter(Equipment.client_id == user.id)
    elif client_id:
        query = query.filter(Equipment.client_id == client_id)
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            or_(
                Equipment.name.ilike(search_term),
                Equipment.model.ilike(search_term),
                Equipment.serial_number.ilike(search_term),
            )
        )
    return query.order_by(Equipment.name.asc()).all()


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    return _load_owned(db, equipment_id, user)


@router.post("", response_model=EquipmentResponse, status_code=201)
def create_equipment(
    payload: EquipmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    data = payload.model_dump()
    if role_of(user) == Role.CLIENT:
        data["client_id"] = user.id
    else:
        owner = get_role(db, data.get("client_id")) if data.get("client_id") else None
        if not owner or owner.role != Role.CLIENT:
            raise HTTPException(status_code=400, detail="A valid client_id is required")
    equipment = Equipment(**data)
    db.add(equipment)
    db.commit()
    db.refresh(equipment)
    return equipment


@router.put("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    equipment = _load_owned(db, equipment_id, user)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(equipment, key, value)
    equipment.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(equipment)
    return equipment


@router.delete("/{equipment_id}")
def delete_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(Role.MANAGER, Role.CLIENT)),
):
    equipment = _load_owned(db, equipment_id, user)
    db.delete(equipment)
    db.commit()
    return {"message": "Equipment deleted successfully"}
