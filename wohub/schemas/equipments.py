import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EquipmentBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    model: Optional[str] = None
    serial_number: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class EquipmentCreate(EquipmentBase):
    client_id: Optional[uuid.UUID] = None  # managers only; clients always own what they create


class EquipmentUpdate(BaseModel):
    name: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class EquipmentResponse(EquipmentBase):
    id: uuid.UUID
    client_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
