import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# Enums
class WorkOrderStatusEnum(str, Enum):
    awaiting_approval = "awaiting_approval"
    pending = "pending"
    approved = "approved"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class PriorityEnum(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class ServiceTypeEnum(str, Enum):
    repair = "repair"
    maintenance = "maintenance"
    installation = "installation"
    warranty = "warranty"


class PauseReasonEnum(str, Enum):
    falta_material = "falta_material"
    enviado_oficina = "enviado_oficina"
    enviado_orcamento = "enviado_orcamento"
    assinatura_gerente = "assinatura_gerente"


# Work Order Schemas
class WorkOrderCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    client_id: Optional[uuid.UUID] = None  # required for managers, ignored for clients
    priority: PriorityEnum = PriorityEnum.medium
    service_type: ServiceTypeEnum = ServiceTypeEnum.maintenance
    scheduled_date: Optional[date] = None
    notes: Optional[str] = None
    address: Optional[str] = None
    equipment_ids: List[uuid.UUID] = []


class WorkOrderUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[PriorityEnum] = None
    service_type: Optional[ServiceTypeEnum] = None
    status: Optional[WorkOrderStatusEnum] = None
    scheduled_date: Optional[date] = None
    notes: Optional[str] = None
    address: Optional[str] = None


class WorkOrderResponse(BaseModel):
    id: uuid.UUID
    reference: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    service_type: str
    scheduled_date: Optional[date] = None
    notes: Optional[str] = None
    address: Optional[str] = None
    total_hours: float = 0.0
    client_id: uuid.UUID
    client_name: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkOrderPage(BaseModel):
    items: List[WorkOrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AssignmentResponse(BaseModel):
    user_id: uuid.UUID
    name: Optional[str] = None
    assigned_at: Optional[datetime] = None


class AssignRequest(BaseModel):
    user_id: uuid.UUID


class ApproveRequest(BaseModel):
    scheduled_date: Optional[date] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class TimeEntryResponse(BaseModel):
    id: uuid.UUID
    work_order_id: uuid.UUID
    user_id: uuid.UUID
    worker_name: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_hours: Optional[float] = None
    note: Optional[str] = None
    pause_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AttachmentResponse(BaseModel):
    id: uuid.UUID
    work_order_id: uuid.UUID
    uploaded_by: Optional[uuid.UUID] = None
    filename: str
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    kind: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EquipmentSummary(BaseModel):
    id: uuid.UUID
    name: str
    model: Optional[str] = None
    serial_number: Optional[str] = None


class WorkOrderDetail(WorkOrderResponse):
    assignments: List[AssignmentResponse] = []
    equipments: List[EquipmentSummary] = []
    attachments: List[AttachmentResponse] = []
    time_entries: List[TimeEntryResponse] = []
    active_sessions: int = 0


# Time entry actions
class PauseRequest(BaseModel):
    reason: PauseReasonEnum
    missing_material: Optional[str] = None


class EndSessionRequest(BaseModel):
    note: Optional[str] = None


class TimeEntryEdit(BaseModel):
    hours: float
    note: Optional[str] = None


class CompleteRequest(BaseModel):
    signature: str  # base64 PNG or data URL
    note: Optional[str] = None

    @field_validator("signature")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("signature is required")
        return v


class CompletionResponse(BaseModel):
    work_order: WorkOrderResponse
    total_hours: float
    attachment: AttachmentResponse
    document_url: str
    closed_entry_ids: List[uuid.UUID] = []
