from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)
    role: str = "client"  # manager|employee|client
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _known_role(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("manager", "employee", "client"):
            raise ValueError("role must be manager, employee or client")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    name: Optional[str] = None
    role: Optional[str] = None
    approved: bool = False
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None


class UserCreate(BaseModel):
    """Account created by a manager; approved on creation."""
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)
    role: str = "employee"
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _staff_or_client(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("employee", "client"):
            raise ValueError("role must be employee or client")
        return v


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[str] = None
    role: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _known_role(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in ("manager", "employee", "client"):
            raise ValueError("role must be manager, employee or client")
        return v
