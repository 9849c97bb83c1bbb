"""
Pydantic request/response schemas for the Electricity Billing API
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from database.models import BillStatus, PaymentMethod, normalize_national_id

PHONE_PATTERN = re.compile(r'^\+?[0-9 ()\-]{6,20}$')


def _check_national_id(v: Optional[str]) -> Optional[str]:
    if v is not None and not normalize_national_id(v):
        raise ValueError("National ID must contain letters or digits")
    return v


def _check_password(v: Optional[str]) -> Optional[str]:
    # bcrypt only looks at the first 72 bytes
    if v is not None and len(v.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes")
    return v


def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not PHONE_PATTERN.match(v):
        raise ValueError("Phone may contain digits, spaces, (), - and a leading +")
    return v


# ============================================
# USERS
# ============================================

class UserCreateRequest(BaseModel):
    """Registration form. The user ID is assigned by the server."""
    national_id: str = Field(..., min_length=1, max_length=64, description="National ID number")
    email: EmailStr = Field(..., description="Email address")
    name: str = Field(..., min_length=1, max_length=200, description="Full name")
    password: str = Field(..., min_length=8, max_length=72, description="Login password")
    phone: Optional[str] = Field(default=None, description="Contact phone number")
    address: Optional[str] = Field(default=None, max_length=500, description="Supply address")

    model_config = ConfigDict(extra="forbid")

    @field_validator('national_id')
    @classmethod
    def validate_national_id(cls, v: str) -> str:
        return _check_national_id(v)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


class UserUpdateRequest(BaseModel):
    """Partial update. Omitted fields are left unchanged.

    phone and address may be set to null to clear them; the other fields
    may be omitted but not nulled.
    """
    national_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    email: Optional[EmailStr] = Field(default=None)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)
    phone: Optional[str] = Field(default=None)
    address: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(extra="forbid")

    @field_validator('national_id', 'email', 'name', 'password')
    @classmethod
    def reject_null(cls, v: Optional[str], info) -> Optional[str]:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator('national_id')
    @classmethod
    def validate_national_id(cls, v: str) -> str:
        return _check_national_id(v)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


class UserResponse(BaseModel):
    """A registered user (password hash never included)."""
    id: str = Field(..., description="Server-assigned user ID, e.g. USER0001")
    national_id: str
    email: str
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


# ============================================
# BILLS
# ============================================

class BillCreateRequest(BaseModel):
    """Generate a bill for a user's consumption."""
    user_id: str = Field(..., min_length=1, max_length=32)
    units: int = Field(..., ge=0, le=10_000_000, description="Consumed units (kWh)")
    due_date: Optional[date] = Field(
        default=None,
        description="Defaults to today plus the configured number of due days"
    )


class PaymentRequest(BaseModel):
    payment_method: PaymentMethod


class BillResponse(BaseModel):
    id: int
    user_id: str
    units: int
    amount: Decimal
    due_date: date
    status: BillStatus
    payment_method: Optional[PaymentMethod] = None
    timestamp: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("created_at", "timestamp")
    )
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================
# SERVICE
# ============================================

class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    version: str = Field(..., description="API version")
    database: Dict[str, Any] = Field(default_factory=dict, description="Database health")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
