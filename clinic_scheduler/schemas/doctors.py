"""Doctor schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_serializer

LICENSE_NUMBER_PATTERN = r"^[A-Z]{2}-[A-Z]{3}-[0-9]{3}-[0-9]{4}$"


class ApprovalStatus(str, Enum):
    """Doctor application approval status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================================
# Doctor Registration Schemas
# ============================================================================


class DoctorRegister(BaseModel):
    """Schema for a doctor applying to join the clinic."""

    email: EmailStr
    full_name: str = Field(..., min_length=2, max_length=200)
    phone: str | None = Field(None, max_length=20)
    specialization: str = Field(..., min_length=2, max_length=200)
    # Format is checked by the service so direct callers get the same error
    license_number: str = Field(..., min_length=1, max_length=100)
    years_experience: int | None = Field(None, ge=0, le=70)
    qualification: str | None = Field(None, max_length=500)
    consultation_fee: Decimal | None = Field(None, ge=0, decimal_places=2)
    bio: str | None = None


class AvailabilityUpdate(BaseModel):
    """Schema for toggling whether a doctor takes appointments."""

    available: bool


# ============================================================================
# Doctor Response Schemas
# ============================================================================


class DoctorResponse(BaseModel):
    """Doctor response schema."""

    id: UUID
    user_id: UUID
    specialization: str
    license_number: str
    years_experience: int | None = None
    qualification: str | None = None
    consultation_fee: Decimal | None = None
    bio: str | None = None
    availability_status: bool
    approval_status: ApprovalStatus
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> float | None:
        """Serialize Decimal to float for JSON."""
        return float(value) if value is not None else None


class DoctorListItem(DoctorResponse):
    """Doctor with the linked user's display fields."""

    full_name: str
    email: str


class DoctorListResponse(BaseModel):
    """List of doctors."""

    total: int
    items: list[DoctorListItem]


class ApprovalStatusCounts(BaseModel):
    """Number of doctors in each approval status."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0
