"""Guest Pydantic schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import Field, model_validator

from ..models.guest import GuestStatus
from .common import ApiModel


class RegisterGuestRequest(ApiModel):
    """Request schema for a resident pre-registering a visitor."""

    name: str = Field(..., min_length=1, max_length=255)
    party_size: int = Field(1, ge=1, le=50)
    purpose: Optional[str] = Field(None, max_length=255)
    visit_date: date
    valid_until: datetime
    vehicle_plate: Optional[str] = Field(None, max_length=20)

    @model_validator(mode="after")
    def check_validity(self) -> "RegisterGuestRequest":
        if self.valid_until.date() < self.visit_date:
            raise ValueError("validUntil must not be before visitDate")
        return self


class UpdateGuestStatusRequest(ApiModel):
    """Operator transition request."""

    status: GuestStatus
    location: str = Field("Main Gate", min_length=1, max_length=255)


class Guest(ApiModel):
    """Guest response schema."""

    id: UUID
    tenant_id: UUID
    host_resident_id: UUID
    name: str
    party_size: int
    purpose: Optional[str] = None
    visit_date: date
    valid_until: datetime
    vehicle_plate: Optional[str] = None
    status: GuestStatus
    entry_timestamp: Optional[datetime] = None
    exit_timestamp: Optional[datetime] = None
