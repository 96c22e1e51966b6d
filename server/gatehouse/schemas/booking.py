"""Booking and credential Pydantic schemas."""

from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from pydantic import Field, model_validator

from ..models.booking import BookingStatus
from .common import ApiModel


class CreateBookingRequest(ApiModel):
    """Request schema for creating an amenity booking."""

    amenity_id: UUID = Field(..., description="Amenity to book")
    booking_date: date = Field(..., alias="date", description="Day of the booking")
    start_time: time = Field(..., description="Start of the window (HH:MM)")
    end_time: time = Field(..., description="End of the window (HH:MM)")
    party_size: int = Field(..., ge=1, le=500, description="Number of people attending")
    purpose: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def check_window(self) -> "CreateBookingRequest":
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class UpdateBookingStatusRequest(ApiModel):
    """Operator transition request."""

    status: BookingStatus = Field(..., description="Target status")
    override: bool = Field(False, description="Operator override for no-show before the window ends")


class Booking(ApiModel):
    """Booking response schema."""

    id: UUID
    tenant_id: UUID
    amenity_id: UUID
    resident_id: UUID
    booking_date: date = Field(..., alias="date")
    start_time: time
    end_time: time
    party_size: int
    purpose: Optional[str] = None
    status: BookingStatus
    entry_timestamp: Optional[datetime] = None
    exit_timestamp: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    entry_synthesized: bool = False
    created_at: Optional[datetime] = None


class BookingCredential(ApiModel):
    """Issued QR credential for a booking."""

    booking_id: UUID
    credential_type: str
    token: str


class CredentialScanRequest(ApiModel):
    """QR credential presented at a scanner."""

    token: str = Field(..., min_length=1, max_length=4096)


class CredentialScanResult(ApiModel):
    """Successful credential consumption."""

    booking_id: UUID
    resident_name: str
    amenity_name: str
    status: BookingStatus


class AmenityCheckoutRequest(ApiModel):
    """Amenity exit at the gate: the booking's QR credential, or its id keyed in by a guard."""

    token: Optional[str] = Field(None, min_length=1, max_length=4096)
    booking_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_one_reference(self) -> "AmenityCheckoutRequest":
        if (self.token is None) == (self.booking_id is None):
            raise ValueError("exactly one of token or bookingId is required")
        return self
