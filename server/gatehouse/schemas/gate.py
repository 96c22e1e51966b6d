"""Gate scan and ledger Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from ..models.attendance import Direction, EventOutcome, EventSource, VerificationMethod
from ..models.vehicle import VehicleClassification
from .common import ApiModel, PaginatedResponse


class SubjectType(str, Enum):
    RESIDENT = "resident"
    WORKER = "worker"


class VehicleScanRequest(ApiModel):
    """Plate read from a gate camera or typed by a guard."""

    plate: str = Field(..., min_length=1, max_length=20)
    direction: Direction
    location: str = Field(..., min_length=1, max_length=255)


class VehicleScanResult(ApiModel):
    """Outcome of a vehicle scan; returned for every classification."""

    plate: str
    direction: Direction
    classification: Optional[VehicleClassification] = None
    record_id: Optional[UUID] = None
    closed_record_id: Optional[UUID] = None
    orphan_exit: bool = False
    linked_resident_id: Optional[UUID] = None
    linked_guest_id: Optional[UUID] = None
    guest_checked_in: bool = False
    event_id: Optional[UUID] = None


class IdentityScanRequest(ApiModel):
    """Face-recognition match reported by a gate device."""

    subject_id: UUID
    subject_type: SubjectType
    direction: Direction
    location: str = Field(..., min_length=1, max_length=255)


class DeliveryScanRequest(ApiModel):
    """Courier arrival or parcel collection at the delivery desk."""

    resident_id: UUID
    direction: Direction = Direction.ENTRY
    location: str = Field("Delivery Desk", min_length=1, max_length=255)
    courier_name: str = Field(..., min_length=1, max_length=255)


class AttendanceEvent(ApiModel):
    """Ledger entry response schema."""

    id: UUID
    tenant_id: UUID
    subject_id: Optional[UUID] = None
    guest_id: Optional[UUID] = None
    booking_id: Optional[UUID] = None
    person_name: str
    timestamp: datetime
    direction: Direction
    source: EventSource
    location: str
    vehicle_plate: Optional[str] = None
    purpose: Optional[str] = None
    verification_method: VerificationMethod
    verified_by_operator_id: UUID
    outcome: EventOutcome


class AttendancePage(PaginatedResponse):
    items: List[AttendanceEvent]


class PendingDeliveries(ApiModel):
    items: List[AttendanceEvent]
    window_hours: int


class VehicleEntry(ApiModel):
    """Vehicle entry record response schema."""

    id: UUID
    plate: str
    location: Optional[str] = None
    entry_timestamp: datetime
    exit_timestamp: Optional[datetime] = None
    exit_inferred: bool = False
    classification: VehicleClassification
    linked_resident_id: Optional[UUID] = None
    linked_guest_id: Optional[UUID] = None


class VehicleEntryList(ApiModel):
    items: List[VehicleEntry]
