"""Models module exporting all database models."""

from .attendance import AttendanceEvent, Direction, EventOutcome, EventSource, VerificationMethod
from .booking import SLOT_HOLDING_STATUSES, Booking, BookingStatus
from .guest import Guest, GuestStatus
from .idempotency import IdempotencyRecord
from .society import Amenity, AmenityStatus, Operator, Resident, ResidentVehicle, Society, Worker
from .vehicle import VehicleClassification, VehicleEntryRecord, normalize_plate

__all__ = [
    # Tenant and roster
    "Society",
    "Resident",
    "ResidentVehicle",
    "Worker",
    "Operator",
    "Amenity",
    "AmenityStatus",

    # Lifecycles
    "Booking",
    "BookingStatus",
    "SLOT_HOLDING_STATUSES",
    "Guest",
    "GuestStatus",

    # Ledger and reconciliation
    "AttendanceEvent",
    "Direction",
    "EventSource",
    "VerificationMethod",
    "EventOutcome",
    "VehicleEntryRecord",
    "VehicleClassification",
    "normalize_plate",

    # Idempotency
    "IdempotencyRecord",
]
