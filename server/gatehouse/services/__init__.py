"""Service layer package."""

from .booking_service import BookingService
from .credential_service import CredentialService
from .gate_service import GateService
from .guest_service import GuestService
from .idempotency_service import IdempotencyService
from .ledger_service import LedgerService
from .pending_items import PendingItemResolver
from .vehicle_reconciler import VehicleReconciler

__all__ = [
    "BookingService",
    "CredentialService",
    "GateService",
    "GuestService",
    "IdempotencyService",
    "LedgerService",
    "PendingItemResolver",
    "VehicleReconciler",
]
