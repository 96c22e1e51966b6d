"""Gate device endpoints: credential, amenity check-out, vehicle, identity and delivery scans."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import DatabaseSession, GateCaller
from ..core.security import AuthContext
from ..models import BookingStatus
from ..schemas.booking import AmenityCheckoutRequest, CredentialScanRequest, CredentialScanResult
from ..schemas.gate import (
    AttendanceEvent,
    DeliveryScanRequest,
    IdentityScanRequest,
    VehicleScanRequest,
    VehicleScanResult,
)
from ..services.booking_service import BookingService
from ..services.credential_service import ConsumedCredential, CredentialService
from ..services.gate_service import GateService
from ..services.vehicle_reconciler import VehicleReconciler

router = APIRouter(prefix="/gate", tags=["gate"])


@router.post("/credential-scan", response_model=CredentialScanResult, response_model_by_alias=True)
async def credential_scan(
    request: CredentialScanRequest,
    ctx: AuthContext = GateCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Consume a booking QR credential and check the booking in."""
    consumed = await CredentialService(db).consume(ctx, request.token)
    return JSONResponse(content=CredentialScanResult.model_validate(consumed).to_response())


@router.post("/amenity-checkout", response_model=CredentialScanResult, response_model_by_alias=True)
async def amenity_checkout(
    request: AmenityCheckoutRequest,
    ctx: AuthContext = GateCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Check a booking out, by QR credential or by booking id."""
    if request.token is not None:
        result = await CredentialService(db).check_out(ctx, request.token)
    else:
        booking = await BookingService(db).gate_check_out(ctx, request.booking_id)
        result = ConsumedCredential(
            booking_id=booking.id,
            resident_name=booking.resident.name,
            amenity_name=booking.amenity.name,
            status=BookingStatus(booking.status),
        )
    return JSONResponse(content=CredentialScanResult.model_validate(result).to_response())


@router.post("/vehicle-scan", response_model=VehicleScanResult, response_model_by_alias=True)
async def vehicle_scan(
    request: VehicleScanRequest,
    ctx: AuthContext = GateCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """
    Reconcile a plate read.

    Returns 200 for every classification, including unauthorized vehicles
    and exits with no open entry.
    """
    scan = await VehicleReconciler(db).scan(ctx, request.plate, request.direction, request.location)
    return JSONResponse(content=VehicleScanResult.model_validate(scan).to_response())


@router.post("/identity-scan", status_code=201, response_model=AttendanceEvent, response_model_by_alias=True)
async def identity_scan(
    request: IdentityScanRequest,
    ctx: AuthContext = GateCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    event = await GateService(db).identity_scan(
        ctx, request.subject_id, request.subject_type, request.direction, request.location
    )
    return JSONResponse(status_code=201, content=AttendanceEvent.model_validate(event).to_response())


@router.post("/delivery-scan", status_code=201, response_model=AttendanceEvent, response_model_by_alias=True)
async def delivery_scan(
    request: DeliveryScanRequest,
    ctx: AuthContext = GateCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    event = await GateService(db).record_delivery(
        ctx, request.resident_id, request.direction, request.location, request.courier_name
    )
    return JSONResponse(status_code=201, content=AttendanceEvent.model_validate(event).to_response())
