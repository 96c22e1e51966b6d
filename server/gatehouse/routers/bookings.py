"""Amenity booking endpoints."""

from uuid import UUID

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import AnyCaller, DatabaseSession, IdempotencyKey, OperatorCaller, ResidentCaller
from ..core.security import AuthContext
from ..schemas.booking import Booking, BookingCredential, CreateBookingRequest, UpdateBookingStatusRequest
from ..services.booking_service import BookingService
from ..services.credential_service import CredentialService
from .idempotent import run_idempotent

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", status_code=201, response_model=Booking, response_model_by_alias=True)
async def create_booking(
    request: CreateBookingRequest,
    ctx: AuthContext = ResidentCaller,
    db: AsyncSession = DatabaseSession,
    idempotency_key: str | None = IdempotencyKey,
) -> JSONResponse:
    """
    Create a pending booking for the calling resident.

    Retrying with the same Idempotency-Key replays the first response.
    """
    booking_service = BookingService(db)

    async def operation():
        booking = await booking_service.create_booking(ctx, request)
        return Booking.model_validate(booking).to_response()

    return await run_idempotent(
        db,
        ctx,
        method="create_booking",
        idempotency_key=idempotency_key,
        request_body=request.model_dump(mode="json", by_alias=True),
        operation=operation,
    )


@router.get("/{booking_id}", response_model=Booking, response_model_by_alias=True)
async def get_booking(
    booking_id: UUID,
    ctx: AuthContext = AnyCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    booking = await BookingService(db).get_booking(ctx, booking_id)
    return JSONResponse(content=Booking.model_validate(booking).to_response())


@router.put("/{booking_id}/status", response_model=Booking, response_model_by_alias=True)
async def update_booking_status(
    booking_id: UUID,
    request: UpdateBookingStatusRequest,
    ctx: AuthContext = OperatorCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Operator transition following the booking lifecycle table."""
    booking = await BookingService(db).transition(
        ctx, booking_id, request.status, override=request.override
    )
    return JSONResponse(content=Booking.model_validate(booking).to_response())


@router.post("/{booking_id}/cancel", response_model=Booking, response_model_by_alias=True)
async def cancel_booking(
    booking_id: UUID,
    ctx: AuthContext = ResidentCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    booking = await BookingService(db).cancel_own_booking(ctx, booking_id)
    return JSONResponse(content=Booking.model_validate(booking).to_response())


@router.post("/{booking_id}/credential", response_model=BookingCredential, response_model_by_alias=True)
async def issue_credential(
    booking_id: UUID,
    ctx: AuthContext = ResidentCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Issue a QR credential for one of the caller's bookings. May be repeated."""
    credential = await CredentialService(db).issue(ctx, booking_id)
    return JSONResponse(content=BookingCredential.model_validate(credential).to_response())
