"""Guest registration and operator transitions."""

from uuid import UUID

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import DatabaseSession, IdempotencyKey, OperatorCaller, ResidentCaller
from ..core.security import AuthContext
from ..schemas.guest import Guest, RegisterGuestRequest, UpdateGuestStatusRequest
from ..services.guest_service import GuestService
from .idempotent import run_idempotent

router = APIRouter(prefix="/guests", tags=["guests"])


@router.post("", status_code=201, response_model=Guest, response_model_by_alias=True)
async def register_guest(
    request: RegisterGuestRequest,
    ctx: AuthContext = ResidentCaller,
    db: AsyncSession = DatabaseSession,
    idempotency_key: str | None = IdempotencyKey,
) -> JSONResponse:
    guest_service = GuestService(db)

    async def operation():
        guest = await guest_service.register_guest(ctx, request)
        return Guest.model_validate(guest).to_response()

    return await run_idempotent(
        db,
        ctx,
        method="register_guest",
        idempotency_key=idempotency_key,
        request_body=request.model_dump(mode="json", by_alias=True),
        operation=operation,
    )


@router.put("/{guest_id}/status", response_model=Guest, response_model_by_alias=True)
async def update_guest_status(
    guest_id: UUID,
    request: UpdateGuestStatusRequest,
    ctx: AuthContext = OperatorCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    guest = await GuestService(db).transition(ctx, guest_id, request.status, location=request.location)
    return JSONResponse(content=Guest.model_validate(guest).to_response())
