"""Dashboard reads over the attendance ledger and vehicle records."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.dependencies import DatabaseSession, OperatorCaller, ResidentCaller
from ..core.security import AuthContext, ensure_tenant
from ..models.attendance import Direction, EventSource
from ..models.vehicle import VehicleClassification
from ..schemas.gate import (
    AttendanceEvent,
    AttendancePage,
    PendingDeliveries,
    VehicleEntry,
    VehicleEntryList,
)
from ..services.ledger_service import LedgerService
from ..services.pending_items import PendingItemResolver
from ..services.vehicle_reconciler import VehicleReconciler

router = APIRouter(tags=["attendance"])


@router.get("/attendance", response_model=AttendancePage, response_model_by_alias=True)
async def list_attendance(
    source: Optional[EventSource] = Query(None),
    direction: Optional[Direction] = Query(None),
    on_date: Optional[date] = Query(None, alias="date"),
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    tenant_id: Optional[UUID] = Query(None, alias="tenantId"),
    ctx: AuthContext = OperatorCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Tenant-scoped ledger page, newest first. ``nextCursor`` is null on the last page."""
    ensure_tenant(ctx, tenant_id)

    events, next_cursor = await LedgerService(db).list_events(
        ctx, source=source, direction=direction, on_date=on_date, limit=limit, cursor=cursor
    )
    page = AttendancePage(
        items=[AttendanceEvent.model_validate(event) for event in events],
        next_cursor=next_cursor,
    )
    return JSONResponse(content=page.to_response())


@router.get("/vehicles/entries", response_model=VehicleEntryList, response_model_by_alias=True)
async def list_vehicle_entries(
    open_only: bool = Query(False, alias="openOnly"),
    classification: Optional[VehicleClassification] = Query(None),
    limit: int = Query(100, ge=1),
    tenant_id: Optional[UUID] = Query(None, alias="tenantId"),
    ctx: AuthContext = OperatorCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    ensure_tenant(ctx, tenant_id)

    records = await VehicleReconciler(db).list_entries(
        ctx, open_only=open_only, classification=classification,
        limit=min(limit, settings.attendance_max_limit),
    )
    entries = VehicleEntryList(items=[VehicleEntry.model_validate(record) for record in records])
    return JSONResponse(content=entries.to_response())


@router.get(
    "/residents/me/deliveries/pending",
    response_model=PendingDeliveries,
    response_model_by_alias=True,
)
async def pending_deliveries(
    ctx: AuthContext = ResidentCaller,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Delivery arrivals for the caller within the trailing window."""
    events = await PendingItemResolver(db).pending_deliveries(ctx)
    result = PendingDeliveries(
        items=[AttendanceEvent.model_validate(event) for event in events],
        window_hours=settings.pending_delivery_window_hours,
    )
    return JSONResponse(content=result.to_response())
