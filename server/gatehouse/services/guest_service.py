"""Guest lifecycle for visitors pre-registered by residents."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.exceptions import IllegalStateTransitionError, InvalidInputError, NotFoundError
from ..core.observability import get_logger, metrics_collector
from ..core.security import AuthContext, Role, ensure_owned_by_tenant, require_role
from ..models.attendance import Direction, EventOutcome, EventSource, VerificationMethod
from ..models.guest import Guest, GuestStatus
from ..models.vehicle import normalize_plate
from ..schemas.guest import RegisterGuestRequest
from .ledger_service import LedgerService
from .society_clock import tenant_timezone

logger = get_logger(__name__)

ALLOWED_FROM: dict[GuestStatus, frozenset[GuestStatus]] = {
    GuestStatus.PENDING: frozenset(),
    GuestStatus.APPROVED: frozenset({GuestStatus.PENDING}),
    GuestStatus.REJECTED: frozenset({GuestStatus.PENDING}),
    GuestStatus.CHECKED_IN: frozenset({GuestStatus.APPROVED}),
    GuestStatus.CHECKED_OUT: frozenset({GuestStatus.CHECKED_IN}),
}

# Guests whose plate is recognised at the vehicle gate
PLATE_MATCH_STATUSES = (GuestStatus.APPROVED, GuestStatus.CHECKED_IN)


class GuestService:
    """Service for guest registration and status transitions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def _load(self, guest_id: UUID) -> Optional[Guest]:
        stmt = select(Guest).where(Guest.id == guest_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def register_guest(self, ctx: AuthContext, request: RegisterGuestRequest) -> Guest:
        """
        Register a visitor hosted by the calling resident.

        Raises:
            InvalidInputError: If ``validUntil`` falls before the visit date
        """
        require_role(ctx, Role.RESIDENT)

        valid_until = clock.to_utc(request.valid_until)
        tz = await tenant_timezone(self.db, ctx.tenant_id)
        if clock.to_local(valid_until, tz).date() < request.visit_date:
            raise InvalidInputError(
                "validUntil must not be before visitDate",
                violations=[{"path": "validUntil", "message": "before visitDate"}],
            )

        plate = normalize_plate(request.vehicle_plate) if request.vehicle_plate else None

        guest = Guest(
            tenant_id=ctx.tenant_id,
            host_resident_id=ctx.subject_id,
            name=request.name,
            party_size=request.party_size,
            purpose=request.purpose,
            visit_date=request.visit_date,
            valid_until=valid_until,
            vehicle_plate=plate or None,
            status=GuestStatus.PENDING.value,
        )
        self.db.add(guest)
        await self.db.commit()

        logger.info(
            "Guest registered",
            guest_id=str(guest.id),
            visit_date=str(request.visit_date),
            has_vehicle=plate is not None,
            **ctx.log_fields(),
        )
        return await self._load(guest.id)

    async def transition(
        self,
        ctx: AuthContext,
        guest_id: UUID,
        target: GuestStatus,
        location: str = "Main Gate",
    ) -> Guest:
        """
        Operator transition of a guest record.

        Check-in and check-out each append one ``main_gate`` ledger event after
        the status change has committed.

        Raises:
            NotFoundError: If the guest does not exist
            AuthorizationError: If the guest belongs to another society
            IllegalStateTransitionError: If the current status does not allow ``target``
        """
        require_role(ctx, Role.OPERATOR)

        guest = await self._load(guest_id)
        if guest is None:
            raise NotFoundError("guest", str(guest_id))
        ensure_owned_by_tenant(ctx, guest, "guest")

        current = GuestStatus(guest.status)
        if current == target or current not in ALLOWED_FROM[target]:
            raise IllegalStateTransitionError("guest", str(guest.id), current.value, target.value)

        now = clock.utcnow()
        values: dict = {"status": target.value}
        if target == GuestStatus.CHECKED_IN:
            values["entry_timestamp"] = now
        elif target == GuestStatus.CHECKED_OUT:
            values["exit_timestamp"] = now

        result = await self.db.execute(
            update(Guest)
            .where(
                Guest.id == guest.id,
                Guest.tenant_id == ctx.tenant_id,
                Guest.status.in_([s.value for s in ALLOWED_FROM[target]]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            latest = await self._load(guest.id)
            if latest is None:
                raise NotFoundError("guest", str(guest.id))
            raise IllegalStateTransitionError("guest", str(guest.id), latest.status, target.value)

        await self.db.commit()
        metrics_collector.record_guest_transition(target.value)
        logger.info(
            "Guest transitioned",
            guest_id=str(guest.id),
            from_status=current.value,
            to_status=target.value,
            **ctx.log_fields(),
        )

        guest = await self._load(guest.id)

        if target in (GuestStatus.CHECKED_IN, GuestStatus.CHECKED_OUT):
            event = await self.ledger.append_best_effort(
                tenant_id=guest.tenant_id,
                guest_id=guest.id,
                person_name=guest.name,
                timestamp=now,
                direction=(Direction.ENTRY if target == GuestStatus.CHECKED_IN else Direction.EXIT).value,
                source=EventSource.MAIN_GATE.value,
                location=location,
                vehicle_plate=guest.vehicle_plate,
                purpose=guest.purpose,
                verification_method=VerificationMethod.MANUAL.value,
                verified_by_operator_id=ctx.subject_id,
                outcome=EventOutcome.VERIFIED.value,
            )
            if event is None:
                guest = await self._load(guest.id)

        return guest

    async def find_guest_for_plate(
        self, tenant_id: UUID, plate: str, today: date, now: Optional[datetime] = None
    ) -> Optional[Guest]:
        """
        Guest expected today, and still valid at ``now``, whose registered vehicle carries ``plate``.

        Args:
            tenant_id: Society to search
            plate: Normalised plate
            today: Society-local date of the scan
            now: Naive UTC instant of the scan (defaults to now)

        Returns:
            The matching approved or checked-in guest, preferring approved ones
        """
        stmt = (
            select(Guest)
            .where(
                Guest.tenant_id == tenant_id,
                Guest.vehicle_plate == plate,
                Guest.status.in_([s.value for s in PLATE_MATCH_STATUSES]),
                Guest.visit_date <= today,
                Guest.valid_until >= (now or clock.utcnow()),
            )
            .order_by(Guest.visit_date.desc(), Guest.created_at.desc())
        )
        result = await self.db.execute(stmt)
        guests = list(result.scalars().all())
        if not guests:
            return None

        for guest in guests:
            if guest.status == GuestStatus.APPROVED:
                return guest
        return guests[0]

    async def promote_on_plate_entry(self, tenant_id: UUID, guest_id: UUID, now: datetime) -> bool:
        """
        Conditionally move an approved guest to checked-in on a plate match.

        Does not commit and appends no ledger event; the caller's vehicle entry
        event is the guest's single entry event.

        Returns:
            True if this call performed the promotion
        """
        result = await self.db.execute(
            update(Guest)
            .where(
                Guest.id == guest_id,
                Guest.tenant_id == tenant_id,
                Guest.status == GuestStatus.APPROVED.value,
            )
            .values(status=GuestStatus.CHECKED_IN.value, entry_timestamp=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
