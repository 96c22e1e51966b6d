"""Booking lifecycle: creation, guarded transitions and the no-show sweep."""

from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core import clock
from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    IllegalStateTransitionError,
    InvalidInputError,
    NotFoundError,
    OutOfWindowError,
    ResourceUnavailableError,
)
from ..core.observability import get_logger, metrics_collector
from ..core.security import AuthContext, Role, ensure_owned_by_tenant, require_role
from ..models.attendance import Direction, EventOutcome, EventSource, VerificationMethod
from ..models.booking import SLOT_HOLDING_STATUSES, Booking, BookingStatus
from ..models.society import Amenity, Society
from ..schemas.booking import CreateBookingRequest
from .ledger_service import LedgerService
from .society_clock import tenant_timezone

logger = get_logger(__name__)


# Statuses a booking may move *from* to reach each target status
ALLOWED_FROM: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.PENDING, BookingStatus.APPROVED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CONFIRMED, BookingStatus.APPROVED}),
    BookingStatus.CHECKED_OUT: frozenset({BookingStatus.CHECKED_IN}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.CHECKED_OUT}),
    BookingStatus.NO_SHOW: frozenset({BookingStatus.CONFIRMED, BookingStatus.APPROVED}),
    BookingStatus.CANCELLED: frozenset({
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.APPROVED,
        BookingStatus.CHECKED_IN,
    }),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """Whether the transition table permits ``current -> target``."""
    return current != target and current in ALLOWED_FROM[target]


class BookingService:
    """Service for amenity booking operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def _load(self, booking_id: UUID) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .options(selectinload(Booking.amenity), selectinload(Booking.resident))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def load_for_tenant(self, ctx: AuthContext, booking_id: UUID) -> Booking:
        """
        Load a booking with its amenity and resident, enforcing tenant scope.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the booking belongs to another society
        """
        booking = await self._load(booking_id)
        if booking is None:
            raise NotFoundError("booking", str(booking_id))

        ensure_owned_by_tenant(ctx, booking, "booking")
        return booking

    @staticmethod
    def _reject_non_owner(ctx: AuthContext, booking: Booking) -> None:
        logger.warning("Booking access by non-owner rejected", booking_id=str(booking.id), **ctx.log_fields())
        raise AuthorizationError(detail=f"Booking {booking.id} belongs to another resident")

    async def _find_overlap(
        self,
        booking_id: Optional[UUID],
        amenity_id: UUID,
        on: date,
        start: time,
        end: time,
    ) -> Optional[Booking]:
        stmt = select(Booking).where(
            Booking.amenity_id == amenity_id,
            Booking.booking_date == on,
            Booking.status.in_([s.value for s in SLOT_HOLDING_STATUSES]),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if booking_id is not None:
            stmt = stmt.where(Booking.id != booking_id)

        result = await self.db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def create_booking(self, ctx: AuthContext, request: CreateBookingRequest) -> Booking:
        """
        Create a pending booking for the calling resident.

        Args:
            ctx: Resident caller context
            request: Booking creation request

        Returns:
            Created booking

        Raises:
            NotFoundError: If the amenity does not exist
            AuthorizationError: If the amenity belongs to another society
            InvalidInputError: If the time window is empty or inverted
            OutOfWindowError: If the booking date is in the past
            ResourceUnavailableError: If the amenity is not operational or too small
            ConflictError: If a confirmed booking overlaps the requested window
        """
        require_role(ctx, Role.RESIDENT)

        amenity = await self.db.get(Amenity, request.amenity_id)
        if amenity is None:
            raise NotFoundError("amenity", str(request.amenity_id))
        ensure_owned_by_tenant(ctx, amenity, "amenity")

        if request.end_time <= request.start_time:
            raise InvalidInputError(
                "endTime must be after startTime",
                violations=[{"path": "endTime", "message": "must be after startTime"}],
            )

        today = clock.today(await tenant_timezone(self.db, ctx.tenant_id))
        if request.booking_date < today:
            raise OutOfWindowError(f"Cannot book {amenity.name} for a past date ({request.booking_date})")

        if not amenity.is_operational:
            raise ResourceUnavailableError(
                f"Amenity {amenity.name} is currently {amenity.status}", resource_id=str(amenity.id)
            )

        if request.party_size > amenity.capacity:
            raise ResourceUnavailableError(
                f"Party of {request.party_size} exceeds {amenity.name} capacity of {amenity.capacity}",
                resource_id=str(amenity.id),
            )

        overlap = await self._find_overlap(
            None, amenity.id, request.booking_date, request.start_time, request.end_time
        )
        if overlap is not None:
            logger.warning(
                "Booking rejected: overlapping confirmed booking",
                amenity_id=str(amenity.id),
                conflicting_booking_id=str(overlap.id),
                **ctx.log_fields(),
            )
            raise ConflictError(
                detail=f"{amenity.name} is already booked for an overlapping window on {request.booking_date}",
                conflicting_resource={"booking_id": str(overlap.id)},
            )

        booking = Booking(
            tenant_id=ctx.tenant_id,
            amenity_id=amenity.id,
            resident_id=ctx.subject_id,
            booking_date=request.booking_date,
            start_time=request.start_time,
            end_time=request.end_time,
            party_size=request.party_size,
            purpose=request.purpose,
            status=BookingStatus.PENDING.value,
        )
        self.db.add(booking)
        await self.db.commit()

        logger.info(
            "Booking created",
            booking_id=str(booking.id),
            amenity_id=str(amenity.id),
            booking_date=str(request.booking_date),
            **ctx.log_fields(),
        )
        return await self._load(booking.id)

    async def get_booking(self, ctx: AuthContext, booking_id: UUID) -> Booking:
        """Owner residents, operators and devices of the tenant may read a booking."""
        booking = await self.load_for_tenant(ctx, booking_id)
        if ctx.role is Role.RESIDENT and booking.resident_id != ctx.subject_id:
            self._reject_non_owner(ctx, booking)
        return booking

    async def transition(
        self,
        ctx: AuthContext,
        booking_id: UUID,
        target: BookingStatus,
        method: VerificationMethod = VerificationMethod.MANUAL,
        override: bool = False,
    ) -> Booking:
        """
        Operator-driven status change following the booking transition table.

        Args:
            ctx: Operator caller context
            booking_id: Booking to transition
            target: Requested status
            method: Verification method recorded on check-in/check-out events
            override: Allow no-show before the booking window has ended

        Returns:
            The booking after the transition

        Raises:
            IllegalStateTransitionError: Current status does not allow ``target``
            ResourceUnavailableError: Check-in on an amenity that is not operational
            OutOfWindowError: Check-in on another day, or early no-show without override
            ConflictError: Confirming a booking that overlaps a confirmed one
        """
        require_role(ctx, Role.OPERATOR)
        booking = await self.load_for_tenant(ctx, booking_id)
        return await self.apply_transition(ctx, booking, target, method=method, override=override)

    async def gate_check_out(self, ctx: AuthContext, booking_id: UUID) -> Booking:
        """Check-out keyed in at the amenity gate by a device or guard."""
        require_role(ctx, Role.DEVICE, Role.OPERATOR)
        booking = await self.load_for_tenant(ctx, booking_id)
        return await self.apply_transition(ctx, booking, BookingStatus.CHECKED_OUT)

    async def cancel_own_booking(self, ctx: AuthContext, booking_id: UUID) -> Booking:
        """Cancellation requested by the resident who owns the booking."""
        require_role(ctx, Role.RESIDENT)
        booking = await self.load_for_tenant(ctx, booking_id)
        if booking.resident_id != ctx.subject_id:
            self._reject_non_owner(ctx, booking)
        return await self.apply_transition(ctx, booking, BookingStatus.CANCELLED)

    async def apply_transition(
        self,
        ctx: AuthContext,
        booking: Booking,
        target: BookingStatus,
        method: VerificationMethod = VerificationMethod.MANUAL,
        override: bool = False,
    ) -> Booking:
        """
        Validate guards, then apply ``target`` with a single conditional update.

        The stored status is re-checked by the UPDATE itself, so of two
        concurrent callers that both observed an allowed status only one
        succeeds; the other gets IllegalStateTransitionError.
        """
        current = BookingStatus(booking.status)
        if not can_transition(current, target):
            raise IllegalStateTransitionError("booking", str(booking.id), current.value, target.value)

        now = clock.utcnow()
        values: dict = {"status": target.value}

        if target in (BookingStatus.CONFIRMED, BookingStatus.APPROVED):
            overlap = await self._find_overlap(
                booking.id, booking.amenity_id, booking.booking_date, booking.start_time, booking.end_time
            )
            if overlap is not None:
                raise ConflictError(
                    detail=f"Booking {booking.id} overlaps confirmed booking {overlap.id}",
                    conflicting_resource={"booking_id": str(overlap.id)},
                )

        elif target == BookingStatus.CHECKED_IN:
            if not booking.amenity.is_operational:
                raise ResourceUnavailableError(
                    f"Amenity {booking.amenity.name} is currently {booking.amenity.status}",
                    resource_id=str(booking.amenity_id),
                )
            today = clock.today(await tenant_timezone(self.db, booking.tenant_id))
            if booking.booking_date != today:
                raise OutOfWindowError(
                    f"Booking {booking.id} is for {booking.booking_date}, check-in is only allowed on that day (today is {today})"
                )
            values.update(entry_timestamp=now, exit_timestamp=None)

        elif target == BookingStatus.CHECKED_OUT:
            values.update(
                exit_timestamp=now,
                entry_timestamp=func.coalesce(Booking.entry_timestamp, now),
                entry_synthesized=Booking.entry_timestamp.is_(None),
            )

        elif target == BookingStatus.NO_SHOW:
            tz = await tenant_timezone(self.db, booking.tenant_id)
            if not override and not clock.has_ended(booking.booking_date, booking.end_time, tz):
                raise OutOfWindowError(
                    f"Booking {booking.id} has not ended yet; pass override to mark it as a no-show"
                )

        elif target == BookingStatus.CANCELLED:
            values["cancelled_at"] = now

        stmt = (
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.tenant_id == ctx.tenant_id,
                Booking.status.in_([s.value for s in ALLOWED_FROM[target]]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            await self.db.rollback()
            latest = await self._load(booking.id)
            if latest is None:
                raise NotFoundError("booking", str(booking.id))
            logger.warning(
                "Booking transition lost to a concurrent update",
                booking_id=str(booking.id),
                observed_status=current.value,
                current_status=latest.status,
                target_status=target.value,
                **ctx.log_fields(),
            )
            raise IllegalStateTransitionError("booking", str(booking.id), latest.status, target.value)

        await self.db.commit()
        metrics_collector.record_booking_transition(current.value, target.value)

        booking = await self._load(booking.id)
        logger.info(
            "Booking transitioned",
            booking_id=str(booking.id),
            from_status=current.value,
            to_status=target.value,
            method=method.value,
            **ctx.log_fields(),
        )

        if target == BookingStatus.CHECKED_OUT and booking.entry_synthesized:
            logger.warning(
                "Check-out without recorded entry; entry timestamp synthesized",
                booking_id=str(booking.id),
                **ctx.log_fields(),
            )

        if target in (BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT):
            direction = Direction.ENTRY if target == BookingStatus.CHECKED_IN else Direction.EXIT
            event = await self.ledger.append_best_effort(
                tenant_id=booking.tenant_id,
                subject_id=booking.resident_id,
                booking_id=booking.id,
                person_name=booking.resident.name,
                timestamp=now,
                direction=direction.value,
                source=EventSource.AMENITY_CHECKIN.value,
                location=booking.amenity.name,
                purpose=booking.purpose,
                verification_method=method.value,
                verified_by_operator_id=ctx.subject_id,
                device_id=str(ctx.subject_id) if ctx.role is Role.DEVICE else None,
                outcome=EventOutcome.VERIFIED.value,
            )
            if event is None:
                # the failed append rolled back the session; reload detached state
                booking = await self._load(booking.id)

        return booking

    async def sweep_no_shows(self, as_of: Optional[datetime] = None) -> int:
        """
        Mark confirmed/approved bookings whose window has ended as no-shows.

        Runs across all societies for the background worker. Each booking's
        window is read on its own society's clock, and each row is moved with
        its own conditional update so a concurrent check-in wins cleanly. No
        ledger events are written.

        Args:
            as_of: Naive UTC instant to compare against (defaults to now)

        Returns:
            Number of bookings marked as no-show
        """
        as_of = as_of or clock.utcnow()
        holding = [BookingStatus.CONFIRMED.value, BookingStatus.APPROVED.value]

        # no society's local date runs more than one day ahead of UTC
        stmt = (
            select(Booking.id, Booking.status, Booking.booking_date, Booking.end_time, Society.timezone)
            .join(Society, Society.id == Booking.tenant_id)
            .where(Booking.status.in_(holding), Booking.booking_date <= as_of.date() + timedelta(days=1))
        )
        candidates = [
            (booking_id, status)
            for booking_id, status, on, end, tz in (await self.db.execute(stmt)).all()
            if clock.has_ended(on, end, tz, now=as_of)
        ]

        swept = 0
        for booking_id, status in candidates:
            result = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == status)
                .values(status=BookingStatus.NO_SHOW.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                swept += 1
                metrics_collector.record_booking_transition(status, BookingStatus.NO_SHOW.value)

        await self.db.commit()

        if swept:
            logger.info("Marked expired bookings as no-show", count=swept, as_of=as_of.isoformat())
        return swept
