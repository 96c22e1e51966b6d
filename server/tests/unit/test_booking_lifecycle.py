"""Unit tests for booking creation, transitions and the no-show sweep."""

from datetime import time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import add_booking
from gatehouse.core import clock
from gatehouse.core.exceptions import (
    AuthorizationError,
    ConflictError,
    IllegalStateTransitionError,
    NotFoundError,
    OutOfWindowError,
    ResourceUnavailableError,
)
from gatehouse.core.observability import REGISTRY
from gatehouse.models import AmenityStatus, AttendanceEvent, BookingStatus, EventSource
from gatehouse.schemas.booking import CreateBookingRequest
from gatehouse.services.booking_service import BookingService
from gatehouse.services.ledger_service import LedgerService


def _request(community, **overrides) -> CreateBookingRequest:
    fields = dict(
        amenity_id=community.pool.id,
        booking_date=clock.today(),
        start_time=time(9, 0),
        end_time=time(10, 0),
        party_size=2,
        purpose="Morning laps",
    )
    fields.update(overrides)
    return CreateBookingRequest(**fields)


async def _events(session, booking_id):
    result = await session.execute(
        select(AttendanceEvent)
        .where(AttendanceEvent.booking_id == booking_id)
        .order_by(AttendanceEvent.timestamp)
    )
    return list(result.scalars().all())


class TestCreateBooking:
    """Booking creation rules."""

    @pytest.mark.asyncio
    async def test_create_booking_is_pending(self, test_session, community):
        booking = await BookingService(test_session).create_booking(community.resident_ctx, _request(community))

        assert booking.status == BookingStatus.PENDING
        assert booking.tenant_id == community.society.id
        assert booking.resident_id == community.resident.id
        assert booking.amenity.name == "Swimming Pool"
        assert booking.created_at is not None

    @pytest.mark.asyncio
    async def test_only_residents_create_bookings(self, test_session, community):
        with pytest.raises(AuthorizationError):
            await BookingService(test_session).create_booking(community.operator_ctx, _request(community))

    @pytest.mark.asyncio
    async def test_unknown_amenity(self, test_session, community):
        with pytest.raises(NotFoundError):
            await BookingService(test_session).create_booking(
                community.resident_ctx, _request(community, amenity_id=uuid4())
            )

    @pytest.mark.asyncio
    async def test_amenity_of_another_society(self, test_session, community):
        with pytest.raises(AuthorizationError):
            await BookingService(test_session).create_booking(
                community.resident_ctx, _request(community, amenity_id=community.other_pool.id)
            )

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, test_session, community):
        with pytest.raises(OutOfWindowError):
            await BookingService(test_session).create_booking(
                community.resident_ctx, _request(community, booking_date=clock.today() - timedelta(days=1))
            )

    @pytest.mark.asyncio
    async def test_amenity_under_maintenance(self, test_session, community):
        community.pool.status = AmenityStatus.MAINTENANCE.value
        await test_session.commit()

        with pytest.raises(ResourceUnavailableError):
            await BookingService(test_session).create_booking(community.resident_ctx, _request(community))

    @pytest.mark.asyncio
    async def test_party_larger_than_capacity(self, test_session, community):
        with pytest.raises(ResourceUnavailableError):
            await BookingService(test_session).create_booking(
                community.resident_ctx, _request(community, party_size=11)
            )

    @pytest.mark.asyncio
    async def test_overlap_with_confirmed_booking_conflicts(self, test_session, community):
        await add_booking(test_session, community, status=BookingStatus.CONFIRMED)

        with pytest.raises(ConflictError):
            await BookingService(test_session).create_booking(
                community.neighbour_ctx,
                _request(community, start_time=time(9, 30), end_time=time(10, 30)),
            )

    @pytest.mark.asyncio
    async def test_pending_and_adjacent_bookings_do_not_conflict(self, test_session, community):
        """Only slot-holding statuses block; touching windows do not overlap."""
        await add_booking(test_session, community, status=BookingStatus.PENDING)
        await add_booking(test_session, community, status=BookingStatus.CONFIRMED, start=time(10, 0), end=time(11, 0))

        booking = await BookingService(test_session).create_booking(community.neighbour_ctx, _request(community))

        assert booking.status == BookingStatus.PENDING


class TestBookingTransitions:
    """Operator transitions and their guards."""

    @pytest.mark.asyncio
    async def test_confirm_then_check_in_records_one_entry_event(self, test_session, community):
        service = BookingService(test_session)
        booking = await service.create_booking(community.resident_ctx, _request(community))

        confirmed = await service.transition(community.operator_ctx, booking.id, BookingStatus.CONFIRMED)
        checked_in = await service.transition(community.operator_ctx, booking.id, BookingStatus.CHECKED_IN)

        assert confirmed.status == BookingStatus.CONFIRMED
        assert checked_in.status == BookingStatus.CHECKED_IN
        assert checked_in.entry_timestamp is not None

        events = await _events(test_session, booking.id)
        assert len(events) == 1
        assert events[0].direction == "entry"
        assert events[0].source == EventSource.AMENITY_CHECKIN
        assert events[0].location == "Swimming Pool"
        assert events[0].person_name == "Asha Rao"
        assert events[0].verified_by_operator_id == community.operator.id

    @pytest.mark.asyncio
    async def test_check_in_from_pending_is_illegal(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        with pytest.raises(IllegalStateTransitionError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CHECKED_IN
            )

        assert await _events(test_session, booking.id) == []

    @pytest.mark.asyncio
    async def test_same_state_transition_rejected(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CONFIRMED)

        with pytest.raises(IllegalStateTransitionError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_confirm_overlapping_booking_conflicts(self, test_session, community):
        await add_booking(test_session, community, status=BookingStatus.APPROVED)
        pending = await add_booking(
            test_session, community, status=BookingStatus.PENDING,
            start=time(9, 30), end=time(10, 30), resident_id=community.neighbour.id,
        )

        with pytest.raises(ConflictError):
            await BookingService(test_session).transition(
                community.operator_ctx, pending.id, BookingStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_check_in_requires_operational_amenity(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CONFIRMED)
        community.pool.status = AmenityStatus.CLOSED.value
        await test_session.commit()

        with pytest.raises(ResourceUnavailableError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CHECKED_IN
            )

    @pytest.mark.asyncio
    async def test_check_in_only_on_booking_date(self, test_session, community):
        booking = await add_booking(
            test_session, community, status=BookingStatus.CONFIRMED, on=clock.today() + timedelta(days=1)
        )

        with pytest.raises(OutOfWindowError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CHECKED_IN
            )

    @pytest.mark.asyncio
    async def test_check_out_after_check_in(self, test_session, community):
        service = BookingService(test_session)
        booking = await add_booking(test_session, community, status=BookingStatus.CONFIRMED)
        await service.transition(community.operator_ctx, booking.id, BookingStatus.CHECKED_IN)

        checked_out = await service.transition(community.operator_ctx, booking.id, BookingStatus.CHECKED_OUT)

        assert checked_out.status == BookingStatus.CHECKED_OUT
        assert checked_out.entry_synthesized is False
        assert checked_out.exit_timestamp >= checked_out.entry_timestamp

        directions = [event.direction for event in await _events(test_session, booking.id)]
        assert sorted(directions) == ["entry", "exit"]

    @pytest.mark.asyncio
    async def test_check_out_without_entry_synthesizes_entry(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_IN)

        checked_out = await BookingService(test_session).transition(
            community.operator_ctx, booking.id, BookingStatus.CHECKED_OUT
        )

        assert checked_out.entry_synthesized is True
        assert checked_out.entry_timestamp is not None
        assert checked_out.entry_timestamp == checked_out.exit_timestamp

    @pytest.mark.asyncio
    async def test_check_out_from_confirmed_is_illegal(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CONFIRMED)

        with pytest.raises(IllegalStateTransitionError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CHECKED_OUT
            )

    @pytest.mark.asyncio
    async def test_completed_follows_check_out(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_OUT)

        completed = await BookingService(test_session).transition(
            community.operator_ctx, booking.id, BookingStatus.COMPLETED
        )

        assert completed.status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_show_before_end_needs_override(self, test_session, community):
        service = BookingService(test_session)
        booking = await add_booking(
            test_session, community, status=BookingStatus.CONFIRMED, on=clock.today() + timedelta(days=1)
        )

        with pytest.raises(OutOfWindowError):
            await service.transition(community.operator_ctx, booking.id, BookingStatus.NO_SHOW)

        marked = await service.transition(
            community.operator_ctx, booking.id, BookingStatus.NO_SHOW, override=True
        )
        assert marked.status == BookingStatus.NO_SHOW

    @pytest.mark.asyncio
    async def test_no_show_after_end(self, test_session, community):
        booking = await add_booking(
            test_session, community, status=BookingStatus.APPROVED, on=clock.today() - timedelta(days=1)
        )

        marked = await BookingService(test_session).transition(
            community.operator_ctx, booking.id, BookingStatus.NO_SHOW
        )

        assert marked.status == BookingStatus.NO_SHOW
        assert await _events(test_session, booking.id) == []

    @pytest.mark.asyncio
    async def test_cancel_records_cancellation_time(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_IN)

        cancelled = await BookingService(test_session).transition(
            community.operator_ctx, booking.id, BookingStatus.CANCELLED
        )

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_cancel_after_check_out_is_illegal(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_OUT)

        with pytest.raises(IllegalStateTransitionError):
            await BookingService(test_session).transition(
                community.operator_ctx, booking.id, BookingStatus.CANCELLED
            )

    @pytest.mark.asyncio
    async def test_residents_cannot_drive_transitions(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        with pytest.raises(AuthorizationError):
            await BookingService(test_session).transition(
                community.resident_ctx, booking.id, BookingStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_operator_of_another_society_is_forbidden(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        with pytest.raises(AuthorizationError):
            await BookingService(test_session).transition(
                community.other_operator_ctx, booking.id, BookingStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_unknown_booking(self, test_session, community):
        with pytest.raises(NotFoundError):
            await BookingService(test_session).transition(
                community.operator_ctx, uuid4(), BookingStatus.CONFIRMED
            )


class TestGateCheckOut:
    """Check-out keyed in at the amenity gate by booking id."""

    @pytest.mark.asyncio
    async def test_device_checks_out_checked_in_booking(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_IN)

        checked_out = await BookingService(test_session).gate_check_out(community.device_ctx, booking.id)

        assert checked_out.status == BookingStatus.CHECKED_OUT
        (event,) = await _events(test_session, booking.id)
        assert event.direction == "exit"
        assert event.source == EventSource.AMENITY_CHECKIN.value
        assert event.verification_method == "manual"
        assert event.device_id == str(community.device_id)

    @pytest.mark.asyncio
    async def test_residents_and_other_societies_are_forbidden(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.CHECKED_IN)
        service = BookingService(test_session)

        with pytest.raises(AuthorizationError):
            await service.gate_check_out(community.resident_ctx, booking.id)
        with pytest.raises(AuthorizationError):
            await service.gate_check_out(community.other_operator_ctx, booking.id)


class TestOwnership:
    """Resident reads and self-cancellation."""

    @pytest.mark.asyncio
    async def test_owner_cancels_own_booking(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        cancelled = await BookingService(test_session).cancel_own_booking(community.resident_ctx, booking.id)

        assert cancelled.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_neighbour_cannot_cancel_or_read(self, test_session, community):
        service = BookingService(test_session)
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        with pytest.raises(AuthorizationError):
            await service.cancel_own_booking(community.neighbour_ctx, booking.id)
        with pytest.raises(AuthorizationError):
            await service.get_booking(community.neighbour_ctx, booking.id)

    @pytest.mark.asyncio
    async def test_operator_reads_any_booking_in_society(self, test_session, community):
        booking = await add_booking(test_session, community, status=BookingStatus.PENDING)

        loaded = await BookingService(test_session).get_booking(community.operator_ctx, booking.id)

        assert loaded.id == booking.id


class TestLedgerFailure:
    """A failed ledger append never undoes a committed transition."""

    @pytest.mark.asyncio
    async def test_check_in_survives_ledger_failure(self, test_session, community, monkeypatch):
        async def failing_append(self, **fields):
            raise OperationalError("INSERT INTO attendance_events", {}, Exception("disk I/O error"))

        monkeypatch.setattr(LedgerService, "append", failing_append)
        labels = {"source": EventSource.AMENITY_CHECKIN.value}
        failures_before = REGISTRY.get_sample_value("ledger_append_failures_total", labels) or 0.0
        booking_id = (await add_booking(test_session, community, status=BookingStatus.CONFIRMED)).id

        # the failed append rolls the session back, expiring loaded rows
        checked_in = await BookingService(test_session).transition(
            community.operator_ctx, booking_id, BookingStatus.CHECKED_IN
        )

        assert checked_in.status == BookingStatus.CHECKED_IN
        assert checked_in.entry_timestamp is not None
        assert await _events(test_session, booking_id) == []
        assert REGISTRY.get_sample_value("ledger_append_failures_total", labels) == failures_before + 1


class TestNoShowSweep:
    """Background sweep of bookings whose window has passed."""

    @pytest.mark.asyncio
    async def test_sweep_marks_only_expired_slot_holders(self, test_session, community):
        yesterday = clock.today() - timedelta(days=1)
        tomorrow = clock.today() + timedelta(days=1)
        expired = await add_booking(test_session, community, status=BookingStatus.CONFIRMED, on=yesterday)
        expired_approved = await add_booking(
            test_session, community, status=BookingStatus.APPROVED, on=yesterday, start=time(11, 0), end=time(12, 0)
        )
        upcoming = await add_booking(test_session, community, status=BookingStatus.CONFIRMED, on=tomorrow)
        pending = await add_booking(
            test_session, community, status=BookingStatus.PENDING, on=yesterday, start=time(13, 0), end=time(14, 0)
        )

        service = BookingService(test_session)
        swept = await service.sweep_no_shows()

        assert swept == 2
        assert (await service._load(expired.id)).status == BookingStatus.NO_SHOW
        assert (await service._load(expired_approved.id)).status == BookingStatus.NO_SHOW
        assert (await service._load(upcoming.id)).status == BookingStatus.CONFIRMED
        assert (await service._load(pending.id)).status == BookingStatus.PENDING

        event_count = await test_session.scalar(select(func.count()).select_from(AttendanceEvent))
        assert event_count == 0
