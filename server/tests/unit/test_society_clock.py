"""Each society's own timezone drives its date guards."""

from datetime import date, datetime, time, timedelta

import pytest
import pytest_asyncio

from conftest import add_booking, add_event, add_guest
from gatehouse.core import clock
from gatehouse.core.config import settings
from gatehouse.core.exceptions import OutOfWindowError
from gatehouse.models import BookingStatus, Direction, GuestStatus
from gatehouse.schemas.booking import CreateBookingRequest
from gatehouse.services.booking_service import BookingService
from gatehouse.services.guest_service import GuestService
from gatehouse.services.ledger_service import LedgerService
from gatehouse.services.vehicle_reconciler import VehicleReconciler

# UTC-11 and UTC+14: their calendar dates never coincide
SOCIETY_ZONE = "Pacific/Pago_Pago"
SERVICE_ZONE = "Pacific/Kiritimati"


@pytest_asyncio.fixture
async def far_west_society(test_session, community, monkeypatch):
    """Home society on UTC-11 while the service default sits on UTC+14."""
    monkeypatch.setattr(settings, "society_timezone", SERVICE_ZONE)
    community.society.timezone = SOCIETY_ZONE
    community.other_society.timezone = SERVICE_ZONE
    await test_session.commit()
    return community


class TestBookingDates:

    @pytest.mark.asyncio
    async def test_check_in_on_the_society_local_day(self, test_session, far_west_society):
        society_today = clock.today(SOCIETY_ZONE)
        booking = await add_booking(test_session, far_west_society, on=society_today)

        checked_in = await BookingService(test_session).transition(
            far_west_society.operator_ctx, booking.id, BookingStatus.CHECKED_IN
        )

        assert checked_in.status == BookingStatus.CHECKED_IN

    @pytest.mark.asyncio
    async def test_check_in_on_the_service_default_day_is_out_of_window(self, test_session, far_west_society):
        booking = await add_booking(test_session, far_west_society, on=clock.today(SERVICE_ZONE))

        with pytest.raises(OutOfWindowError):
            await BookingService(test_session).transition(
                far_west_society.operator_ctx, booking.id, BookingStatus.CHECKED_IN
            )

    @pytest.mark.asyncio
    async def test_society_today_is_not_a_past_date(self, test_session, far_west_society):
        request = CreateBookingRequest(
            amenityId=far_west_society.pool.id,
            date=clock.today(SOCIETY_ZONE),
            startTime="18:00",
            endTime="19:00",
            partySize=2,
        )

        booking = await BookingService(test_session).create_booking(far_west_society.resident_ctx, request)

        assert booking.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_sweep_reads_each_society_clock(self, test_session, far_west_society):
        # 12:00 UTC is 01:00 on the 17th in Pago Pago and 02:00 on the 18th in Kiritimati
        as_of = datetime(2026, 10, 17, 12, 0)
        on = date(2026, 10, 17)
        home = await add_booking(test_session, far_west_society, on=on)
        away = await add_booking(
            test_session,
            far_west_society,
            on=on,
            tenant_id=far_west_society.other_society.id,
            amenity_id=far_west_society.other_pool.id,
            resident_id=far_west_society.outsider.id,
        )
        service = BookingService(test_session)

        swept = await service.sweep_no_shows(as_of=as_of)

        assert swept == 1
        assert (await service._load(home.id)).status == BookingStatus.CONFIRMED
        assert (await service._load(away.id)).status == BookingStatus.NO_SHOW


@pytest.mark.asyncio
async def test_attendance_date_filter_uses_society_day(test_session, far_west_society):
    # 03:00 UTC on the 17th is 16:00 on the 16th in Pago Pago
    event = await add_event(test_session, far_west_society, timestamp=datetime(2026, 10, 17, 3, 0))
    ledger = LedgerService(test_session)

    on_16th, _ = await ledger.list_events(far_west_society.operator_ctx, on_date=date(2026, 10, 16))
    on_17th, _ = await ledger.list_events(far_west_society.operator_ctx, on_date=date(2026, 10, 17))

    assert [e.id for e in on_16th] == [event.id]
    assert on_17th == []


@pytest.mark.asyncio
async def test_guest_plate_matched_on_society_visit_date(test_session, far_west_society):
    society_today = clock.today(SOCIETY_ZONE)
    guest = await add_guest(
        test_session,
        far_west_society,
        plate="KA05AB1234",
        visit_date=society_today,
        valid_until=clock.utcnow() + timedelta(hours=2),
    )

    scan = await VehicleReconciler(test_session).scan(
        far_west_society.device_ctx, "KA05AB1234", Direction.ENTRY, "Main Gate"
    )

    assert scan.classification == "guest"
    assert scan.linked_guest_id == guest.id


class TestGuestValidity:
    """A guest's pass lapses at ``validUntil``, not at the end of the day."""

    @pytest.mark.asyncio
    async def test_lapsed_pass_not_matched_later_that_day(self, test_session, community):
        today = clock.today()
        await add_guest(
            test_session, community, status=GuestStatus.APPROVED, plate="KA05AB1234",
            visit_date=today, valid_until=datetime.combine(today, time(8, 0)),
        )
        service = GuestService(test_session)

        morning = await service.find_guest_for_plate(
            community.society.id, "KA05AB1234", today, now=datetime.combine(today, time(7, 0))
        )
        evening = await service.find_guest_for_plate(
            community.society.id, "KA05AB1234", today, now=datetime.combine(today, time(18, 0))
        )

        assert morning is not None
        assert evening is None
