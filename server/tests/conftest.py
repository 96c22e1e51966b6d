"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WORKERS_ENABLED", "false")

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gatehouse.core import clock
from gatehouse.core.database import Base
from gatehouse.core.dependencies import get_db
from gatehouse.core.security import AuthContext, CredentialKind, Role, issue_access_token
from gatehouse.models import *  # noqa: F403 - Import all models
from gatehouse.models import (
    Amenity,
    AttendanceEvent,
    Booking,
    BookingStatus,
    Guest,
    GuestStatus,
    Operator,
    Resident,
    ResidentVehicle,
    Society,
    VehicleEntryRecord,
    Worker,
)

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@dataclass
class Community:
    """Seeded roster: a home society with its people, plus a neighbouring society."""

    society: Society
    resident: Resident
    neighbour: Resident
    worker: Worker
    operator: Operator
    pool: Amenity
    device_id: UUID

    other_society: Society
    outsider: Resident
    other_operator: Operator
    other_pool: Amenity

    def ctx(self, role: Role, subject_id: UUID, tenant_id: UUID | None = None) -> AuthContext:
        return AuthContext(subject_id=subject_id, tenant_id=tenant_id or self.society.id, role=role)

    @property
    def resident_ctx(self) -> AuthContext:
        return self.ctx(Role.RESIDENT, self.resident.id)

    @property
    def neighbour_ctx(self) -> AuthContext:
        return self.ctx(Role.RESIDENT, self.neighbour.id)

    @property
    def operator_ctx(self) -> AuthContext:
        return self.ctx(Role.OPERATOR, self.operator.id)

    @property
    def device_ctx(self) -> AuthContext:
        return self.ctx(Role.DEVICE, self.device_id)

    @property
    def outsider_ctx(self) -> AuthContext:
        return self.ctx(Role.RESIDENT, self.outsider.id, self.other_society.id)

    @property
    def other_operator_ctx(self) -> AuthContext:
        return self.ctx(Role.OPERATOR, self.other_operator.id, self.other_society.id)

    def headers(self, kind: CredentialKind, subject_id: UUID, tenant_id: UUID | None = None) -> dict[str, str]:
        token = issue_access_token(kind, subject_id, tenant_id or self.society.id)
        return {"Authorization": f"Bearer {token}"}

    @property
    def resident_headers(self) -> dict[str, str]:
        return self.headers(CredentialKind.RESIDENT, self.resident.id)

    @property
    def operator_headers(self) -> dict[str, str]:
        return self.headers(CredentialKind.OPERATOR, self.operator.id)

    @property
    def device_headers(self) -> dict[str, str]:
        return self.headers(CredentialKind.DEVICE, self.device_id)

    @property
    def other_operator_headers(self) -> dict[str, str]:
        return self.headers(CredentialKind.OPERATOR, self.other_operator.id, self.other_society.id)


async def seed_community(session: AsyncSession) -> Community:
    """Insert two societies with residents, staff and amenities."""
    society = Society(name="Green Meadows", timezone="UTC")
    other_society = Society(name="Lake View", timezone="UTC")
    session.add_all([society, other_society])
    await session.flush()

    resident = Resident(tenant_id=society.id, name="Asha Rao", unit="B-402")
    neighbour = Resident(tenant_id=society.id, name="Vikram Shah", unit="C-101")
    outsider = Resident(tenant_id=other_society.id, name="Meera Iyer", unit="A-12")
    worker = Worker(tenant_id=society.id, name="Ravi Kumar", department="security")
    operator = Operator(tenant_id=society.id, name="Front Desk", email="desk@greenmeadows.example")
    other_operator = Operator(tenant_id=other_society.id, name="Lake Desk", email="desk@lakeview.example")
    pool = Amenity(tenant_id=society.id, name="Swimming Pool", capacity=10)
    other_pool = Amenity(tenant_id=other_society.id, name="Lake Pool", capacity=10)
    session.add_all([resident, neighbour, outsider, worker, operator, other_operator, pool, other_pool])
    await session.flush()

    session.add(ResidentVehicle(tenant_id=society.id, resident_id=resident.id, plate="KA01MJ2024"))
    await session.commit()

    return Community(
        society=society,
        resident=resident,
        neighbour=neighbour,
        worker=worker,
        operator=operator,
        pool=pool,
        device_id=uuid4(),
        other_society=other_society,
        outsider=outsider,
        other_operator=other_operator,
        other_pool=other_pool,
    )


@pytest_asyncio.fixture(scope="function")
async def community(test_session) -> Community:
    return await seed_community(test_session)


async def add_booking(
    session: AsyncSession,
    community: Community,
    status: BookingStatus = BookingStatus.CONFIRMED,
    on: date | None = None,
    start: time = time(9, 0),
    end: time = time(10, 0),
    **overrides,
) -> Booking:
    """Insert a booking directly, bypassing creation rules."""
    fields = dict(
        tenant_id=community.society.id,
        amenity_id=community.pool.id,
        resident_id=community.resident.id,
        booking_date=on or clock.today(),
        start_time=start,
        end_time=end,
        party_size=2,
        purpose="Evening swim",
        status=status.value,
    )
    fields.update(overrides)
    booking = Booking(**fields)
    session.add(booking)
    await session.commit()
    return booking


async def add_guest(
    session: AsyncSession,
    community: Community,
    status: GuestStatus = GuestStatus.APPROVED,
    plate: str | None = None,
    visit_date: date | None = None,
    **overrides,
) -> Guest:
    """Insert a guest directly with the given status."""
    visit_date = visit_date or clock.today()
    fields = dict(
        tenant_id=community.society.id,
        host_resident_id=community.resident.id,
        name="Kiran Das",
        party_size=1,
        purpose="Family visit",
        visit_date=visit_date,
        valid_until=datetime.combine(visit_date, time(23, 59, 59)),
        vehicle_plate=plate,
        status=status.value,
    )
    fields.update(overrides)
    guest = Guest(**fields)
    session.add(guest)
    await session.commit()
    return guest


async def add_open_vehicle_record(
    session: AsyncSession,
    community: Community,
    plate: str,
    entered_minutes_ago: int,
    classification: str = "unauthorized",
) -> VehicleEntryRecord:
    record = VehicleEntryRecord(
        tenant_id=community.society.id,
        plate=plate,
        location="Main Gate",
        entry_timestamp=clock.utcnow() - timedelta(minutes=entered_minutes_ago),
        classification=classification,
    )
    session.add(record)
    await session.commit()
    return record


async def add_event(session: AsyncSession, community: Community, **overrides) -> AttendanceEvent:
    fields = dict(
        tenant_id=community.society.id,
        person_name="Courier",
        timestamp=clock.utcnow(),
        direction="entry",
        source="main_gate",
        location="Main Gate",
        verification_method="manual",
        verified_by_operator_id=community.operator.id,
        outcome="verified",
    )
    fields.update(overrides)
    event = AttendanceEvent(**fields)
    session.add(event)
    await session.commit()
    return event


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session):
    """Create the application with its database dependency bound to the test session."""
    from gatehouse.main import create_app

    app = create_app()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def booking_payload(community):
    """Wire body for a booking today on the community pool."""
    return {
        "amenityId": str(community.pool.id),
        "date": clock.today().isoformat(),
        "startTime": "09:00",
        "endTime": "10:00",
        "partySize": 2,
        "purpose": "Morning laps",
    }
