"""Unit tests for the background workers."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import add_booking
from gatehouse.core import clock
from gatehouse.models import Booking, BookingStatus, IdempotencyRecord
from gatehouse.workers import idempotency_cleanup_worker, no_show_worker
from gatehouse.workers.base import BaseWorker
from gatehouse.workers.manager import WorkerManager


@pytest.fixture
def bind_workers(test_engine, monkeypatch):
    """Point the workers' session factory at the test database."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(no_show_worker, "async_session_factory", factory)
    monkeypatch.setattr(idempotency_cleanup_worker, "async_session_factory", factory)
    return factory


@pytest.mark.asyncio
async def test_no_show_worker_sweeps_expired_bookings(test_session, community, bind_workers):
    expired = await add_booking(
        test_session, community, status=BookingStatus.CONFIRMED, on=clock.today() - timedelta(days=1)
    )

    await no_show_worker.NoShowWorker().process()

    async with bind_workers() as session:
        stored = await session.get(Booking, expired.id)
        assert stored.status == BookingStatus.NO_SHOW


@pytest.mark.asyncio
async def test_idempotency_cleanup_removes_only_expired(test_session, community, bind_workers):
    now = clock.utcnow()
    for key, expires_at in (("old", now - timedelta(minutes=1)), ("fresh", now + timedelta(hours=1))):
        test_session.add(IdempotencyRecord(
            scope=f"{community.society.id}:{community.resident.id}",
            idempotency_key=key,
            method="create_booking",
            request_body_hash="0" * 64,
            response_status_code=201,
            response_body="{}",
            expires_at=expires_at,
        ))
    await test_session.commit()

    await idempotency_cleanup_worker.IdempotencyCleanupWorker().process()

    async with bind_workers() as session:
        keys = (await session.execute(select(IdempotencyRecord.idempotency_key))).scalars().all()
        assert keys == ["fresh"]


class FlakyWorker(BaseWorker):
    def __init__(self):
        super().__init__(name="Flaky", interval_seconds=0)
        self.calls = 0

    async def process(self) -> None:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("transient failure")


@pytest.mark.asyncio
async def test_failed_iteration_does_not_stop_the_loop():
    worker = FlakyWorker()

    await worker.start()
    for _ in range(50):
        if worker.calls >= 2:
            break
        await asyncio.sleep(0.01)
    await worker.stop()

    assert worker.calls >= 2
    assert worker.running is False


@pytest.mark.asyncio
async def test_manager_reports_worker_status():
    manager = WorkerManager()

    assert manager.get_worker_status() == {"no_show": False, "idempotency_cleanup": False}
    assert manager.get_worker("no_show").name == "NoShowSweep"
    with pytest.raises(KeyError):
        manager.get_worker("waitlist")
