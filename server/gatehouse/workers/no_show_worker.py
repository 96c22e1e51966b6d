"""Background worker marking unattended bookings as no-shows."""

from ..core.database import async_session_factory
from ..services.booking_service import BookingService
from .base import BaseWorker


class NoShowWorker(BaseWorker):
    """Moves confirmed/approved bookings whose window has ended to ``no_show``."""

    def __init__(self, interval_seconds: int = 300):
        super().__init__(name="NoShowSweep", interval_seconds=interval_seconds)

    async def process(self) -> None:
        async with async_session_factory() as db:
            await BookingService(db).sweep_no_shows()
