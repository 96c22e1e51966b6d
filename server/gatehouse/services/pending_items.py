"""Outstanding items derived from the attendance ledger."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import settings
from ..core.observability import get_logger
from ..core.security import AuthContext, Role, require_role
from ..models.attendance import AttendanceEvent, EventSource
from .ledger_service import LedgerService

logger = get_logger(__name__)


class PendingItemResolver:
    """
    Read-only view of deliveries that may still be waiting for a resident.

    There is no collected status: a delivery counts as pending while its
    entry event is inside the trailing window.
    """

    def __init__(self, db: AsyncSession):
        self.ledger = LedgerService(db)

    async def pending_deliveries(
        self, ctx: AuthContext, now: Optional[datetime] = None
    ) -> list[AttendanceEvent]:
        require_role(ctx, Role.RESIDENT)

        since = (now or clock.utcnow()) - timedelta(hours=settings.pending_delivery_window_hours)
        events = await self.ledger.recent_entries_for_subject(
            tenant_id=ctx.tenant_id,
            subject_id=ctx.subject_id,
            source=EventSource.DELIVERY_POINT,
            since=since,
            limit=settings.pending_delivery_limit,
        )

        logger.debug("Pending deliveries resolved", count=len(events), **ctx.log_fields())
        return events
