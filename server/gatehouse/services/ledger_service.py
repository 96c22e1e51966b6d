"""Attendance ledger: append-only writes and tenant-scoped reads."""

import base64
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import settings
from ..core.exceptions import InvalidInputError
from ..core.observability import get_logger, metrics_collector
from ..core.security import AuthContext
from ..models.attendance import AttendanceEvent, Direction, EventSource
from .society_clock import tenant_timezone

logger = get_logger(__name__)


def encode_cursor(event: AttendanceEvent) -> str:
    raw = f"{event.timestamp.isoformat()}|{event.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """
    Decode an opaque page cursor into its ``(timestamp, id)`` keyset position.

    Raises:
        InvalidInputError: If the cursor was not produced by ``encode_cursor``
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        timestamp, event_id = raw.split("|", 1)
        return datetime.fromisoformat(timestamp), UUID(event_id)
    except (ValueError, UnicodeError) as e:
        raise InvalidInputError(
            "Malformed pagination cursor",
            violations=[{"path": "cursor", "message": "not a valid cursor"}],
        ) from e


class LedgerService:
    """
    Writes and reads AttendanceEvents.

    The ledger has no update or delete path. Lifecycle services commit their
    transition first and then call ``append_best_effort``; scans whose only
    effect is the event itself call ``append`` and let failures propagate.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, **fields: Any) -> AttendanceEvent:
        """
        Insert and commit one event.

        Args:
            **fields: AttendanceEvent column values; ``timestamp`` defaults to now

        Returns:
            The persisted event
        """
        fields.setdefault("timestamp", clock.utcnow())
        event = AttendanceEvent(**fields)

        self.db.add(event)
        await self.db.commit()

        source = EventSource(event.source).value
        direction = Direction(event.direction).value
        metrics_collector.record_ledger_event(source, direction)
        logger.info(
            "Attendance event recorded",
            event_id=str(event.id),
            tenant_id=str(event.tenant_id),
            source=source,
            direction=direction,
            booking_id=str(event.booking_id) if event.booking_id else None,
            guest_id=str(event.guest_id) if event.guest_id else None,
        )
        return event

    async def append_best_effort(self, **fields: Any) -> Optional[AttendanceEvent]:
        """
        Append an event after a lifecycle transition has already committed.

        Retries up to ``LEDGER_APPEND_ATTEMPTS`` times. A final failure is
        reported through logs and the ``ledger_append_failures_total`` counter
        only; the caller's result never depends on it.

        Returns:
            The persisted event, or None when every attempt failed
        """
        source = EventSource(fields["source"]).value
        attempts = settings.ledger_append_attempts

        for attempt in range(1, attempts + 1):
            try:
                return await self.append(**fields)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.warning(
                    "Attendance event append failed",
                    source=source,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )

        metrics_collector.record_ledger_failure(source)
        logger.error(
            "Attendance event dropped after committed transition",
            source=source,
            tenant_id=str(fields.get("tenant_id")),
            booking_id=str(fields["booking_id"]) if fields.get("booking_id") else None,
            guest_id=str(fields["guest_id"]) if fields.get("guest_id") else None,
        )
        return None

    async def list_events(
        self,
        ctx: AuthContext,
        source: Optional[EventSource] = None,
        direction: Optional[Direction] = None,
        on_date: Optional[date] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> tuple[list[AttendanceEvent], Optional[str]]:
        """
        Read the caller's tenant ledger, newest first.

        Args:
            ctx: Caller context; only its tenant's events are visible
            source: Optional event source filter
            direction: Optional direction filter
            on_date: Optional local calendar day filter
            limit: Page size (default ATTENDANCE_DEFAULT_LIMIT, capped at ATTENDANCE_MAX_LIMIT)
            cursor: Opaque cursor returned by the previous page

        Returns:
            Tuple of (events, next_cursor); next_cursor is None on the last page
        """
        limit = limit or settings.attendance_default_limit
        if limit < 1 or limit > settings.attendance_max_limit:
            raise InvalidInputError(
                f"limit must be between 1 and {settings.attendance_max_limit}",
                violations=[{"path": "limit", "message": "out of range"}],
            )

        stmt = select(AttendanceEvent).where(AttendanceEvent.tenant_id == ctx.tenant_id)

        if source is not None:
            stmt = stmt.where(AttendanceEvent.source == source.value)
        if direction is not None:
            stmt = stmt.where(AttendanceEvent.direction == direction.value)
        if on_date is not None:
            start, end = clock.local_day_bounds(on_date, await tenant_timezone(self.db, ctx.tenant_id))
            stmt = stmt.where(AttendanceEvent.timestamp >= start, AttendanceEvent.timestamp < end)
        if cursor:
            after_ts, after_id = decode_cursor(cursor)
            stmt = stmt.where(
                or_(
                    AttendanceEvent.timestamp < after_ts,
                    and_(AttendanceEvent.timestamp == after_ts, AttendanceEvent.id < after_id),
                )
            )

        stmt = stmt.order_by(AttendanceEvent.timestamp.desc(), AttendanceEvent.id.desc()).limit(limit + 1)
        result = await self.db.execute(stmt)
        events = list(result.scalars().all())

        next_cursor = None
        if len(events) > limit:
            events = events[:limit]
            next_cursor = encode_cursor(events[-1])

        return events, next_cursor

    async def recent_entries_for_subject(
        self,
        tenant_id: UUID,
        subject_id: UUID,
        source: EventSource,
        since: datetime,
        limit: int,
    ) -> list[AttendanceEvent]:
        """Entry events for one subject and source at or after ``since``, newest first."""
        stmt = (
            select(AttendanceEvent)
            .where(
                AttendanceEvent.tenant_id == tenant_id,
                AttendanceEvent.subject_id == subject_id,
                AttendanceEvent.source == source.value,
                AttendanceEvent.direction == Direction.ENTRY.value,
                AttendanceEvent.timestamp >= since,
            )
            .order_by(AttendanceEvent.timestamp.desc(), AttendanceEvent.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
