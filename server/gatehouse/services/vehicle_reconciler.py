"""Vehicle gate reconciliation: pairs exit scans with open entry records."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.exceptions import InvalidInputError
from ..core.observability import get_logger, metrics_collector
from ..core.security import AuthContext, Role
from ..models.attendance import Direction, EventOutcome, EventSource, VerificationMethod
from ..models.guest import Guest
from ..models.society import Resident, ResidentVehicle
from ..models.vehicle import VehicleClassification, VehicleEntryRecord, normalize_plate
from .guest_service import GuestService
from .ledger_service import LedgerService
from .society_clock import tenant_timezone

logger = get_logger(__name__)

# Entry scans retried when a concurrent entry holds the plate's open slot
ENTRY_ATTEMPTS = 3


@dataclass
class Classification:
    kind: VehicleClassification
    person_name: str
    purpose: str
    resident_id: Optional[UUID] = None
    guest_id: Optional[UUID] = None
    guest_checked_in: bool = False


@dataclass
class VehicleScan:
    """Result of one plate scan. Every classification is a successful scan."""

    plate: str
    direction: Direction
    classification: Optional[VehicleClassification] = None
    record_id: Optional[UUID] = None
    closed_record_id: Optional[UUID] = None
    orphan_exit: bool = False
    linked_resident_id: Optional[UUID] = None
    linked_guest_id: Optional[UUID] = None
    guest_checked_in: bool = False
    event_id: Optional[UUID] = None


class VehicleReconciler:
    """
    Classifies vehicles at entry and closes their open record at exit.

    Each plate has at most one open record, backed by a partial unique index.
    An entry scan for a plate that is still open closes the stale record with
    ``exit_inferred`` set; an exit closes the open record or, when there is
    none, is logged as an orphan exit.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.guests = GuestService(db)

    async def scan(self, ctx: AuthContext, plate: str, direction: Direction, location: str) -> VehicleScan:
        """
        Process a plate read at a gate.

        Args:
            ctx: Device or operator caller context
            plate: Plate as read by the camera or typed by a guard
            direction: Entry or exit
            location: Gate name

        Returns:
            Scan result; unauthorized vehicles and orphan exits are results, not errors

        Raises:
            InvalidInputError: If the plate is empty after normalisation
        """
        normalized = normalize_plate(plate)
        if not normalized:
            raise InvalidInputError(
                "Plate must contain at least one character",
                violations=[{"path": "plate", "message": "empty after normalisation"}],
            )

        if direction == Direction.ENTRY:
            return await self._entry(ctx, normalized, location)
        return await self._exit(ctx, normalized, location)

    async def _classify(self, tenant_id: UUID, plate: str, now: datetime) -> Classification:
        stmt = (
            select(Resident)
            .join(ResidentVehicle, ResidentVehicle.resident_id == Resident.id)
            .where(ResidentVehicle.tenant_id == tenant_id, ResidentVehicle.plate == plate)
        )
        resident = (await self.db.execute(stmt)).scalars().first()
        if resident is not None:
            return Classification(
                kind=VehicleClassification.RESIDENT,
                person_name=resident.name,
                purpose=f"Resident vehicle entry: {plate}",
                resident_id=resident.id,
            )

        today = clock.today(await tenant_timezone(self.db, tenant_id))
        guest = await self.guests.find_guest_for_plate(tenant_id, plate, today, now)
        if guest is not None:
            promoted = await self.guests.promote_on_plate_entry(tenant_id, guest.id, now)
            return Classification(
                kind=VehicleClassification.GUEST,
                person_name=f"Guest: {guest.name}",
                purpose=f"Guest vehicle entry: {plate}",
                resident_id=guest.host_resident_id,
                guest_id=guest.id,
                guest_checked_in=promoted,
            )

        return Classification(
            kind=VehicleClassification.UNAUTHORIZED,
            person_name=f"Vehicle: {plate}",
            purpose=f"Unregistered vehicle entry: {plate}",
        )

    async def _entry(self, ctx: AuthContext, plate: str, location: str) -> VehicleScan:
        for attempt in range(1, ENTRY_ATTEMPTS + 1):
            now = clock.utcnow()
            match = await self._classify(ctx.tenant_id, plate, now)

            stale = await self.db.execute(
                update(VehicleEntryRecord)
                .where(
                    VehicleEntryRecord.tenant_id == ctx.tenant_id,
                    VehicleEntryRecord.plate == plate,
                    VehicleEntryRecord.exit_timestamp.is_(None),
                )
                .values(exit_timestamp=now, exit_inferred=True)
                .execution_options(synchronize_session=False)
            )

            record = VehicleEntryRecord(
                tenant_id=ctx.tenant_id,
                plate=plate,
                location=location,
                entry_timestamp=now,
                classification=match.kind.value,
                linked_resident_id=match.resident_id,
                linked_guest_id=match.guest_id,
            )
            self.db.add(record)
            try:
                await self.db.commit()
                break
            except IntegrityError:
                # another entry for this plate opened its record first; the
                # rollback also undoes any guest promotion, so classify again
                await self.db.rollback()
                if attempt == ENTRY_ATTEMPTS:
                    raise
                logger.warning(
                    "Concurrent entry opened a record for this plate; retrying",
                    plate=plate,
                    attempt=attempt,
                    **ctx.log_fields(),
                )

        metrics_collector.record_vehicle_scan(Direction.ENTRY.value, match.kind.value)
        if match.guest_checked_in:
            metrics_collector.record_guest_transition("checked-in")

        log = logger.with_context(plate=plate, record_id=str(record.id), **ctx.log_fields())
        if stale.rowcount:
            log.warning("Closed stale open vehicle record on re-entry", closed_records=stale.rowcount)
        if match.kind == VehicleClassification.UNAUTHORIZED:
            log.warning("Unauthorized vehicle entry", location=location)
        else:
            log.info(
                "Vehicle entry recorded",
                classification=match.kind.value,
                guest_checked_in=match.guest_checked_in,
            )

        scan = VehicleScan(
            plate=plate,
            direction=Direction.ENTRY,
            classification=match.kind,
            record_id=record.id,
            linked_resident_id=match.resident_id,
            linked_guest_id=match.guest_id,
            guest_checked_in=match.guest_checked_in,
        )

        event = await self.ledger.append_best_effort(
            tenant_id=ctx.tenant_id,
            subject_id=match.resident_id,
            guest_id=match.guest_id,
            person_name=match.person_name,
            timestamp=now,
            direction=Direction.ENTRY.value,
            source=EventSource.MAIN_GATE.value,
            location=location,
            vehicle_plate=plate,
            purpose=match.purpose,
            verification_method=VerificationMethod.VEHICLE_PLATE.value,
            verified_by_operator_id=ctx.subject_id,
            device_id=str(ctx.subject_id) if ctx.role is Role.DEVICE else None,
            outcome=(
                EventOutcome.FAILED if match.kind == VehicleClassification.UNAUTHORIZED
                else EventOutcome.VERIFIED
            ).value,
        )
        scan.event_id = event.id if event else None
        return scan

    async def _close_open(self, tenant_id: UUID, plate: str, now: datetime) -> Optional[VehicleEntryRecord]:
        """
        Close the plate's open record.

        Returns None when there is none, including when a concurrent exit
        closed it between the read and the conditional update.
        """
        record_id = await self.db.scalar(
            select(VehicleEntryRecord.id).where(
                VehicleEntryRecord.tenant_id == tenant_id,
                VehicleEntryRecord.plate == plate,
                VehicleEntryRecord.exit_timestamp.is_(None),
            )
        )
        if record_id is None:
            return None

        result = await self.db.execute(
            update(VehicleEntryRecord)
            .where(VehicleEntryRecord.id == record_id, VehicleEntryRecord.exit_timestamp.is_(None))
            .values(exit_timestamp=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return None

        await self.db.commit()
        closed = await self.db.execute(
            select(VehicleEntryRecord)
            .where(VehicleEntryRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        return closed.scalar_one()

    async def _person_name(self, record: VehicleEntryRecord) -> str:
        if record.linked_guest_id is not None:
            guest = await self.db.get(Guest, record.linked_guest_id)
            if guest is not None:
                return f"Guest: {guest.name}"
        if record.linked_resident_id is not None:
            resident = await self.db.get(Resident, record.linked_resident_id)
            if resident is not None:
                return resident.name
        return f"Vehicle: {record.plate}"

    async def _exit(self, ctx: AuthContext, plate: str, location: str) -> VehicleScan:
        now = clock.utcnow()
        record = await self._close_open(ctx.tenant_id, plate, now)

        if record is None:
            metrics_collector.record_orphan_exit()
            metrics_collector.record_vehicle_scan(Direction.EXIT.value, "orphan")
            logger.warning("Orphan vehicle exit: no open entry record", plate=plate, **ctx.log_fields())
            # The orphan event is the only trace of this scan
            event = await self.ledger.append(
                tenant_id=ctx.tenant_id,
                person_name=f"Vehicle: {plate}",
                timestamp=now,
                direction=Direction.EXIT.value,
                source=EventSource.MAIN_GATE.value,
                location=location,
                vehicle_plate=plate,
                purpose=f"Vehicle exit without recorded entry: {plate}",
                verification_method=VerificationMethod.VEHICLE_PLATE.value,
                verified_by_operator_id=ctx.subject_id,
                device_id=str(ctx.subject_id) if ctx.role is Role.DEVICE else None,
                outcome=EventOutcome.VERIFIED.value,
            )
            return VehicleScan(plate=plate, direction=Direction.EXIT, orphan_exit=True, event_id=event.id)

        metrics_collector.record_vehicle_scan(Direction.EXIT.value, record.classification)
        logger.info(
            "Vehicle exit recorded",
            plate=plate,
            record_id=str(record.id),
            classification=record.classification,
            **ctx.log_fields(),
        )

        scan = VehicleScan(
            plate=plate,
            direction=Direction.EXIT,
            classification=VehicleClassification(record.classification),
            record_id=record.id,
            closed_record_id=record.id,
            linked_resident_id=record.linked_resident_id,
            linked_guest_id=record.linked_guest_id,
        )

        event = await self.ledger.append_best_effort(
            tenant_id=ctx.tenant_id,
            subject_id=record.linked_resident_id,
            guest_id=record.linked_guest_id,
            person_name=await self._person_name(record),
            timestamp=now,
            direction=Direction.EXIT.value,
            source=EventSource.MAIN_GATE.value,
            location=location,
            vehicle_plate=plate,
            purpose=f"Vehicle exit: {plate}",
            verification_method=VerificationMethod.VEHICLE_PLATE.value,
            verified_by_operator_id=ctx.subject_id,
            device_id=str(ctx.subject_id) if ctx.role is Role.DEVICE else None,
            outcome=EventOutcome.VERIFIED.value,
        )
        scan.event_id = event.id if event else None
        return scan

    async def list_entries(
        self,
        ctx: AuthContext,
        open_only: bool = False,
        classification: Optional[VehicleClassification] = None,
        limit: int = 100,
    ) -> list[VehicleEntryRecord]:
        """Tenant-scoped vehicle records, newest entry first."""
        stmt = select(VehicleEntryRecord).where(VehicleEntryRecord.tenant_id == ctx.tenant_id)
        if open_only:
            stmt = stmt.where(VehicleEntryRecord.exit_timestamp.is_(None))
        if classification is not None:
            stmt = stmt.where(VehicleEntryRecord.classification == classification.value)

        stmt = stmt.order_by(VehicleEntryRecord.entry_timestamp.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
