"""Gate events whose only effect is a ledger entry: identity and delivery scans."""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..core.observability import get_logger
from ..core.security import AuthContext, Role, ensure_owned_by_tenant, require_role
from ..models.attendance import AttendanceEvent, Direction, EventOutcome, EventSource, VerificationMethod
from ..models.society import Resident, Worker
from ..schemas.gate import SubjectType
from .ledger_service import LedgerService

logger = get_logger(__name__)


class GateService:
    """Records face-recognition matches and delivery-desk scans."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    def _device_id(self, ctx: AuthContext):
        return str(ctx.subject_id) if ctx.role is Role.DEVICE else None

    async def identity_scan(
        self,
        ctx: AuthContext,
        subject_id: UUID,
        subject_type: SubjectType,
        direction: Direction,
        location: str,
    ) -> AttendanceEvent:
        """
        Record a face-recognition match at the main gate.

        Raises:
            NotFoundError: If the resident or worker does not exist
            AuthorizationError: If the subject belongs to another society
        """
        require_role(ctx, Role.DEVICE, Role.OPERATOR)

        model = Resident if subject_type == SubjectType.RESIDENT else Worker
        subject = await self.db.get(model, subject_id)
        if subject is None:
            raise NotFoundError(subject_type.value, str(subject_id))
        ensure_owned_by_tenant(ctx, subject, subject_type.value)

        return await self.ledger.append(
            tenant_id=ctx.tenant_id,
            subject_id=subject.id,
            person_name=subject.name,
            direction=direction.value,
            source=EventSource.MAIN_GATE.value,
            location=location,
            purpose=f"{subject_type.value.capitalize()} {direction.value}",
            verification_method=VerificationMethod.FACIAL_RECOGNITION.value,
            verified_by_operator_id=ctx.subject_id,
            device_id=self._device_id(ctx),
            outcome=EventOutcome.VERIFIED.value,
        )

    async def record_delivery(
        self,
        ctx: AuthContext,
        resident_id: UUID,
        direction: Direction,
        location: str,
        courier_name: str,
    ) -> AttendanceEvent:
        """Record a courier arriving for (entry) or a parcel leaving the desk to (exit) a resident."""
        require_role(ctx, Role.DEVICE, Role.OPERATOR)

        resident = await self.db.get(Resident, resident_id)
        if resident is None:
            raise NotFoundError("resident", str(resident_id))
        ensure_owned_by_tenant(ctx, resident, "resident")

        return await self.ledger.append(
            tenant_id=ctx.tenant_id,
            subject_id=resident.id,
            person_name=courier_name,
            direction=direction.value,
            source=EventSource.DELIVERY_POINT.value,
            location=location,
            purpose=f"Delivery for {resident.name}",
            verification_method=VerificationMethod.MANUAL.value,
            verified_by_operator_id=ctx.subject_id,
            device_id=self._device_id(ctx),
            outcome=EventOutcome.VERIFIED.value,
        )
