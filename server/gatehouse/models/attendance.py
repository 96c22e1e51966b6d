"""Attendance ledger entry. Rows are written once and never updated or deleted."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class Direction(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class EventSource(str, Enum):
    MAIN_GATE = "main_gate"
    AMENITY_CHECKIN = "amenity_checkin"
    DELIVERY_POINT = "delivery_point"
    MANUAL_ADMIN = "manual_admin"


class VerificationMethod(str, Enum):
    FACIAL_RECOGNITION = "facial_recognition"
    MANUAL = "manual"
    QR_CODE = "qr_code"
    VEHICLE_PLATE = "vehicle_plate"
    OVERRIDE = "override"


class EventOutcome(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    MANUAL_OVERRIDE = "manual_override"


class AttendanceEvent(Base):
    """One physical or virtual entry/exit observation from any source."""

    __tablename__ = "attendance_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False
    )

    # Subject references (resident or worker), all optional
    subject_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    guest_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    person_name: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    direction: Mapped[Direction] = mapped_column(String(10), nullable=False)
    source: Mapped[EventSource] = mapped_column(String(20), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    vehicle_plate: Mapped[str | None] = mapped_column(String(20), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verification_method: Mapped[VerificationMethod] = mapped_column(String(30), nullable=False)
    verified_by_operator_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome: Mapped[EventOutcome] = mapped_column(
        String(20), nullable=False, default=EventOutcome.VERIFIED
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_attendance_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_attendance_tenant_source_direction", "tenant_id", "source", "direction"),
    )

    def __repr__(self) -> str:
        return (
            f"<AttendanceEvent(id={self.id}, source={self.source}, "
            f"direction={self.direction}, person='{self.person_name}')>"
        )
