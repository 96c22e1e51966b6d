"""Pre-authorized visitor model definition."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .society import Resident


class GuestStatus(str, Enum):
    """Guest lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"


class Guest(Base):
    """A visitor registered by a resident host."""

    __tablename__ = "guests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    host_resident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)
    visit_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    vehicle_plate: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)

    status: Mapped[GuestStatus] = mapped_column(
        String(20), nullable=False, default=GuestStatus.PENDING, index=True
    )

    entry_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exit_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_guest_party_size_positive"),
        CheckConstraint("length(name) > 0", name="ck_guest_name_not_empty"),
    )

    host: Mapped["Resident"] = relationship("Resident")

    def __repr__(self) -> str:
        return f"<Guest(id={self.id}, name='{self.name}', status={self.status})>"
