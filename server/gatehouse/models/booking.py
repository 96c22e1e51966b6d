"""Amenity booking model definition."""

from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .society import Amenity, Resident


class BookingStatus(str, Enum):
    """Booking lifecycle states."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    APPROVED = "approved"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that hold the amenity slot for overlap checks
SLOT_HOLDING_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.APPROVED,
    BookingStatus.CHECKED_IN,
)


class Booking(Base):
    """A resident's reservation of an amenity for a time window on one date."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amenity_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("amenities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False, index=True
    )

    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING, index=True
    )

    entry_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exit_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Set when check-out had to invent the entry timestamp
    entry_synthesized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("party_size > 0", name="ck_booking_party_size_positive"),
        CheckConstraint("end_time > start_time", name="ck_booking_window_ordered"),
        Index("ix_bookings_amenity_date", "amenity_id", "booking_date"),
    )

    amenity: Mapped["Amenity"] = relationship("Amenity")
    resident: Mapped["Resident"] = relationship("Resident", back_populates="bookings")

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, amenity_id={self.amenity_id}, "
            f"date={self.booking_date}, status={self.status})>"
        )
