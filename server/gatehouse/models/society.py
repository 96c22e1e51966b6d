"""Society (tenant) and its master-data records.

These tables have no write surface in this service; they are the roster the
access-control core reads from.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .booking import Booking


class AmenityStatus(str, Enum):
    """Amenity operational state."""
    OPERATIONAL = "operational"
    MAINTENANCE = "maintenance"
    CLOSED = "closed"


class Society(Base):
    """A managed residential community; the tenant boundary."""

    __tablename__ = "societies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Society(id={self.id}, name='{self.name}')>"


class Resident(Base):
    """A resident of a society."""

    __tablename__ = "residents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    vehicles: Mapped[list["ResidentVehicle"]] = relationship(
        "ResidentVehicle", back_populates="resident", cascade="all, delete-orphan"
    )
    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="resident")

    def __repr__(self) -> str:
        return f"<Resident(id={self.id}, tenant_id={self.tenant_id}, name='{self.name}')>"


class ResidentVehicle(Base):
    """A plate registered to a resident; the roster the vehicle gate matches against."""

    __tablename__ = "resident_vehicles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resident_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plate: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "plate", name="uq_resident_vehicle_tenant_plate"),
    )

    resident: Mapped["Resident"] = relationship("Resident", back_populates="vehicles")


class Worker(Base):
    """Society staff (housekeeping, security, maintenance)."""

    __tablename__ = "workers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())


class Operator(Base):
    """Admin or guard account. Legacy operators may not be linked to a society yet."""

    __tablename__ = "operators"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())


class Amenity(Base):
    """A bookable shared facility (pool, clubhouse, court)."""

    __tablename__ = "amenities"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AmenityStatus] = mapped_column(
        String(20), nullable=False, default=AmenityStatus.OPERATIONAL
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_amenity_capacity_positive"),
    )

    @property
    def is_operational(self) -> bool:
        return self.status == AmenityStatus.OPERATIONAL

    def __repr__(self) -> str:
        return f"<Amenity(id={self.id}, name='{self.name}', status={self.status})>"
