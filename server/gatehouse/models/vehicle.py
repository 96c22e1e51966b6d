"""Vehicle gate entry record model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class VehicleClassification(str, Enum):
    RESIDENT = "resident"
    GUEST = "guest"
    UNAUTHORIZED = "unauthorized"


class VehicleEntryRecord(Base):
    """
    A vehicle's stay inside the society.

    Created on an entry scan with ``exit_timestamp`` null; the exit scan sets
    ``exit_timestamp`` exactly once. A plate has at most one open record per
    society.
    """

    __tablename__ = "vehicle_entry_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("societies.id", ondelete="CASCADE"), nullable=False
    )
    plate: Mapped[str] = mapped_column(String(20), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    entry_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    exit_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # True when the record was closed by a later entry scan rather than an exit scan
    exit_inferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    classification: Mapped[VehicleClassification] = mapped_column(String(20), nullable=False)
    linked_resident_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    linked_guest_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_vehicle_entries_open_lookup", "tenant_id", "plate", "exit_timestamp"),
        # at most one open record per plate
        Index(
            "uq_vehicle_entries_open_plate",
            "tenant_id",
            "plate",
            unique=True,
            postgresql_where=text("exit_timestamp IS NULL"),
            sqlite_where=text("exit_timestamp IS NULL"),
        ),
        Index("ix_vehicle_entries_tenant_entry", "tenant_id", "entry_timestamp"),
    )

    @property
    def is_open(self) -> bool:
        return self.exit_timestamp is None

    def __repr__(self) -> str:
        return (
            f"<VehicleEntryRecord(id={self.id}, plate='{self.plate}', "
            f"classification={self.classification}, open={self.is_open})>"
        )


def normalize_plate(plate: str) -> str:
    """Canonical plate form used for storage and lookups: upper case, no spaces or hyphens."""
    return "".join(ch for ch in plate.upper() if ch not in " -")
