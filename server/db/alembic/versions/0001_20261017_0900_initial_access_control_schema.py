"""Initial access-control schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False)]
    if with_updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False))
    return columns


def _tenant_fk(nullable: bool = False, ondelete: str = 'CASCADE') -> list:
    return [
        sa.Column('tenant_id', sa.Uuid(), nullable=nullable),
        sa.ForeignKeyConstraint(['tenant_id'], ['societies.id'], ondelete=ondelete),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    # Tenants and roster
    op.create_table('societies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('residents',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=64), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_residents_tenant_id'), 'residents', ['tenant_id'], unique=False)

    op.create_table('resident_vehicles',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('resident_id', sa.Uuid(), nullable=False),
        sa.Column('plate', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['resident_id'], ['residents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'plate', name='uq_resident_vehicle_tenant_plate')
    )
    op.create_index(op.f('ix_resident_vehicles_tenant_id'), 'resident_vehicles', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_resident_vehicles_resident_id'), 'resident_vehicles', ['resident_id'], unique=False)

    op.create_table('workers',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('department', sa.String(length=64), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workers_tenant_id'), 'workers', ['tenant_id'], unique=False)

    op.create_table('operators',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(nullable=True, ondelete='SET NULL'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_operators_tenant_id'), 'operators', ['tenant_id'], unique=False)

    op.create_table('amenities',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint('capacity > 0', name='ck_amenity_capacity_positive'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_amenities_tenant_id'), 'amenities', ['tenant_id'], unique=False)

    # Lifecycles
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('amenity_id', sa.Uuid(), nullable=False),
        sa.Column('resident_id', sa.Uuid(), nullable=False),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('purpose', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('entry_timestamp', sa.DateTime(), nullable=True),
        sa.Column('exit_timestamp', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('entry_synthesized', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('party_size > 0', name='ck_booking_party_size_positive'),
        sa.CheckConstraint('end_time > start_time', name='ck_booking_window_ordered'),
        sa.ForeignKeyConstraint(['amenity_id'], ['amenities.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['resident_id'], ['residents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_tenant_id'), 'bookings', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_bookings_amenity_id'), 'bookings', ['amenity_id'], unique=False)
    op.create_index(op.f('ix_bookings_resident_id'), 'bookings', ['resident_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index('ix_bookings_amenity_date', 'bookings', ['amenity_id', 'booking_date'], unique=False)

    op.create_table('guests',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('host_resident_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('purpose', sa.String(length=255), nullable=True),
        sa.Column('visit_date', sa.Date(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('vehicle_plate', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('entry_timestamp', sa.DateTime(), nullable=True),
        sa.Column('exit_timestamp', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('party_size > 0', name='ck_guest_party_size_positive'),
        sa.CheckConstraint('length(name) > 0', name='ck_guest_name_not_empty'),
        sa.ForeignKeyConstraint(['host_resident_id'], ['residents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_guests_tenant_id'), 'guests', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_guests_host_resident_id'), 'guests', ['host_resident_id'], unique=False)
    op.create_index(op.f('ix_guests_vehicle_plate'), 'guests', ['vehicle_plate'], unique=False)
    op.create_index(op.f('ix_guests_status'), 'guests', ['status'], unique=False)

    # Ledger and reconciliation
    op.create_table('attendance_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('subject_id', sa.Uuid(), nullable=True),
        sa.Column('guest_id', sa.Uuid(), nullable=True),
        sa.Column('booking_id', sa.Uuid(), nullable=True),
        sa.Column('person_name', sa.String(length=255), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('direction', sa.String(length=10), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=False),
        sa.Column('vehicle_plate', sa.String(length=20), nullable=True),
        sa.Column('purpose', sa.String(length=255), nullable=True),
        sa.Column('verification_method', sa.String(length=30), nullable=False),
        sa.Column('verified_by_operator_id', sa.Uuid(), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_attendance_events_subject_id'), 'attendance_events', ['subject_id'], unique=False)
    op.create_index(op.f('ix_attendance_events_guest_id'), 'attendance_events', ['guest_id'], unique=False)
    op.create_index(op.f('ix_attendance_events_booking_id'), 'attendance_events', ['booking_id'], unique=False)
    op.create_index('ix_attendance_tenant_timestamp', 'attendance_events', ['tenant_id', 'timestamp'], unique=False)
    op.create_index(
        'ix_attendance_tenant_source_direction', 'attendance_events',
        ['tenant_id', 'source', 'direction'], unique=False
    )

    op.create_table('vehicle_entry_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_tenant_fk(),
        sa.Column('plate', sa.String(length=20), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('entry_timestamp', sa.DateTime(), nullable=False),
        sa.Column('exit_timestamp', sa.DateTime(), nullable=True),
        sa.Column('exit_inferred', sa.Boolean(), nullable=False),
        sa.Column('classification', sa.String(length=20), nullable=False),
        sa.Column('linked_resident_id', sa.Uuid(), nullable=True),
        sa.Column('linked_guest_id', sa.Uuid(), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_vehicle_entries_open_lookup', 'vehicle_entry_records',
        ['tenant_id', 'plate', 'exit_timestamp'], unique=False
    )
    op.create_index(
        'uq_vehicle_entries_open_plate', 'vehicle_entry_records',
        ['tenant_id', 'plate'], unique=True,
        postgresql_where=sa.text('exit_timestamp IS NULL'),
        sqlite_where=sa.text('exit_timestamp IS NULL'),
    )
    op.create_index(
        'ix_vehicle_entries_tenant_entry', 'vehicle_entry_records',
        ['tenant_id', 'entry_timestamp'], unique=False
    )

    # Idempotency
    op.create_table('idempotency_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('scope', sa.String(length=80), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope', 'idempotency_key', 'method', name='uq_idempotency_scope_key_method')
    )
    op.create_index(op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('vehicle_entry_records')
    op.drop_table('attendance_events')
    op.drop_table('guests')
    op.drop_table('bookings')
    op.drop_table('amenities')
    op.drop_table('operators')
    op.drop_table('workers')
    op.drop_table('resident_vehicles')
    op.drop_table('residents')
    op.drop_table('societies')
