"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

metadata = MetaData()

appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Ownership / references
    Column("patient_id", UUID(as_uuid=True), nullable=False, index=True),
    Column("doctor_id", UUID(as_uuid=True), nullable=False, index=True),
    # Slot (local clinic time, no timezone conversion)
    Column("appointment_date", Date, nullable=False, index=True),
    Column("appointment_time", Text, nullable=False),
    Column("start_minute", Integer, nullable=False),
    Column("duration", Integer, nullable=False, server_default=text("30")),
    # Details
    Column("reason", Text, nullable=False),
    Column("notes", Text, nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="scheduled", index=True),
    Column("cancel_reason", Text, nullable=True),
    Column("cancelled_by", UUID(as_uuid=True), nullable=True),
    Column("cancelled_at", TIMESTAMP(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in-progress', 'completed', 'cancelled', 'no-show')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration > 0", name="appointments_duration_check"),
    CheckConstraint(
        "num_nonnulls(cancel_reason, cancelled_by, cancelled_at) = "
        "CASE WHEN status = 'cancelled' THEN 3 ELSE 0 END",
        name="appointments_cancellation_check",
    ),
    # Last line of defense against double booking of the same start
    Index(
        "uq_appointments_doctor_slot",
        "doctor_id",
        "appointment_date",
        "start_minute",
        unique=True,
        postgresql_where=text("status NOT IN ('cancelled', 'no-show')"),
    ),
)
