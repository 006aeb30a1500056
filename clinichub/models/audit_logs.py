"""Audit log table for appointment mutations."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

metadata = MetaData()

audit_logs = Table(
    "audit_logs",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("actor_id", UUID(as_uuid=True), nullable=False),
    Column("action", String(50), nullable=False),
    Column("resource_type", String(50), nullable=False),
    Column("resource_id", UUID(as_uuid=True), nullable=True),
    Column("changes", JSONB, nullable=True),
    Column("ip_address", Text, nullable=True),
    Column("user_agent", Text, nullable=True),
    Column("timestamp", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint(
        "action IN ('CREATE_APPOINTMENT', 'UPDATE_APPOINTMENT', 'CANCEL_APPOINTMENT')",
        name="audit_logs_action_check",
    ),
    Index("ix_audit_logs_actor_timestamp", "actor_id", "timestamp"),
    Index("ix_audit_logs_resource", "resource_type", "resource_id", "timestamp"),
)
