"""User model definition using SQLAlchemy Core.

Users are provisioned by the authentication service; this service only
reads them to resolve principals and to render names in notifications.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("email", Text, nullable=False, unique=True, index=True),
    # Profile info
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("phone", String(20)),
    Column("role", Text, nullable=False, server_default=text("'patient'")),
    # Doctors only
    Column("specialization", String(200)),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("role IN ('admin', 'doctor', 'patient')", name="users_role_check"),
)
