"""Database models."""

from sqlalchemy import MetaData

from clinichub.models.appointments import appointments
from clinichub.models.audit_logs import audit_logs
from clinichub.models.users import users

# Combined metadata for create_all / migrations
metadata = MetaData()
for table in (users, appointments, audit_logs):
    table.to_metadata(metadata)

__all__ = [
    "appointments",
    "audit_logs",
    "metadata",
    "users",
]
