"""Audit trail for appointment mutations."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinichub.models.audit_logs import audit_logs

logger = structlog.get_logger(__name__)


class AuditAction(str, Enum):
    """Audited appointment actions."""

    CREATE_APPOINTMENT = "CREATE_APPOINTMENT"
    UPDATE_APPOINTMENT = "UPDATE_APPOINTMENT"
    CANCEL_APPOINTMENT = "CANCEL_APPOINTMENT"


@dataclass(frozen=True)
class RequestContext:
    """Client details recorded with audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    """One audit record."""

    actor_id: UUID
    action: AuditAction
    resource_id: UUID | None
    changes: dict[str, Any] | None
    context: RequestContext = field(default_factory=RequestContext)
    resource_type: str = "Appointment"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AuditTrail(Protocol):
    """Write-only audit collaborator."""

    async def record(self, entry: AuditEntry) -> None:
        """Persist an entry; must never raise."""


class AuditService:
    """Writes audit entries to the ``audit_logs`` table."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def record(self, entry: AuditEntry) -> None:
        """
        Persist an audit entry in its own transaction.

        Failures are logged and swallowed so they never affect the audited
        operation.
        """
        try:
            await self.db.execute(
                insert(audit_logs).values(
                    actor_id=entry.actor_id,
                    action=entry.action.value,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    # Round-trip through JSON so dates and UUIDs are storable
                    changes=json.loads(json.dumps(entry.changes, default=str)),
                    ip_address=entry.context.ip_address,
                    user_agent=entry.context.user_agent,
                    timestamp=entry.timestamp,
                )
            )
            await self.db.commit()
            logger.info(
                "audit_log_created",
                action=entry.action.value,
                actor_id=str(entry.actor_id),
                resource_id=str(entry.resource_id),
            )
        except Exception as e:
            logger.error("audit_log_failed", action=entry.action.value, error=str(e))
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.error("audit_log_rollback_failed", error=str(rollback_error))
