"""Notification schemas for the live and email channels."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class NotificationKind(str, Enum):
    """Kind of appointment mutation being announced."""

    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"


class NotificationPayload(BaseModel):
    """Logical payload delivered identically on every channel."""

    kind: NotificationKind
    event: str
    title: str
    message: str
    appointment_id: UUID
    patient_name: str
    doctor_name: str
    date: str
    time: str
    reason: str
    status: str


class LiveMessage(BaseModel):
    """Envelope published on a principal's live channel."""

    event: str
    data: dict
