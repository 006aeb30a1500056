"""Notification fan-out for committed appointment mutations.

Every event is delivered to the appointment's patient and doctor on two
independent channels: a live channel (Redis pub/sub relayed over WebSocket)
and a deferred channel (email). Delivery runs in background tasks and is
best-effort; a failing channel is logged and never reaches the caller.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

import redis.asyncio as aioredis
import structlog

from clinichub.core.redis_client import user_channel
from clinichub.schemas.notifications import LiveMessage, NotificationKind, NotificationPayload
from clinichub.services.email_service import EmailSender, render_appointment_email

logger = structlog.get_logger(__name__)

PATIENT = "patient"
DOCTOR = "doctor"

# Live event name per (kind, party)
LIVE_ROUTES: dict[NotificationKind, dict[str, str]] = {
    NotificationKind.CREATED: {DOCTOR: "new_appointment", PATIENT: "appointment_update"},
    NotificationKind.UPDATED: {DOCTOR: "appointment_update", PATIENT: "appointment_update"},
    NotificationKind.CANCELLED: {
        DOCTOR: "appointment_cancelled",
        PATIENT: "appointment_cancelled",
    },
}

# Parties emailed per kind
EMAIL_ROUTES: dict[NotificationKind, tuple[str, ...]] = {
    NotificationKind.CREATED: (PATIENT, DOCTOR),
    NotificationKind.UPDATED: (PATIENT,),
    NotificationKind.CANCELLED: (PATIENT, DOCTOR),
}

# Strong references to in-flight deliveries
_pending_deliveries: set[asyncio.Task] = set()


@dataclass(frozen=True)
class Recipient:
    """A party to be notified."""

    id: UUID
    email: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    """Ephemeral description of a committed appointment mutation."""

    kind: NotificationKind
    appointment: Mapping[str, Any]
    status_changed: bool = True


class NotificationSink(Protocol):
    """A delivery channel."""

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        """Deliver a payload to one recipient."""


def _display_name(person: Mapping[str, Any] | None, prefix: str = "") -> str:
    if not person:
        return "Unknown"
    return f"{prefix}{person['first_name']} {person['last_name']}"


def build_payload(event: NotificationEvent) -> NotificationPayload:
    """Build the channel-independent payload for an event."""
    appointment = event.appointment
    status = str(appointment["status"])

    if event.kind is NotificationKind.CREATED:
        title = "New Appointment Scheduled"
        message = "Your appointment has been successfully scheduled."
    elif event.kind is NotificationKind.CANCELLED:
        title = "Appointment Cancelled"
        message = "Your appointment has been cancelled."
        if appointment.get("cancel_reason"):
            message += f" Reason: {appointment['cancel_reason']}"
    elif event.status_changed:
        title = "Appointment Status Updated"
        message = f"Your appointment status has been updated to: {status}"
    else:
        title = "Appointment Updated"
        message = "Your appointment details have been updated."

    return NotificationPayload(
        kind=event.kind,
        event=LIVE_ROUTES[event.kind][PATIENT],
        title=title,
        message=message,
        appointment_id=appointment["id"],
        patient_name=_display_name(appointment.get("patient")),
        doctor_name=_display_name(appointment.get("doctor"), prefix="Dr. "),
        date=appointment["appointment_date"].isoformat(),
        time=appointment["appointment_time"],
        reason=appointment["reason"],
        status=status,
    )


def _recipients(appointment: Mapping[str, Any]) -> dict[str, Recipient]:
    patient = appointment.get("patient") or {}
    doctor = appointment.get("doctor") or {}
    return {
        PATIENT: Recipient(id=appointment["patient_id"], email=patient.get("email")),
        DOCTOR: Recipient(id=appointment["doctor_id"], email=doctor.get("email")),
    }


class RedisLiveChannel:
    """Publishes events on the recipient's pub/sub channel."""

    def __init__(self, redis_client: aioredis.Redis):
        """Initialize channel with an asyncio Redis client."""
        self.redis = redis_client

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        """Publish to ``user:<id>``; nobody listening means the event is dropped."""
        message = LiveMessage(event=payload.event, data=payload.model_dump(mode="json"))
        receivers = await self.redis.publish(user_channel(recipient.id), message.model_dump_json())
        if not receivers:
            logger.debug("live_recipient_offline", recipient_id=str(recipient.id))


class EmailChannel:
    """Sends the payload as an HTML email."""

    def __init__(self, sender: EmailSender):
        """Initialize channel with an email sender."""
        self.sender = sender

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> None:
        """Email the recipient, skipping when email is not configured."""
        if not self.sender.enabled:
            logger.warning("email_not_configured", recipient_id=str(recipient.id))
            return
        if not recipient.email:
            logger.warning("recipient_without_email", recipient_id=str(recipient.id))
            return
        await self.sender.send(recipient.email, payload.title, render_appointment_email(payload))


class NotificationFanout:
    """Dispatches notification events to the live and deferred channels."""

    def __init__(self, live: NotificationSink, deferred: NotificationSink):
        """Initialize fan-out with its two channels."""
        self.live = live
        self.deferred = deferred

    def notify(self, event: NotificationEvent) -> None:
        """
        Schedule delivery of an event without waiting for it.

        Must only be called after the mutation has been committed.
        """
        try:
            task = asyncio.get_running_loop().create_task(self.deliver(event))
        except Exception as e:
            logger.error("notification_dispatch_failed", kind=event.kind.value, error=str(e))
            return
        _pending_deliveries.add(task)
        task.add_done_callback(_pending_deliveries.discard)

    async def deliver(self, event: NotificationEvent) -> None:
        """Deliver an event on both channels; never raises."""
        try:
            payload = build_payload(event)
            recipients = _recipients(event.appointment)
        except Exception as e:
            logger.error("notification_payload_failed", kind=event.kind.value, error=str(e))
            return

        deliveries = []
        for party, live_event in LIVE_ROUTES[event.kind].items():
            deliveries.append(
                self._safe_send(
                    "live",
                    self.live,
                    recipients[party],
                    payload.model_copy(update={"event": live_event}),
                )
            )

        if event.kind is not NotificationKind.UPDATED or event.status_changed:
            for party in EMAIL_ROUTES[event.kind]:
                deliveries.append(
                    self._safe_send("email", self.deferred, recipients[party], payload)
                )

        await asyncio.gather(*deliveries)

    @staticmethod
    async def _safe_send(
        channel: str,
        sink: NotificationSink,
        recipient: Recipient,
        payload: NotificationPayload,
    ) -> None:
        try:
            await sink.send(recipient, payload)
        except Exception as e:
            logger.warning(
                f"{channel}_delivery_failed",
                recipient_id=str(recipient.id),
                live_event=payload.event,
                error=str(e),
            )


async def drain_pending_deliveries() -> None:
    """Wait for all scheduled deliveries to finish."""
    while _pending_deliveries:
        await asyncio.gather(*list(_pending_deliveries), return_exceptions=True)
