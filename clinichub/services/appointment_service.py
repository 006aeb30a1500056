"""Appointment service for business logic.

Each mutation runs authorize -> validate -> persist -> audit -> notify.
Validation failures surface before anything is written, and audit and
notification failures never surface at all.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

import structlog

from clinichub.config import settings
from clinichub.core.exceptions import (
    InvalidStatusTransition,
    NotFound,
    SchedulingConflict,
    ValidationFailed,
)
from clinichub.core.permissions import Operation, Principal, authorize
from clinichub.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinichub.schemas.notifications import NotificationKind
from clinichub.schemas.users import Role
from clinichub.services.audit_service import AuditAction, AuditEntry, AuditTrail, RequestContext
from clinichub.services.lifecycle import (
    INITIAL_STATUS,
    ensure_cancellable,
    ensure_reschedulable,
    ensure_transition,
)
from clinichub.services.notification_service import NotificationEvent, NotificationFanout
from clinichub.services.scheduling import ensure_slot_available, interval, to_minutes

logger = structlog.get_logger(__name__)

# Recorded when a cancellation arrives without a reason
DEFAULT_CANCEL_REASON = "No reason provided"


class AppointmentService:
    """Service for managing appointments."""

    # Attempts at a status-guarded write before giving up on a racing writer
    MAX_GUARDED_ATTEMPTS = 3

    def __init__(
        self,
        repository: Any,
        users: Any,
        notifier: NotificationFanout,
        audit: AuditTrail,
        lock_slots: bool | None = None,
    ):
        """
        Initialize service with its collaborators.

        Args:
            repository: Appointment persistence (see AppointmentRepository)
            users: User lookup (see UserService)
            notifier: Notification fan-out
            audit: Audit trail
            lock_slots: Serialize bookings per (doctor, date); defaults to settings
        """
        self.repository = repository
        self.users = users
        self.notifier = notifier
        self.audit = audit
        self.lock_slots = settings.scheduling_advisory_lock if lock_slots is None else lock_slots

    async def create_appointment(
        self,
        principal: Principal,
        data: AppointmentCreate,
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        """
        Book a new appointment.

        Args:
            principal: Authenticated actor
            data: Appointment creation data
            context: Client details for the audit trail

        Returns:
            Created appointment with patient and doctor details

        Raises:
            Forbidden: If the principal may not book for this patient
            ValidationFailed: If an admin does not name a patient
            InvalidTimeFormat: If the time cannot be parsed
            NotFound: If the doctor or patient does not exist
            SchedulingConflict: If the slot overlaps an existing appointment
        """
        if data.patient_id is None or data.patient_id == principal.id:
            if principal.role is Role.ADMIN and data.patient_id is None:
                raise ValidationFailed("patient_id is required when booking for a patient")
            operation = Operation.CREATE_FOR_SELF
            patient_id = principal.id
        else:
            operation = Operation.CREATE_FOR_OTHER
            patient_id = data.patient_id
        authorize(principal, operation)

        duration = data.duration or settings.default_appointment_duration
        if duration > settings.max_appointment_duration:
            raise ValidationFailed(
                f"Duration must not exceed {settings.max_appointment_duration} minutes"
            )
        candidate = interval(data.appointment_time, duration)

        doctor = await self.users.get_user_by_id(data.doctor_id)
        if doctor is None or doctor.role is not Role.DOCTOR or not doctor.is_active:
            raise NotFound("Doctor not found")

        if operation is Operation.CREATE_FOR_OTHER:
            patient = await self.users.get_user_by_id(patient_id)
            if patient is None or patient.role is not Role.PATIENT:
                raise NotFound("Patient not found")

        if self.lock_slots:
            await self.repository.lock_doctor_day(data.doctor_id, data.appointment_date)

        occupied = await self.repository.occupied_slots(data.doctor_id, data.appointment_date)
        try:
            ensure_slot_available(candidate, occupied)
        except SchedulingConflict as conflict:
            await self.repository.rollback()
            logger.info(
                "scheduling_conflict_detected",
                doctor_id=str(data.doctor_id),
                appointment_date=data.appointment_date.isoformat(),
                requested_time=data.appointment_time,
                conflicting_time=conflict.conflicting_time,
            )
            raise

        appointment_id = await self.repository.insert(
            {
                "patient_id": patient_id,
                "doctor_id": data.doctor_id,
                "appointment_date": data.appointment_date,
                "appointment_time": data.appointment_time,
                "start_minute": candidate.start,
                "duration": duration,
                "reason": data.reason,
                "status": INITIAL_STATUS.value,
            }
        )
        await self.repository.commit()

        appointment = await self._load(appointment_id)
        logger.info("appointment_created", appointment_id=str(appointment_id))

        await self.audit.record(
            AuditEntry(
                actor_id=principal.id,
                action=AuditAction.CREATE_APPOINTMENT,
                resource_id=appointment_id,
                changes=_snapshot(appointment),
                context=context or RequestContext(),
            )
        )
        self.notifier.notify(NotificationEvent(NotificationKind.CREATED, appointment))

        return appointment

    async def get_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
    ) -> dict[str, Any]:
        """
        Get appointment by ID.

        Raises:
            NotFound: If appointment not found
            Forbidden: If the principal may not read it
        """
        appointment = await self._load(appointment_id)
        authorize(principal, Operation.READ, appointment)
        return appointment

    async def list_appointments(
        self,
        principal: Principal,
        filters: AppointmentFilters,
    ) -> list[dict[str, Any]]:
        """
        List appointments visible to the principal.

        Patients only see their own appointments and doctors only those
        assigned to them; only admins may filter by doctor or patient.
        """
        if principal.role is Role.PATIENT:
            filters = filters.model_copy(update={"patient_id": principal.id, "doctor_id": None})
        elif principal.role is Role.DOCTOR:
            filters = filters.model_copy(update={"doctor_id": principal.id, "patient_id": None})

        return await self.repository.find(filters)

    async def update_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
        data: AppointmentUpdate,
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        """
        Update status, date, time or notes of an appointment.

        Rescheduling is not re-checked for overlap; only an exact start-time
        collision is rejected, by the store's unique index. Cancelled and
        completed appointments cannot be moved; only their notes may change.

        Raises:
            NotFound: If appointment not found
            Forbidden: If the principal may not update it
            ValidationFailed: If asked to set the cancelled status
            InvalidStatusTransition: If the status change is not allowed, or a
                cancelled or completed appointment is rescheduled
            InvalidTimeFormat: If the new time cannot be parsed
        """
        appointment = await self._load(appointment_id)
        authorize(principal, Operation.UPDATE, appointment)

        values: dict[str, Any] = {}

        if data.status is not None:
            if data.status is AppointmentStatus.CANCELLED:
                raise ValidationFailed("Use the cancel operation to cancel an appointment")
            values["status"] = data.status.value

        if data.appointment_date is not None:
            values["appointment_date"] = data.appointment_date

        if data.appointment_time is not None:
            values["start_minute"] = to_minutes(data.appointment_time)
            values["appointment_time"] = data.appointment_time

        if data.notes is not None:
            values["notes"] = data.notes

        changes = {
            field: {"old": appointment[field], "new": value}
            for field, value in values.items()
            if field != "start_minute" and appointment[field] != value
        }
        if not changes:
            return appointment

        values["updated_at"] = datetime.now(UTC)

        rescheduling = "appointment_date" in changes or "appointment_time" in changes

        def validate(current: str) -> None:
            if rescheduling:
                ensure_reschedulable(current)
            if data.status is not None:
                ensure_transition(current, data.status)

        await self._guarded_update(appointment, values, validate)
        await self.repository.commit()

        updated = await self._load(appointment_id)
        logger.info("appointment_updated", appointment_id=str(appointment_id), fields=list(changes))

        await self.audit.record(
            AuditEntry(
                actor_id=principal.id,
                action=AuditAction.UPDATE_APPOINTMENT,
                resource_id=appointment_id,
                changes=changes,
                context=context or RequestContext(),
            )
        )
        self.notifier.notify(
            NotificationEvent(
                NotificationKind.UPDATED,
                updated,
                status_changed="status" in changes,
            )
        )

        return updated

    async def cancel_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
        cancel_reason: str | None = None,
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        """
        Cancel an appointment.

        A missing or blank reason is stored as DEFAULT_CANCEL_REASON so a
        cancelled appointment never lacks a reason.

        Raises:
            NotFound: If appointment not found
            Forbidden: If the principal may not cancel it
            AlreadyCancelled: If the appointment is already cancelled
            InvalidStatusTransition: If the appointment is completed
        """
        appointment = await self._load(appointment_id)
        authorize(principal, Operation.CANCEL, appointment)

        reason = (cancel_reason or "").strip() or DEFAULT_CANCEL_REASON
        now = datetime.now(UTC)
        values = {
            "status": AppointmentStatus.CANCELLED.value,
            "cancel_reason": reason,
            "cancelled_by": principal.id,
            "cancelled_at": now,
            "updated_at": now,
        }
        await self._guarded_update(appointment, values, ensure_cancellable)
        await self.repository.commit()

        cancelled = await self._load(appointment_id)
        logger.info("appointment_cancelled", appointment_id=str(appointment_id))

        await self.audit.record(
            AuditEntry(
                actor_id=principal.id,
                action=AuditAction.CANCEL_APPOINTMENT,
                resource_id=appointment_id,
                changes={"cancel_reason": reason},
                context=context or RequestContext(),
            )
        )
        self.notifier.notify(NotificationEvent(NotificationKind.CANCELLED, cancelled))

        return cancelled

    async def get_stats(self, principal: Principal, today: date | None = None) -> dict[str, Any]:
        """
        Aggregate appointment numbers; doctors only see their own.

        Raises:
            Forbidden: If the principal is a patient
        """
        authorize(principal, Operation.VIEW_STATS)
        doctor_id = principal.id if principal.role is Role.DOCTOR else None

        raw = await self.repository.stats(doctor_id, today or date.today())
        total = raw["total"]
        completed = raw["by_status"].get(AppointmentStatus.COMPLETED.value, 0)
        average = raw["average_duration"]

        return {
            "total": total,
            "today": raw["today"],
            "by_status": raw["by_status"],
            "average_duration": (
                round(average) if average is not None else settings.default_appointment_duration
            ),
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        }

    async def _load(self, appointment_id: UUID) -> dict[str, Any]:
        appointment = await self.repository.get(appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found")
        return appointment

    async def _guarded_update(
        self,
        appointment: dict[str, Any],
        values: dict[str, Any],
        validate: Callable[[str], None],
    ) -> None:
        """
        Write ``values`` only if the status did not change under us.

        When another request changed the status first, reload and validate
        again against the new status before retrying.
        """
        for _ in range(self.MAX_GUARDED_ATTEMPTS):
            validate(appointment["status"])
            if await self.repository.update(
                appointment["id"], values, expected_status=appointment["status"]
            ):
                return
            await self.repository.rollback()
            appointment = await self._load(appointment["id"])

        raise InvalidStatusTransition(appointment["status"], values.get("status", "unchanged"))


def _snapshot(appointment: dict[str, Any]) -> dict[str, Any]:
    """Appointment columns without the joined party details."""
    return {key: value for key, value in appointment.items() if key not in ("patient", "doctor")}
