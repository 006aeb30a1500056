"""Appointment persistence using SQLAlchemy Core."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinichub.core.exceptions import PersistenceUniquenessViolation
from clinichub.models.appointments import appointments
from clinichub.models.users import users
from clinichub.schemas.appointments import AppointmentFilters
from clinichub.services.lifecycle import NON_BLOCKING_STATUSES

logger = structlog.get_logger(__name__)

SLOT_CONSTRAINT = "uq_appointments_doctor_slot"

_patient = users.alias("patient_user")
_doctor = users.alias("doctor_user")

_PATIENT_COLUMNS = ("id", "first_name", "last_name", "email", "phone")
_DOCTOR_COLUMNS = ("id", "first_name", "last_name", "email", "specialization")

_NON_BLOCKING = [status.value for status in NON_BLOCKING_STATUSES]


def _joined_select():
    """Appointment columns plus patient and doctor details in one query."""
    columns = [appointments]
    columns += [_patient.c[name].label(f"patient__{name}") for name in _PATIENT_COLUMNS]
    columns += [_doctor.c[name].label(f"doctor__{name}") for name in _DOCTOR_COLUMNS]
    return select(*columns).select_from(
        appointments.outerjoin(_patient, _patient.c.id == appointments.c.patient_id).outerjoin(
            _doctor, _doctor.c.id == appointments.c.doctor_id
        )
    )


def _to_record(row: Any) -> dict[str, Any]:
    """Fold ``patient__*`` / ``doctor__*`` columns into nested dicts."""
    record: dict[str, Any] = {}
    nested: dict[str, dict[str, Any]] = {"patient": {}, "doctor": {}}
    for key, value in row._mapping.items():
        prefix, sep, name = key.partition("__")
        if sep and prefix in nested:
            nested[prefix][name] = value
        else:
            record[key] = value
    for prefix, values in nested.items():
        record[prefix] = values if values.get("id") is not None else None
    return record


class AppointmentRepository:
    """Data access for appointments; the caller owns the transaction."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Fetch one appointment with patient and doctor details."""
        stmt = _joined_select().where(appointments.c.id == appointment_id)
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return _to_record(row) if row else None

    async def find(self, filters: AppointmentFilters) -> list[dict[str, Any]]:
        """List appointments matching the filters, earliest first."""
        conditions = []

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.start_date:
            conditions.append(appointments.c.appointment_date >= filters.start_date)

        if filters.end_date:
            conditions.append(appointments.c.appointment_date <= filters.end_date)

        stmt = _joined_select().order_by(
            appointments.c.appointment_date.asc(),
            appointments.c.start_minute.asc(),
        )
        if conditions:
            stmt = stmt.where(and_(*conditions))

        result = await self.db.execute(stmt)
        return [_to_record(row) for row in result.fetchall()]

    async def occupied_slots(
        self,
        doctor_id: UUID,
        appointment_date: date,
    ) -> list[dict[str, Any]]:
        """Appointments still occupying the doctor's calendar on a date."""
        stmt = select(
            appointments.c.id,
            appointments.c.appointment_time,
            appointments.c.start_minute,
            appointments.c.duration,
        ).where(
            and_(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == appointment_date,
                appointments.c.status.not_in(_NON_BLOCKING),
            )
        )
        result = await self.db.execute(stmt)
        return [dict(row._mapping) for row in result.fetchall()]

    async def lock_doctor_day(self, doctor_id: UUID, appointment_date: date) -> None:
        """
        Take a transaction-scoped advisory lock for (doctor, date).

        Concurrent bookings for the same doctor and day queue on this lock
        until the holder commits or rolls back.
        """
        key = f"appointments:{doctor_id}:{appointment_date.isoformat()}"
        await self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(key))))

    async def insert(self, values: dict[str, Any]) -> UUID:
        """
        Insert an appointment.

        Raises:
            PersistenceUniquenessViolation: If the slot unique index rejects it
        """
        stmt = insert(appointments).values(**values).returning(appointments.c.id)
        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            await self.db.rollback()
            if SLOT_CONSTRAINT in str(e.orig):
                logger.warning("slot_uniqueness_violation", doctor_id=str(values.get("doctor_id")))
                raise await self._slot_violation(values) from e
            raise
        return result.scalar_one()

    async def update(
        self,
        appointment_id: UUID,
        values: dict[str, Any],
        expected_status: str | None = None,
    ) -> bool:
        """
        Update fields of one appointment.

        Args:
            appointment_id: Appointment ID
            values: Column values to set
            expected_status: Only apply when the stored status still equals this

        Returns:
            False when the row no longer matches ``expected_status``

        Raises:
            PersistenceUniquenessViolation: If a reschedule hits a taken slot
        """
        conditions = [appointments.c.id == appointment_id]
        if expected_status is not None:
            conditions.append(appointments.c.status == expected_status)

        stmt = (
            update(appointments)
            .where(and_(*conditions))
            .values(**values)
            .returning(appointments.c.id)
        )
        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            await self.db.rollback()
            if SLOT_CONSTRAINT in str(e.orig):
                logger.warning("slot_uniqueness_violation", appointment_id=str(appointment_id))
                current = await self.db.execute(
                    select(appointments).where(appointments.c.id == appointment_id)
                )
                row = current.fetchone()
                slot = {**row._mapping, **values} if row else dict(values)
                raise await self._slot_violation(slot, exclude_id=appointment_id) from e
            raise
        return result.fetchone() is not None

    async def _slot_violation(
        self,
        slot: dict[str, Any],
        exclude_id: UUID | None = None,
    ) -> PersistenceUniquenessViolation:
        """Describe the appointment already holding the slot's start minute."""
        stmt = select(appointments.c.appointment_time, appointments.c.duration).where(
            and_(
                appointments.c.doctor_id == slot.get("doctor_id"),
                appointments.c.appointment_date == slot.get("appointment_date"),
                appointments.c.start_minute == slot.get("start_minute"),
                appointments.c.status.not_in(_NON_BLOCKING),
            )
        )
        if exclude_id is not None:
            stmt = stmt.where(appointments.c.id != exclude_id)

        occupant = (await self.db.execute(stmt)).first()
        if occupant is None:
            return PersistenceUniquenessViolation(
                slot.get("appointment_time"), slot.get("duration")
            )
        return PersistenceUniquenessViolation(occupant.appointment_time, occupant.duration)

    async def stats(self, doctor_id: UUID | None, today: date) -> dict[str, Any]:
        """Counts per status, today's count and average duration."""
        scope = [appointments.c.doctor_id == doctor_id] if doctor_id else []

        status_stmt = select(appointments.c.status, func.count()).group_by(appointments.c.status)
        summary_stmt = select(
            func.count(),
            func.avg(appointments.c.duration),
            func.count().filter(appointments.c.appointment_date == today),
        )
        if scope:
            status_stmt = status_stmt.where(*scope)
            summary_stmt = summary_stmt.where(*scope)

        by_status = {status: count for status, count in (await self.db.execute(status_stmt)).all()}
        total, avg_duration, today_count = (await self.db.execute(summary_stmt)).one()

        return {
            "total": total or 0,
            "today": today_count or 0,
            "by_status": by_status,
            "average_duration": float(avg_duration) if avg_duration is not None else None,
        }

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self.db.commit()

    async def rollback(self) -> None:
        """Roll back the current transaction."""
        await self.db.rollback()

