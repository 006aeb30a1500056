"""Tests for the SQL appointment repository against a real Postgres database.

Skipped unless TEST_DATABASE_URL points at a disposable database.
"""

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest
from sqlalchemy import insert, text
from sqlalchemy.exc import IntegrityError

from clinichub.core.exceptions import PersistenceUniquenessViolation
from clinichub.models.users import users
from clinichub.schemas.appointments import AppointmentFilters, AppointmentStatus
from clinichub.services.appointment_repository import AppointmentRepository

DAY = date(2025, 6, 1)


async def add_user(db_session, role: str, first_name: str, last_name: str, **extra) -> dict:
    user = {
        "id": uuid4(),
        "email": f"{first_name.lower()}.{last_name.lower()}@example.com",
        "first_name": first_name,
        "last_name": last_name,
        "role": role,
        **extra,
    }
    await db_session.execute(insert(users).values(**user))
    await db_session.commit()
    return user


@pytest.fixture
async def doctor(db_session):
    return await add_user(db_session, "doctor", "Gregory", "House", specialization="Diagnostics")


@pytest.fixture
async def patient(db_session):
    return await add_user(db_session, "patient", "Pat", "Doe", phone="+15550100")


@pytest.fixture
def repository(db_session) -> AppointmentRepository:
    return AppointmentRepository(db_session)


def slot(doctor, patient, time="10:00", start_minute=600, duration=30, day=DAY) -> dict:
    return {
        "patient_id": patient["id"],
        "doctor_id": doctor["id"],
        "appointment_date": day,
        "appointment_time": time,
        "start_minute": start_minute,
        "duration": duration,
        "reason": "checkup",
        "status": AppointmentStatus.SCHEDULED.value,
    }


def cancellation(actor_id) -> dict:
    now = datetime.now(UTC)
    return {
        "status": AppointmentStatus.CANCELLED.value,
        "cancel_reason": "patient request",
        "cancelled_by": actor_id,
        "cancelled_at": now,
        "updated_at": now,
    }


@pytest.mark.asyncio
async def test_identical_start_is_rejected(repository, doctor, patient):
    """Test that the unique slot index reports the occupying appointment."""
    await repository.insert(slot(doctor, patient, "10:00", duration=45))
    await repository.commit()

    with pytest.raises(PersistenceUniquenessViolation) as exc_info:
        await repository.insert(slot(doctor, patient, "10:00 AM"))

    assert exc_info.value.status_code == 409
    assert exc_info.value.details() == {"conflicting_time": "10:00", "conflicting_duration": 45}
    assert len(await repository.find(AppointmentFilters())) == 1


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(repository, doctor, patient):
    """Test that cancelled appointments no longer hold their slot."""
    first = await repository.insert(slot(doctor, patient))
    await repository.commit()

    assert await repository.update(first, cancellation(patient["id"]), expected_status="scheduled")
    await repository.commit()

    second = await repository.insert(slot(doctor, patient))
    await repository.commit()

    occupied = await repository.occupied_slots(doctor["id"], DAY)
    assert [row["id"] for row in occupied] == [second]
    assert occupied[0]["start_minute"] == 600


@pytest.mark.asyncio
async def test_guarded_update_misses_on_changed_status(repository, doctor, patient):
    """Test the status compare-and-set."""
    appointment_id = await repository.insert(slot(doctor, patient))
    await repository.commit()

    assert not await repository.update(
        appointment_id, {"notes": "stale"}, expected_status="confirmed"
    )
    assert await repository.update(appointment_id, {"notes": "fresh"}, expected_status="scheduled")
    await repository.commit()

    assert (await repository.get(appointment_id))["notes"] == "fresh"
    assert not await repository.update(uuid4(), {"notes": "missing"})


@pytest.mark.asyncio
async def test_reschedule_into_taken_slot_reports_occupant(repository, doctor, patient):
    """Test a date-only move onto another appointment's start."""
    await repository.insert(slot(doctor, patient, "10:00", duration=45, day=date(2025, 6, 2)))
    moving = await repository.insert(slot(doctor, patient, "10:00"))
    await repository.commit()

    with pytest.raises(PersistenceUniquenessViolation) as exc_info:
        await repository.update(moving, {"appointment_date": date(2025, 6, 2)})

    assert exc_info.value.details() == {"conflicting_time": "10:00", "conflicting_duration": 45}
    assert (await repository.get(moving))["appointment_date"] == DAY


@pytest.mark.asyncio
async def test_cancelled_status_requires_cancellation_fields(repository, doctor, patient):
    """Test that the store rejects a cancelled row without reason and actor."""
    appointment_id = await repository.insert(slot(doctor, patient))
    await repository.commit()

    with pytest.raises(IntegrityError) as exc_info:
        await repository.update(
            appointment_id, {"status": "cancelled", "cancelled_at": datetime.now(UTC)}
        )
    assert "appointments_cancellation_check" in str(exc_info.value.orig)


@pytest.mark.asyncio
async def test_get_and_find_join_both_parties(repository, doctor, patient):
    """Test the nested patient and doctor details and the ordering."""
    late = await repository.insert(slot(doctor, patient, "2:30 PM", start_minute=870))
    early = await repository.insert(slot(doctor, patient, "09:00", start_minute=540))
    await repository.commit()

    record = await repository.get(late)
    assert record["patient"] == {
        "id": patient["id"],
        "first_name": "Pat",
        "last_name": "Doe",
        "email": "pat.doe@example.com",
        "phone": "+15550100",
    }
    assert record["doctor"]["specialization"] == "Diagnostics"
    assert "patient__id" not in record

    found = await repository.find(AppointmentFilters(doctor_id=doctor["id"], start_date=DAY))
    assert [row["id"] for row in found] == [early, late]

    assert await repository.find(AppointmentFilters(status=AppointmentStatus.CANCELLED)) == []
    assert await repository.get(uuid4()) is None


@pytest.mark.asyncio
async def test_advisory_lock_is_held_by_the_transaction(db_session, repository, doctor):
    """Test that locking a doctor's day takes a transaction-scoped advisory lock."""
    await repository.lock_doctor_day(doctor["id"], DAY)

    held = await db_session.execute(
        text(
            "SELECT count(*) FROM pg_locks "
            "WHERE locktype = 'advisory' AND pid = pg_backend_pid()"
        )
    )
    assert held.scalar_one() == 1

    await repository.rollback()
    released = await db_session.execute(
        text(
            "SELECT count(*) FROM pg_locks "
            "WHERE locktype = 'advisory' AND pid = pg_backend_pid()"
        )
    )
    assert released.scalar_one() == 0


@pytest.mark.asyncio
async def test_stats(repository, doctor, patient):
    """Test per-status counts, today's count and average duration."""
    await repository.insert(slot(doctor, patient, "09:00", start_minute=540, duration=30))
    cancelled = await repository.insert(slot(doctor, patient, "10:00", duration=60))
    await repository.update(cancelled, cancellation(patient["id"]))
    await repository.commit()

    stats = await repository.stats(doctor["id"], DAY)
    assert stats == {
        "total": 2,
        "today": 2,
        "by_status": {"scheduled": 1, "cancelled": 1},
        "average_duration": 45.0,
    }

    other = await repository.stats(uuid4(), DAY)
    assert other == {"total": 0, "today": 0, "by_status": {}, "average_duration": None}
