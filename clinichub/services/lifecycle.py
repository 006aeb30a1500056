"""Appointment status lifecycle."""

from clinichub.core.exceptions import AlreadyCancelled, InvalidStatusTransition
from clinichub.schemas.appointments import AppointmentStatus

INITIAL_STATUS = AppointmentStatus.SCHEDULED

TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})

# Statuses that free the slot for another booking
NON_BLOCKING_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.NO_SHOW: frozenset({AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether ``current -> target`` is a legal status change."""
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> None:
    """
    Validate a status change requested through an update.

    Setting the current status again is a no-op and always allowed.

    Raises:
        InvalidStatusTransition: If the change is not allowed
    """
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    if current == target:
        return
    if not can_transition(current, target):
        raise InvalidStatusTransition(current.value, target.value)


def ensure_cancellable(current: AppointmentStatus | str) -> None:
    """
    Validate that an appointment may be cancelled.

    Raises:
        AlreadyCancelled: If the appointment is already cancelled
        InvalidStatusTransition: If the appointment is completed
    """
    current = AppointmentStatus(current)
    if current == AppointmentStatus.CANCELLED:
        raise AlreadyCancelled()
    if not can_transition(current, AppointmentStatus.CANCELLED):
        raise InvalidStatusTransition(current.value, AppointmentStatus.CANCELLED.value)


def ensure_reschedulable(current: AppointmentStatus | str) -> None:
    """
    Validate that an appointment may move to another date or time.

    Raises:
        InvalidStatusTransition: If the appointment is cancelled or completed
    """
    current = AppointmentStatus(current)
    if current in TERMINAL_STATUSES:
        raise InvalidStatusTransition(
            current.value,
            current.value,
            message=f"Cannot reschedule a {current.value} appointment",
        )
