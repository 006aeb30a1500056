"""Time-of-day parsing and appointment overlap detection.

All arithmetic is done on minutes since midnight of the appointment date.
Intervals are half-open: ``[start, end)``. An appointment ending at 10:30
and another starting at 10:30 do not overlap.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any, NamedTuple

from clinichub.core.exceptions import InvalidTimeFormat, SchedulingConflict

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(
    r"^\s*(?P<hour>[0-9]{1,2}):(?P<minute>[0-9]{2})(?:\s*(?P<meridiem>[AaPp][Mm]))?\s*$"
)


class Interval(NamedTuple):
    """Half-open occupied range in minutes since midnight."""

    start: int
    end: int

    def overlaps(self, other: "Interval") -> bool:
        """Return True when the two half-open ranges share any minute."""
        return self.start < other.end and other.start < self.end


def to_minutes(time_of_day: str) -> int:
    """
    Convert a time-of-day string to minutes since midnight.

    Accepts 24-hour ``"HH:MM"`` and 12-hour ``"H:MM AM|PM"`` forms, the
    meridiem being case-insensitive. ``12:MM AM`` is just after midnight and
    ``12:MM PM`` just after noon.

    Args:
        time_of_day: Time string as entered by the client

    Returns:
        Minutes since midnight in ``[0, 1439]``

    Raises:
        InvalidTimeFormat: If the string is malformed or out of range
    """
    if not isinstance(time_of_day, str):
        raise InvalidTimeFormat(str(time_of_day))

    match = _TIME_RE.match(time_of_day)
    if match is None:
        raise InvalidTimeFormat(time_of_day)

    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    meridiem = match.group("meridiem")

    if minute > 59:
        raise InvalidTimeFormat(time_of_day)

    if meridiem is None:
        if hour > 23:
            raise InvalidTimeFormat(time_of_day)
        return hour * 60 + minute

    if not 1 <= hour <= 12:
        raise InvalidTimeFormat(time_of_day)

    hour %= 12
    if meridiem.upper() == "PM":
        hour += 12
    return hour * 60 + minute


def interval(time_of_day: str, duration_minutes: int) -> Interval:
    """
    Compute the occupied interval of an appointment.

    The end may exceed 1440 for appointments running past midnight; no
    wrap-around is applied since overlap is evaluated per date.
    """
    if duration_minutes <= 0:
        raise ValueError("duration must be positive")
    start = to_minutes(time_of_day)
    return Interval(start, start + duration_minutes)


def has_conflict(candidate: Interval, existing: Iterable[Interval]) -> bool:
    """Return True when the candidate overlaps any of the existing intervals."""
    return any(candidate.overlaps(other) for other in existing)


def find_conflict(
    candidate: Interval,
    occupied: Iterable[Mapping[str, Any]],
) -> Mapping[str, Any] | None:
    """
    Find the first appointment whose interval overlaps the candidate.

    Args:
        candidate: Requested interval
        occupied: Appointments of the same doctor and date that still
            block the calendar; each needs ``start_minute`` and ``duration``

    Returns:
        The conflicting appointment or None
    """
    for appointment in occupied:
        start = appointment["start_minute"]
        if candidate.overlaps(Interval(start, start + appointment["duration"])):
            return appointment
    return None


def ensure_slot_available(
    candidate: Interval,
    occupied: Iterable[Mapping[str, Any]],
) -> None:
    """
    Raise if the candidate overlaps any occupied slot.

    Raises:
        SchedulingConflict: Carrying the conflicting slot's time and duration
    """
    conflict = find_conflict(candidate, occupied)
    if conflict is not None:
        raise SchedulingConflict(
            conflicting_time=conflict["appointment_time"],
            conflicting_duration=conflict["duration"],
        )
