"""Role-based authorization policy for appointment operations.

The whole policy is the ``POLICY`` table below: every (role, operation)
pair maps to exactly one rule, so the table can be checked exhaustively.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from clinichub.core.exceptions import Forbidden
from clinichub.schemas.users import Role


@dataclass(frozen=True)
class Principal:
    """Authenticated actor performing a request."""

    id: UUID
    role: Role


class Operation(str, Enum):
    """Operations guarded by the policy."""

    CREATE_FOR_SELF = "create_for_self"
    CREATE_FOR_OTHER = "create_for_other"
    READ = "read"
    UPDATE = "update"
    CANCEL = "cancel"
    VIEW_STATS = "view_stats"


class Rule(str, Enum):
    """Outcome of a policy lookup."""

    ALLOW = "allow"
    DENY = "deny"
    IF_DOCTOR = "if_doctor"  # principal is the appointment's doctor
    IF_PATIENT = "if_patient"  # principal is the appointment's patient


POLICY: dict[tuple[Role, Operation], Rule] = {
    # Admin
    (Role.ADMIN, Operation.CREATE_FOR_SELF): Rule.DENY,
    (Role.ADMIN, Operation.CREATE_FOR_OTHER): Rule.ALLOW,
    (Role.ADMIN, Operation.READ): Rule.ALLOW,
    (Role.ADMIN, Operation.UPDATE): Rule.ALLOW,
    (Role.ADMIN, Operation.CANCEL): Rule.ALLOW,
    (Role.ADMIN, Operation.VIEW_STATS): Rule.ALLOW,
    # Doctor
    (Role.DOCTOR, Operation.CREATE_FOR_SELF): Rule.DENY,
    (Role.DOCTOR, Operation.CREATE_FOR_OTHER): Rule.DENY,
    (Role.DOCTOR, Operation.READ): Rule.IF_DOCTOR,
    (Role.DOCTOR, Operation.UPDATE): Rule.IF_DOCTOR,
    (Role.DOCTOR, Operation.CANCEL): Rule.IF_DOCTOR,
    (Role.DOCTOR, Operation.VIEW_STATS): Rule.ALLOW,
    # Patient
    (Role.PATIENT, Operation.CREATE_FOR_SELF): Rule.ALLOW,
    (Role.PATIENT, Operation.CREATE_FOR_OTHER): Rule.DENY,
    (Role.PATIENT, Operation.READ): Rule.IF_PATIENT,
    (Role.PATIENT, Operation.UPDATE): Rule.DENY,
    (Role.PATIENT, Operation.CANCEL): Rule.IF_PATIENT,
    (Role.PATIENT, Operation.VIEW_STATS): Rule.DENY,
}


def can_perform(
    principal: Principal,
    operation: Operation,
    appointment: Mapping[str, Any] | None = None,
) -> bool:
    """
    Decide whether a principal may perform an operation.

    Args:
        principal: Authenticated actor
        operation: Guarded operation
        appointment: Target appointment for ownership rules; needs
            ``doctor_id`` and ``patient_id``

    Returns:
        True if allowed
    """
    rule = POLICY[(principal.role, operation)]

    if rule is Rule.ALLOW:
        return True
    if rule is Rule.DENY or appointment is None:
        return False
    if rule is Rule.IF_DOCTOR:
        return appointment["doctor_id"] == principal.id
    return appointment["patient_id"] == principal.id


def authorize(
    principal: Principal,
    operation: Operation,
    appointment: Mapping[str, Any] | None = None,
) -> None:
    """
    Enforce the policy.

    Raises:
        Forbidden: If the principal may not perform the operation
    """
    if not can_perform(principal, operation, appointment):
        raise Forbidden("Access denied")
