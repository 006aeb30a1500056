"""Tests for the role-based authorization policy."""

from uuid import uuid4

import pytest

from clinichub.core.exceptions import Forbidden
from clinichub.core.permissions import POLICY, Operation, Principal, Rule, authorize, can_perform
from clinichub.schemas.users import Role

ADMIN = Principal(id=uuid4(), role=Role.ADMIN)
DOCTOR = Principal(id=uuid4(), role=Role.DOCTOR)
PATIENT = Principal(id=uuid4(), role=Role.PATIENT)

OWN = {"doctor_id": DOCTOR.id, "patient_id": PATIENT.id}
FOREIGN = {"doctor_id": uuid4(), "patient_id": uuid4()}

# (principal, operation, appointment, allowed)
EXPECTED = [
    (ADMIN, Operation.CREATE_FOR_SELF, None, False),
    (ADMIN, Operation.CREATE_FOR_OTHER, None, True),
    (ADMIN, Operation.READ, FOREIGN, True),
    (ADMIN, Operation.UPDATE, FOREIGN, True),
    (ADMIN, Operation.CANCEL, FOREIGN, True),
    (ADMIN, Operation.VIEW_STATS, None, True),
    (DOCTOR, Operation.CREATE_FOR_SELF, None, False),
    (DOCTOR, Operation.CREATE_FOR_OTHER, None, False),
    (DOCTOR, Operation.READ, OWN, True),
    (DOCTOR, Operation.READ, FOREIGN, False),
    (DOCTOR, Operation.UPDATE, OWN, True),
    (DOCTOR, Operation.UPDATE, FOREIGN, False),
    (DOCTOR, Operation.CANCEL, OWN, True),
    (DOCTOR, Operation.CANCEL, FOREIGN, False),
    (DOCTOR, Operation.VIEW_STATS, None, True),
    (PATIENT, Operation.CREATE_FOR_SELF, None, True),
    (PATIENT, Operation.CREATE_FOR_OTHER, None, False),
    (PATIENT, Operation.READ, OWN, True),
    (PATIENT, Operation.READ, FOREIGN, False),
    (PATIENT, Operation.UPDATE, OWN, False),
    (PATIENT, Operation.UPDATE, FOREIGN, False),
    (PATIENT, Operation.CANCEL, OWN, True),
    (PATIENT, Operation.CANCEL, FOREIGN, False),
    (PATIENT, Operation.VIEW_STATS, None, False),
]


def test_policy_is_exhaustive():
    """Test that every (role, operation) pair has exactly one rule."""
    assert set(POLICY) == {(role, operation) for role in Role for operation in Operation}


@pytest.mark.parametrize(("principal", "operation", "appointment", "allowed"), EXPECTED)
def test_policy_table(principal, operation, appointment, allowed):
    """Test every role against every operation."""
    assert can_perform(principal, operation, appointment) is allowed


def test_ownership_rules_deny_without_appointment():
    """Test that ownership rules never allow without a target."""
    assert POLICY[(Role.DOCTOR, Operation.READ)] is Rule.IF_DOCTOR
    assert not can_perform(DOCTOR, Operation.READ)


def test_doctor_owning_as_patient_is_not_enough():
    """Test that a doctor listed only as patient gets no doctor rights."""
    appointment = {"doctor_id": uuid4(), "patient_id": DOCTOR.id}
    assert not can_perform(DOCTOR, Operation.CANCEL, appointment)


def test_authorize_raises_forbidden():
    """Test that denial surfaces as Forbidden."""
    with pytest.raises(Forbidden) as exc_info:
        authorize(PATIENT, Operation.UPDATE, OWN)
    assert exc_info.value.status_code == 403

    authorize(PATIENT, Operation.CANCEL, OWN)
