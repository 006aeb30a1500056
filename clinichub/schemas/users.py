"""User schemas shared by principals and appointment responses."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class Role(str, Enum):
    """Closed set of principal roles."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class UserInDB(BaseModel):
    """User schema as stored in database."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    role: Role
    specialization: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PatientInfo(BaseModel):
    """Patient details embedded in appointment responses."""

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None = None


class DoctorInfo(BaseModel):
    """Doctor details embedded in appointment responses."""

    id: UUID
    first_name: str
    last_name: str
    email: str
    specialization: str | None = None
