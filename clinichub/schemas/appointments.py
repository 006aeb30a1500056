"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, model_validator

from clinichub.schemas.users import DoctorInfo, PatientInfo


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment."""

    doctor_id: UUID
    patient_id: UUID | None = Field(
        None,
        description="Patient to book for (admins only; patients book for themselves)",
    )
    appointment_date: date
    appointment_time: str = Field(
        ...,
        min_length=1,
        max_length=16,
        description="Local clinic time, 'HH:MM' or 'H:MM AM/PM'",
    )
    duration: int | None = Field(None, gt=0, le=1440, description="Duration in minutes")
    reason: str = Field(..., min_length=1, max_length=500)


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment."""

    status: AppointmentStatus | None = None
    appointment_date: date | None = None
    appointment_time: str | None = Field(None, min_length=1, max_length=16)
    notes: str | None = Field(None, max_length=2000)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    cancel_reason: str | None = Field(
        None,
        max_length=500,
        validation_alias=AliasChoices("cancel_reason", "cancelReason"),
    )


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    appointment_time: str
    duration: int
    status: AppointmentStatus
    reason: str
    notes: str | None = None
    cancel_reason: str | None = None
    cancelled_by: UUID | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    patient: PatientInfo | None = None
    doctor: DoctorInfo | None = None

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for appointment list response."""

    count: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def validate_date_range(self) -> "AppointmentFilters":
        """Validate start date is not after end date."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class AppointmentStats(BaseModel):
    """Aggregated appointment numbers for dashboards."""

    total: int
    today: int
    by_status: dict[str, int]
    average_duration: int
    completion_rate: float
