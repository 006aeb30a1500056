"""Appointment endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status

from clinichub.dependencies import (
    AppointmentServiceDep,
    ClientContext,
    CurrentPrincipal,
    enforce_booking_rate_limit,
)
from clinichub.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStats,
    AppointmentUpdate,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create new appointment",
    dependencies=[Depends(enforce_booking_rate_limit)],
)
async def create_appointment(
    data: AppointmentCreate,
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
    context: ClientContext,
) -> AppointmentResponse:
    """
    Book an appointment.

    Patients book for themselves; admins must name the patient.

    Args:
        data: Appointment creation data
        principal: Authenticated principal
        service: Appointment service
        context: Client details for the audit trail

    Returns:
        Created appointment
    """
    appointment = await service.create_appointment(principal, data, context)
    return AppointmentResponse.model_validate(appointment)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
    filters: Annotated[AppointmentFilters, Query()],
) -> AppointmentListResponse:
    """
    List appointments visible to the authenticated principal.

    Filtering by doctor_id or patient_id only applies to admins.

    Args:
        principal: Authenticated principal
        service: Appointment service
        filters: Status and date range filters

    Returns:
        Appointments ordered by date and start time
    """
    items = await service.list_appointments(principal, filters)
    return AppointmentListResponse(
        count=len(items),
        items=[AppointmentResponse.model_validate(item) for item in items],
    )


@router.get(
    "/stats",
    response_model=AppointmentStats,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Appointment statistics",
)
async def get_appointment_stats(
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
) -> AppointmentStats:
    """
    Aggregate appointment numbers for admins and doctors.

    Returns:
        Totals, per-status counts, average duration and completion rate
    """
    return AppointmentStats.model_validate(await service.get_stats(principal))


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        principal: Authenticated principal
        service: Appointment service

    Returns:
        Appointment details
    """
    appointment = await service.get_appointment(principal, appointment_id)
    return AppointmentResponse.model_validate(appointment)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
    context: ClientContext,
) -> AppointmentResponse:
    """
    Update status, date, time or notes of an appointment.

    Args:
        appointment_id: Appointment ID
        data: Update data
        principal: Authenticated principal
        service: Appointment service
        context: Client details for the audit trail

    Returns:
        Updated appointment
    """
    appointment = await service.update_appointment(principal, appointment_id, data, context)
    return AppointmentResponse.model_validate(appointment)


@router.delete(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    principal: CurrentPrincipal,
    service: AppointmentServiceDep,
    context: ClientContext,
    data: Annotated[AppointmentCancel | None, Body()] = None,
) -> AppointmentResponse:
    """
    Cancel an appointment; the record is kept with status cancelled.

    Args:
        appointment_id: Appointment ID
        principal: Authenticated principal
        service: Appointment service
        context: Client details for the audit trail
        data: Optional cancellation reason

    Returns:
        Cancelled appointment
    """
    cancel_reason = data.cancel_reason if data else None
    appointment = await service.cancel_appointment(
        principal, appointment_id, cancel_reason, context
    )
    return AppointmentResponse.model_validate(appointment)
