"""Queue endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from healthqueue.core.exceptions import ValidationException
from healthqueue.dependencies import CurrentPrincipal, QueueServiceDep, require_roles
from healthqueue.schemas.auth import Principal, UserRole
from healthqueue.schemas.queue import (
    DoctorQueueResponse,
    DoctorQueueStatsResponse,
    PatientQueueStatusResponse,
    QueueEntryAction,
    QueueEntryResponse,
    QueueHistoryResponse,
    QueueJoinRequest,
    QueueStatusUpdate,
)

router = APIRouter()

PatientOrAdmin = Annotated[Principal, Depends(require_roles(UserRole.PATIENT, UserRole.ADMIN))]
DoctorOrAdmin = Annotated[Principal, Depends(require_roles(UserRole.DOCTOR, UserRole.ADMIN))]


@router.post(
    "/join",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Join a doctor's queue",
)
async def join_queue(
    data: QueueJoinRequest,
    principal: PatientOrAdmin,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """
    Join a doctor's queue as the authenticated patient.

    Admins may join on behalf of a patient by passing ``patient_id``.

    Args:
        data: Doctor, priority and symptom notes
        principal: Authenticated patient or admin
        service: Queue service

    Returns:
        Created waiting entry with position and ETA
    """
    patient_id = data.patient_id
    if patient_id is None:
        if not principal.has_role(UserRole.PATIENT):
            raise ValidationException("patient_id is required")
        try:
            patient_id = UUID(principal.identity)
        except ValueError:
            raise ValidationException("Caller identity is not a patient ID")

    return await service.join(
        data.doctor_id,
        patient_id,
        priority=data.priority,
        notes=data.notes,
        actor=principal,
    )


@router.post(
    "/leave",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Leave a queue",
)
async def leave_queue(
    data: QueueEntryAction,
    principal: PatientOrAdmin,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """Leave a queue the patient is waiting in."""
    return await service.leave(data.entry_id, actor=principal)


@router.post(
    "/start-consultation",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Call a waiting patient in",
)
async def start_consultation(
    data: QueueEntryAction,
    principal: DoctorOrAdmin,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """
    Start the consultation of a waiting entry.

    Args:
        data: Entry to start
        principal: Treating doctor or admin
        service: Queue service

    Returns:
        Entry in consultation
    """
    return await service.start_consultation(data.entry_id, actor=principal)


@router.post(
    "/complete-consultation",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete the running consultation",
)
async def complete_consultation(
    data: QueueEntryAction,
    principal: DoctorOrAdmin,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """Complete the consultation of an entry in consultation."""
    return await service.complete_consultation(data.entry_id, actor=principal)


@router.post(
    "/{entry_id}/status",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Update entry status",
)
async def update_entry_status(
    entry_id: UUID,
    data: QueueStatusUpdate,
    principal: DoctorOrAdmin,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """
    Update an entry's status directly.

    Only ``skipped`` (no-show) is accepted; other transitions have their own
    endpoints.

    Args:
        entry_id: Queue entry ID
        data: Target status
        principal: Treating doctor or admin
        service: Queue service

    Returns:
        Updated entry
    """
    return await service.set_status(entry_id, data.status, actor=principal)


@router.get(
    "/doctor/{doctor_id}",
    response_model=DoctorQueueResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a doctor's live queue",
)
async def get_doctor_queue(
    doctor_id: UUID,
    principal: CurrentPrincipal,
    service: QueueServiceDep,
) -> DoctorQueueResponse:
    """Get the in-consultation entry and waiting entries by position."""
    return await service.get_queue_for_doctor(doctor_id, actor=principal)


@router.get(
    "/doctor/{doctor_id}/stats",
    response_model=DoctorQueueStatsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get today's queue statistics",
)
async def get_doctor_stats(
    doctor_id: UUID,
    principal: CurrentPrincipal,
    service: QueueServiceDep,
) -> DoctorQueueStatsResponse:
    """Get today's counts, average wait and average consultation time."""
    return await service.get_doctor_stats(doctor_id, actor=principal)


@router.get(
    "/patients/{patient_id}/status",
    response_model=PatientQueueStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a patient's queue status",
)
async def get_patient_status(
    patient_id: UUID,
    principal: CurrentPrincipal,
    service: QueueServiceDep,
) -> PatientQueueStatusResponse:
    """Get the patient's active entry, if any."""
    return await service.get_status_for_patient(patient_id, actor=principal)


@router.get(
    "/patients/{patient_id}/history",
    response_model=QueueHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a patient's queue history",
)
async def get_patient_history(
    patient_id: UUID,
    principal: CurrentPrincipal,
    service: QueueServiceDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> QueueHistoryResponse:
    """
    List the patient's finished entries, newest first.

    Args:
        patient_id: Patient ID
        principal: The patient or an admin
        service: Queue service
        page: Page number
        page_size: Items per page

    Returns:
        Paginated history
    """
    return await service.get_patient_history(
        patient_id,
        page=page,
        page_size=page_size,
        actor=principal,
    )
