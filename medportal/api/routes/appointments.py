"""
Appointment routes.

Endpoints:
    GET   /doctors/available          — Active doctors a patient can book (public)
    POST  /appointments/book          — Book an appointment (patient)
    GET   /appointments               — The patient's own appointments (patient)
    PATCH /appointments/{id}/status   — Move an appointment through its lifecycle (doctor, nurse)
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.models.appointment import Appointment, AppointmentStatus
from medportal.models.doctor import Doctor
from medportal.models.patient import Patient
from medportal.models.user import User, UserRole
from medportal.api.deps import current_patient, settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import appointment_service
from medportal.services.appointment_service import SlotConflictError, InvalidTransitionError, appointment_to_dict

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class BookAppointmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doctor_id: UUID = Field(..., alias="doctorId")
    appointment_date: datetime = Field(..., alias="appointmentDate")
    reason: str = Field(..., min_length=1)
    duration: int = Field(30, ge=5, le=240)


class AppointmentStatusRequest(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/doctors/available")
async def available_doctors(db: AsyncSession = Depends(get_db)):
    return envelope(await appointment_service.list_available_doctors(db))


@router.post("/appointments/book")
async def book_appointment(
    payload: BookAppointmentRequest,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(current_patient),
    settings: Settings = Depends(settings_dep),
):
    if await db.get(Doctor, payload.doctor_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")

    try:
        appointment = await appointment_service.book_appointment(
            db,
            patient_id=patient.id,
            doctor_id=payload.doctor_id,
            appointment_date=payload.appointment_date,
            reason=payload.reason,
            duration_minutes=payload.duration,
            tz=settings.clinic_tz,
        )
    except SlotConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    return envelope(
        {"appointment": appointment_to_dict(appointment, settings.clinic_tz)},
        message="Appointment booked successfully",
    )


@router.get("/appointments")
async def my_appointments(
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(current_patient),
    settings: Settings = Depends(settings_dep),
):
    return envelope(await appointment_service.list_patient_appointments(db, patient.id, settings.clinic_tz))


@router.patch("/appointments/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: UUID,
    payload: AppointmentStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DOCTOR, UserRole.NURSE)),
    settings: Settings = Depends(settings_dep),
):
    appointment = await db.get(Appointment, appointment_id)
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")

    if current_user.role == UserRole.DOCTOR:
        doctor = await db.get(Doctor, appointment.doctor_id)
        if doctor is None or doctor.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your appointment")

    try:
        appointment = await appointment_service.change_status(db, appointment, payload.status, payload.notes)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    return envelope(appointment_to_dict(appointment, settings.clinic_tz), message="Appointment updated")
