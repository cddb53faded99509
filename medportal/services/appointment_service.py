"""
Appointment service: booking, conflict detection, and status transitions.

Timestamps are stored in UTC. Callers pass the clinic timezone so naive
wall-clock input is read as clinic-local time.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.models.appointment import (
    Appointment,
    AppointmentStatus,
    SLOT_RELEASING_STATUSES,
    TERMINAL_STATUSES,
)
from medportal.models.doctor import Doctor
from medportal.models.user import User, UserProfile, UserStatus
from medportal.services.schedule import to_utc, to_clinic_time

logger = logging.getLogger(__name__)


class SlotConflictError(Exception):
    """The doctor already holds an active appointment at that instant."""


class InvalidTransitionError(Exception):
    pass


ALLOWED_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
}


def appointment_to_dict(a: Appointment, tz: Optional[ZoneInfo] = None) -> dict[str, Any]:
    data = {
        "id": str(a.id),
        "patient_id": str(a.patient_id),
        "doctor_id": str(a.doctor_id),
        "appointment_date": a.appointment_date,
        "duration_minutes": a.duration_minutes,
        "status": a.status.value,
        "reason": a.reason,
        "notes": a.notes,
        "created_at": a.created_at,
    }
    if tz is not None:
        data["appointment_date_local"] = to_clinic_time(a.appointment_date, tz)
    return data


async def list_available_doctors(db: AsyncSession) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Doctor, UserProfile, User)
        .join(User, User.id == Doctor.user_id)
        .outerjoin(UserProfile, UserProfile.user_id == Doctor.user_id)
        .where(User.status == UserStatus.ACTIVE)
        .order_by(UserProfile.first_name, UserProfile.last_name)
    )
    doctors = []
    for doctor, profile, user in result.all():
        doctors.append({
            "id": str(doctor.id),
            "user_id": str(doctor.user_id),
            "first_name": profile.first_name if profile else None,
            "last_name": profile.last_name if profile else None,
            "email": user.email,
            "specialization": doctor.specialization,
            "department": doctor.department,
            "consultation_fee": doctor.consultation_fee,
        })
    return doctors


async def has_conflict(db: AsyncSession, doctor_id: uuid.UUID, when: datetime) -> bool:
    result = await db.execute(
        select(Appointment.id).where(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == when,
            Appointment.status.not_in(SLOT_RELEASING_STATUSES),
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def book_appointment(
    db: AsyncSession,
    *,
    patient_id: uuid.UUID,
    doctor_id: uuid.UUID,
    appointment_date: datetime,
    reason: str,
    duration_minutes: int,
    tz: ZoneInfo,
) -> Appointment:
    when = to_utc(appointment_date, tz)
    if await has_conflict(db, doctor_id, when):
        raise SlotConflictError("This time slot is already booked")

    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_date=when,
        duration_minutes=duration_minutes,
        reason=reason,
        status=AppointmentStatus.SCHEDULED,
    )
    db.add(appointment)
    await db.flush()
    logger.info("Appointment %s booked: patient %s with doctor %s at %s", appointment.id, patient_id, doctor_id, when)
    return appointment


async def list_patient_appointments(db: AsyncSession, patient_id: uuid.UUID, tz: ZoneInfo) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Appointment)
        .where(Appointment.patient_id == patient_id)
        .order_by(Appointment.appointment_date.desc())
    )
    return [appointment_to_dict(a, tz) for a in result.scalars().all()]


async def change_status(db: AsyncSession, appointment: Appointment, new_status: AppointmentStatus, notes: Optional[str] = None) -> Appointment:
    if appointment.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Appointment is already {appointment.status.value}")
    if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        raise InvalidTransitionError(f"Cannot change status from {appointment.status.value} to {new_status.value}")

    appointment.status = new_status
    if notes is not None:
        appointment.notes = notes
    await db.flush()
    logger.info("Appointment %s moved to %s", appointment.id, new_status.value)
    return appointment
