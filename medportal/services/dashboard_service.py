"""
Role dashboards for doctors and patients.

"Today" and "upcoming" follow the clinic calendar (see ``schedule``):
today's list covers ``[window.start, window.end)``, upcoming starts at
``window.end`` (the next local midnight).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.models.appointment import Appointment, AppointmentStatus
from medportal.models.doctor import Doctor
from medportal.models.lab_test import LabTest
from medportal.models.medical_record import MedicalRecord
from medportal.models.patient import Patient
from medportal.models.prescription import Prescription, PrescriptionStatus
from medportal.models.user import User, UserProfile
from medportal.services.appointment_service import appointment_to_dict
from medportal.services.lab_service import lab_test_to_dict
from medportal.services.patient_service import patient_to_dict, record_to_dict
from medportal.services.prescription_service import prescription_to_dict
from medportal.services.schedule import clinic_day_window
from medportal.services.user_service import profile_to_dict

logger = logging.getLogger(__name__)

TODAY_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED)
UPCOMING_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
ACTIVE_PRESCRIPTION_STATUSES = (PrescriptionStatus.PENDING, PrescriptionStatus.FILLED)
RECENT_PATIENTS_LIMIT = 10
RECENT_VISIT_DAYS = 30


# ---------------------------------------------------------------------------
# Doctor
# ---------------------------------------------------------------------------

def _with_patient(appointment: Appointment, patient: Patient, profile, tz: ZoneInfo) -> dict[str, Any]:
    data = appointment_to_dict(appointment, tz)
    data.update(
        medical_record_number=patient.medical_record_number,
        patient_first_name=profile.first_name if profile else None,
        patient_last_name=profile.last_name if profile else None,
    )
    return data


def _doctor_appointments_query(doctor_id):
    return (
        select(Appointment, Patient, UserProfile)
        .join(Patient, Patient.id == Appointment.patient_id)
        .outerjoin(UserProfile, UserProfile.user_id == Patient.user_id)
        .where(Appointment.doctor_id == doctor_id)
    )


async def doctor_today_and_upcoming(
    db: AsyncSession,
    doctor_id,
    now: datetime,
    tz: ZoneInfo,
    upcoming_limit: int,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], int]:
    """Return (today, upcoming[:limit], total upcoming count)."""
    window = clinic_day_window(now, tz)

    today = await db.execute(
        _doctor_appointments_query(doctor_id)
        .where(
            Appointment.appointment_date >= window.start,
            Appointment.appointment_date < window.end,
            Appointment.status.in_(TODAY_STATUSES),
        )
        .order_by(Appointment.appointment_date.asc())
    )
    upcoming = await db.execute(
        _doctor_appointments_query(doctor_id)
        .where(
            Appointment.appointment_date >= window.end,
            Appointment.status.in_(UPCOMING_STATUSES),
        )
        .order_by(Appointment.appointment_date.asc())
        .limit(upcoming_limit)
    )
    upcoming_total = await db.scalar(
        select(func.count(Appointment.id)).where(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date >= window.end,
            Appointment.status.in_(UPCOMING_STATUSES),
        )
    )
    return (
        [_with_patient(a, p, pr, tz) for a, p, pr in today.all()],
        [_with_patient(a, p, pr, tz) for a, p, pr in upcoming.all()],
        upcoming_total or 0,
    )


async def doctor_dashboard(
    db: AsyncSession,
    doctor: Doctor,
    now: datetime,
    tz: ZoneInfo,
    upcoming_limit: int,
) -> dict[str, Any]:
    profile_row = await db.execute(select(UserProfile).where(UserProfile.user_id == doctor.user_id))
    profile = profile_to_dict(profile_row.scalar_one_or_none()) or {}
    profile.update(
        id=str(doctor.id),
        user_id=str(doctor.user_id),
        specialization=doctor.specialization,
        department=doctor.department,
        license_number=doctor.license_number,
        consultation_fee=doctor.consultation_fee,
    )

    today, upcoming, upcoming_total = await doctor_today_and_upcoming(db, doctor.id, now, tz, upcoming_limit)

    # Latest visit per patient
    latest_visit = (
        select(MedicalRecord.patient_id, func.max(MedicalRecord.visit_date).label("last_visit"))
        .where(MedicalRecord.doctor_id == doctor.id)
        .group_by(MedicalRecord.patient_id)
        .subquery()
    )
    recent = await db.execute(
        select(Patient, UserProfile, MedicalRecord)
        .join(latest_visit, latest_visit.c.patient_id == Patient.id)
        .join(
            MedicalRecord,
            (MedicalRecord.patient_id == Patient.id)
            & (MedicalRecord.doctor_id == doctor.id)
            & (MedicalRecord.visit_date == latest_visit.c.last_visit),
        )
        .outerjoin(UserProfile, UserProfile.user_id == Patient.user_id)
        .order_by(latest_visit.c.last_visit.desc())
        .limit(RECENT_PATIENTS_LIMIT)
    )
    recent_patients = []
    seen = set()
    for patient, p_profile, record in recent.all():
        if patient.id in seen:
            continue
        seen.add(patient.id)
        recent_patients.append({
            "id": str(patient.id),
            "medical_record_number": patient.medical_record_number,
            "first_name": p_profile.first_name if p_profile else None,
            "last_name": p_profile.last_name if p_profile else None,
            "gender": p_profile.gender.value if p_profile and p_profile.gender else None,
            "visit_date": record.visit_date,
            "diagnosis": record.diagnosis,
        })

    total_patients = await db.scalar(
        select(func.count(func.distinct(MedicalRecord.patient_id))).where(MedicalRecord.doctor_id == doctor.id)
    )
    recent_visits = await db.scalar(
        select(func.count(MedicalRecord.id)).where(
            MedicalRecord.doctor_id == doctor.id,
            MedicalRecord.visit_date >= now - timedelta(days=RECENT_VISIT_DAYS),
        )
    )

    return {
        "profile": profile,
        "todayAppointments": today,
        "upcomingAppointments": upcoming,
        "recentPatients": recent_patients,
        "stats": {
            "todayAppointments": len(today),
            "upcomingAppointments": upcoming_total,
            "totalPatients": total_patients or 0,
            "recentVisits": recent_visits or 0,
        },
    }


# ---------------------------------------------------------------------------
# Patient
# ---------------------------------------------------------------------------

async def patient_dashboard(db: AsyncSession, user: User, patient: Patient, now: datetime, tz: ZoneInfo) -> dict[str, Any]:
    profile_row = await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))
    profile = profile_to_dict(profile_row.scalar_one_or_none()) or {}
    profile.update(email=user.email, **patient_to_dict(patient))

    appointments = await db.execute(
        select(Appointment, Doctor, UserProfile)
        .join(Doctor, Doctor.id == Appointment.doctor_id)
        .outerjoin(UserProfile, UserProfile.user_id == Doctor.user_id)
        .where(
            Appointment.patient_id == patient.id,
            Appointment.appointment_date >= now,
            Appointment.status.in_(UPCOMING_STATUSES),
        )
        .order_by(Appointment.appointment_date.asc())
        .limit(5)
    )
    upcoming = []
    for appointment, doctor, d_profile in appointments.all():
        entry = appointment_to_dict(appointment, tz)
        entry.update(
            doctor_first_name=d_profile.first_name if d_profile else None,
            doctor_last_name=d_profile.last_name if d_profile else None,
            specialization=doctor.specialization,
        )
        upcoming.append(entry)

    prescriptions = await db.execute(
        select(Prescription)
        .where(
            Prescription.patient_id == patient.id,
            Prescription.status.in_(ACTIVE_PRESCRIPTION_STATUSES),
        )
        .order_by(Prescription.prescribed_date.desc())
        .limit(10)
    )
    records = await db.execute(
        select(MedicalRecord)
        .where(MedicalRecord.patient_id == patient.id)
        .order_by(MedicalRecord.visit_date.desc())
        .limit(5)
    )
    lab_tests = await db.execute(
        select(LabTest)
        .where(LabTest.patient_id == patient.id)
        .order_by(LabTest.ordered_date.desc())
        .limit(10)
    )

    return {
        "profile": profile,
        "upcomingAppointments": upcoming,
        "activePrescriptions": [prescription_to_dict(p) for p in prescriptions.scalars().all()],
        "recentRecords": [record_to_dict(r) for r in records.scalars().all()],
        "labTests": [lab_test_to_dict(t) for t in lab_tests.scalars().all()],
    }
