"""
Prescription service: clinical-note compilation, batch creation, and filling.

A doctor submits one consultation (complaint, vitals, findings, diagnosis,
advice) with several medications. Each medication becomes its own
prescription row carrying the same compiled note, and the patient gets one
notification per row. The whole batch is written under a single savepoint:
if any insert fails nothing from the batch survives.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from medportal.db.types import utcnow
from medportal.models.doctor import Doctor
from medportal.models.notification import NotificationType
from medportal.models.patient import Patient
from medportal.models.pharmacy import Medication
from medportal.models.prescription import Prescription, PrescriptionStatus
from medportal.models.user import User, UserProfile
from medportal.services import notification_service

logger = logging.getLogger(__name__)


class PrescriptionStateError(Exception):
    """Raised when a prescription cannot move to the requested state."""


# ---------------------------------------------------------------------------
# Clinical note compiler
# ---------------------------------------------------------------------------

@dataclass
class VitalSigns:
    blood_pressure: Optional[str] = None
    temperature: Optional[str] = None
    pulse: Optional[str] = None
    respiratory_rate: Optional[str] = None
    oxygen_saturation: Optional[str] = None
    weight: Optional[str] = None


@dataclass
class MedicationLine:
    medication_name: str
    dosage: str
    frequency: str
    duration: Optional[str] = None


@dataclass
class Consultation:
    chief_complaint: str
    diagnosis: str
    medications: list[MedicationLine] = field(default_factory=list)
    vital_signs: Optional[VitalSigns] = None
    examination_findings: Optional[str] = None
    diet_instructions: Optional[str] = None
    activity_instructions: Optional[str] = None
    general_instructions: Optional[str] = None
    follow_up_date: Optional[date] = None
    follow_up_instructions: Optional[str] = None


# (attribute, label, unit suffix)
_VITALS_LAYOUT = (
    ("blood_pressure", "Blood Pressure", " mmHg"),
    ("temperature", "Temperature", "°F"),
    ("pulse", "Pulse", " bpm"),
    ("respiratory_rate", "Respiratory Rate", ""),
    ("oxygen_saturation", "Oxygen Saturation", "%"),
    ("weight", "Weight", " kg"),
)


def compile_instructions(consultation: Consultation) -> str:
    """Render the consultation as the plain-text note stored on each prescription."""
    sections = [f"CHIEF COMPLAINT: {consultation.chief_complaint}"]

    vitals = consultation.vital_signs or VitalSigns()
    vital_lines = [
        f"- {label}: {getattr(vitals, attr)}{unit}"
        for attr, label, unit in _VITALS_LAYOUT
        if getattr(vitals, attr)
    ]
    sections.append("\n".join(["VITAL SIGNS:", *vital_lines]))

    if consultation.examination_findings:
        sections.append(f"EXAMINATION FINDINGS:\n{consultation.examination_findings}")
    sections.append(f"DIAGNOSIS: {consultation.diagnosis}")
    if consultation.diet_instructions:
        sections.append(f"DIET:\n{consultation.diet_instructions}")
    if consultation.activity_instructions:
        sections.append(f"ACTIVITY:\n{consultation.activity_instructions}")
    if consultation.general_instructions:
        sections.append(f"GENERAL INSTRUCTIONS:\n{consultation.general_instructions}")

    follow_up = []
    if consultation.follow_up_date:
        follow_up.append(f"FOLLOW-UP DATE: {consultation.follow_up_date.isoformat()}")
    if consultation.follow_up_instructions:
        follow_up.append(f"FOLLOW-UP INSTRUCTIONS:\n{consultation.follow_up_instructions}")
    if follow_up:
        sections.append("\n".join(follow_up))

    return "\n\n".join(sections).strip()


_FIRST_NUMBER = re.compile(r"(\d+)")


def parse_duration_days(text: Optional[str]) -> Optional[int]:
    """``"7 days"`` -> 7, ``"2 weeks"`` -> 14; ``None`` when no number is present."""
    if not text:
        return None
    match = _FIRST_NUMBER.search(text)
    if match is None:
        return None
    days = int(match.group(1))
    if "week" in text.lower():
        days *= 7
    return days


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def prescription_to_dict(p: Prescription) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "patient_id": str(p.patient_id),
        "doctor_id": str(p.doctor_id),
        "medication_id": str(p.medication_id) if p.medication_id else None,
        "dosage": p.dosage,
        "frequency": p.frequency,
        "duration_days": p.duration_days,
        "instructions": p.instructions,
        "status": p.status.value,
        "prescribed_date": p.prescribed_date,
        "filled_at": p.filled_at,
        "created_at": p.created_at,
    }


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_prescription_batch(
    db: AsyncSession,
    *,
    doctor: Doctor,
    patient: Patient,
    consultation: Consultation,
) -> list[Prescription]:
    """Insert one prescription and one patient notification per medication.

    Runs inside a savepoint; any database error rolls the whole batch back
    and propagates to the caller.
    """
    instructions = compile_instructions(consultation)
    created: list[Prescription] = []

    try:
        async with db.begin_nested():
            for line in consultation.medications:
                dosage_label = f"{line.medication_name} - {line.dosage}"
                prescription = Prescription(
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    dosage=dosage_label,
                    frequency=line.frequency,
                    duration_days=parse_duration_days(line.duration),
                    instructions=instructions,
                    status=PrescriptionStatus.PENDING,
                    prescribed_date=utcnow(),
                )
                db.add(prescription)
                await db.flush()

                await notification_service.create_notification(
                    db,
                    user_id=patient.user_id,
                    title="New Prescription",
                    message=(
                        f"Your doctor has prescribed {line.medication_name} ({line.dosage}). "
                        "Please check your prescriptions for details."
                    ),
                    type=NotificationType.PRESCRIPTION,
                    related_id=prescription.id,
                )
                created.append(prescription)
    except SQLAlchemyError:
        logger.exception(
            "Prescription batch for patient %s rolled back after %d of %d rows",
            patient.id, len(created), len(consultation.medications),
        )
        raise

    logger.info("Doctor %s prescribed %d medications to patient %s", doctor.id, len(created), patient.id)
    return created


async def get_prescription_detail(db: AsyncSession, prescription_id: uuid.UUID) -> Optional[dict[str, Any]]:
    patient_profile = aliased(UserProfile)
    doctor_profile = aliased(UserProfile)
    patient_user = aliased(User)

    result = await db.execute(
        select(Prescription, Medication, Patient, patient_profile, patient_user, Doctor, doctor_profile)
        .outerjoin(Medication, Medication.id == Prescription.medication_id)
        .join(Patient, Patient.id == Prescription.patient_id)
        .outerjoin(patient_profile, patient_profile.user_id == Patient.user_id)
        .outerjoin(patient_user, patient_user.id == Patient.user_id)
        .join(Doctor, Doctor.id == Prescription.doctor_id)
        .outerjoin(doctor_profile, doctor_profile.user_id == Doctor.user_id)
        .where(Prescription.id == prescription_id)
    )
    row = result.first()
    if row is None:
        return None

    prescription, medication, patient, p_profile, p_user, doctor, d_profile = row
    data = prescription_to_dict(prescription)
    data.update(
        medication_name=medication.name if medication else None,
        generic_name=medication.generic_name if medication else None,
        medical_record_number=patient.medical_record_number,
        patient_first_name=p_profile.first_name if p_profile else None,
        patient_last_name=p_profile.last_name if p_profile else None,
        patient_phone=p_profile.phone if p_profile else None,
        patient_email=p_user.email if p_user else None,
        allergies=patient.allergies or [],
        doctor_first_name=d_profile.first_name if d_profile else None,
        doctor_last_name=d_profile.last_name if d_profile else None,
        specialization=doctor.specialization,
    )
    return data


async def fill_prescription(db: AsyncSession, prescription_id: uuid.UUID, filled_by: uuid.UUID) -> Optional[Prescription]:
    """Move a pending prescription to filled. Stock is not touched."""
    prescription = await db.get(Prescription, prescription_id)
    if prescription is None:
        return None
    if prescription.status == PrescriptionStatus.FILLED:
        raise PrescriptionStateError("Prescription already filled")
    if prescription.status == PrescriptionStatus.CANCELLED:
        raise PrescriptionStateError("Cannot fill cancelled prescription")

    prescription.status = PrescriptionStatus.FILLED
    prescription.filled_at = utcnow()
    prescription.filled_by = filled_by
    await db.flush()
    logger.info("Prescription %s filled by %s", prescription_id, filled_by)
    return prescription
