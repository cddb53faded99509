"""
Patient service: lookups, profile updates, care-team checks, medical records
and uploaded documents.

All public functions accept an ``AsyncSession`` so the caller (route layer)
controls the transaction boundary.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select, exists, or_
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.updates import apply_partial_update
from medportal.models.appointment import Appointment
from medportal.models.lab_test import LabTest
from medportal.models.medical_record import MedicalRecord
from medportal.models.patient import Patient, PatientDocument
from medportal.models.prescription import Prescription
from medportal.models.user import User, UserProfile
from medportal.services.appointment_service import appointment_to_dict
from medportal.services.lab_service import lab_test_to_dict
from medportal.services.prescription_service import prescription_to_dict
from medportal.services.user_service import profile_to_dict

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 5 * 1024 * 1024
RECENT_LIMIT = 10

# Profile PUT fields split by the table they live on
PROFILE_FIELDS = {"first_name", "last_name", "phone", "date_of_birth", "gender", "address", "emergency_contact"}
PATIENT_FIELDS = {
    "blood_type",
    "height_cm",
    "weight_kg",
    "allergies",
    "chronic_conditions",
    "emergency_contact_name",
    "emergency_contact_phone",
    "emergency_contact_relationship",
}


class DocumentError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def patient_to_dict(patient: Patient) -> dict[str, Any]:
    return {
        "id": str(patient.id),
        "user_id": str(patient.user_id),
        "medical_record_number": patient.medical_record_number,
        "blood_type": patient.blood_type,
        "height_cm": patient.height_cm,
        "weight_kg": patient.weight_kg,
        "allergies": patient.allergies or [],
        "chronic_conditions": patient.chronic_conditions or [],
        "emergency_contact_name": patient.emergency_contact_name,
        "emergency_contact_phone": patient.emergency_contact_phone,
        "emergency_contact_relationship": patient.emergency_contact_relationship,
    }


def record_to_dict(record: MedicalRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "patient_id": str(record.patient_id),
        "doctor_id": str(record.doctor_id),
        "visit_date": record.visit_date,
        "diagnosis": record.diagnosis,
        "symptoms": record.symptoms,
        "treatment": record.treatment,
        "notes": record.notes,
        "created_at": record.created_at,
    }


def document_to_dict(doc: PatientDocument, include_data: bool = True) -> dict[str, Any]:
    data = {
        "id": str(doc.id),
        "patient_id": str(doc.patient_id),
        "document_type": doc.document_type,
        "document_name": doc.document_name,
        "document_date": doc.document_date,
        "file_type": doc.file_type,
        "notes": doc.notes,
        "uploaded_at": doc.uploaded_at,
    }
    if include_data:
        data["document_data"] = doc.document_data
    return data


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_patient(db: AsyncSession, patient_id: uuid.UUID) -> Optional[Patient]:
    return await db.get(Patient, patient_id)


async def get_patient_by_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[Patient]:
    result = await db.execute(select(Patient).where(Patient.user_id == user_id))
    return result.scalar_one_or_none()


async def doctor_has_relationship(db: AsyncSession, doctor_id: uuid.UUID, patient_id: uuid.UUID) -> bool:
    """True when the doctor has seen, treated, prescribed for or ordered tests for the patient."""
    stmt = select(
        or_(
            exists().where(Appointment.doctor_id == doctor_id, Appointment.patient_id == patient_id),
            exists().where(MedicalRecord.doctor_id == doctor_id, MedicalRecord.patient_id == patient_id),
            exists().where(Prescription.doctor_id == doctor_id, Prescription.patient_id == patient_id),
            exists().where(LabTest.ordered_by == doctor_id, LabTest.patient_id == patient_id),
        )
    )
    return bool(await db.scalar(stmt))


async def get_patient_overview(db: AsyncSession, patient: Patient) -> dict[str, Any]:
    """Patient + profile + email with the latest appointments, prescriptions and lab tests."""
    row = await db.execute(
        select(UserProfile, User.email)
        .select_from(User)
        .outerjoin(UserProfile, UserProfile.user_id == User.id)
        .where(User.id == patient.user_id)
    )
    profile, email = row.one()

    appointments = await db.execute(
        select(Appointment)
        .where(Appointment.patient_id == patient.id)
        .order_by(Appointment.appointment_date.desc())
        .limit(RECENT_LIMIT)
    )
    prescriptions = await db.execute(
        select(Prescription)
        .where(Prescription.patient_id == patient.id)
        .order_by(Prescription.prescribed_date.desc())
        .limit(RECENT_LIMIT)
    )
    lab_tests = await db.execute(
        select(LabTest)
        .where(LabTest.patient_id == patient.id)
        .order_by(LabTest.ordered_date.desc())
        .limit(RECENT_LIMIT)
    )

    data = patient_to_dict(patient)
    data["email"] = email
    data["profile"] = profile_to_dict(profile)
    return {
        "patient": data,
        "appointments": [appointment_to_dict(a) for a in appointments.scalars().all()],
        "prescriptions": [prescription_to_dict(p) for p in prescriptions.scalars().all()],
        "labTests": [lab_test_to_dict(t) for t in lab_tests.scalars().all()],
    }


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

async def get_profile(db: AsyncSession, user: User, patient: Patient) -> dict[str, Any]:
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))
    return {
        "email": user.email,
        "profile": profile_to_dict(result.scalar_one_or_none()),
        "patient": patient_to_dict(patient),
    }


async def update_profile(db: AsyncSession, user: User, patient: Patient, fields: dict[str, Any]) -> dict[str, Any]:
    """Apply a partial update spread over ``user_profiles`` and ``patients``."""
    profile_fields = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
    patient_fields = {k: v for k, v in fields.items() if k in PATIENT_FIELDS}

    if profile_fields:
        result = await db.execute(select(UserProfile.id).where(UserProfile.user_id == user.id))
        profile_id = result.scalar_one_or_none()
        if profile_id is None:
            db.add(UserProfile(user_id=user.id, **{"first_name": "", "last_name": "", **profile_fields}))
            await db.flush()
        else:
            await apply_partial_update(db, UserProfile, profile_id, profile_fields)
    if patient_fields:
        await apply_partial_update(db, Patient, patient.id, patient_fields)

    logger.info("Patient %s updated profile fields %s", patient.id, sorted(fields))
    return await get_profile(db, user, patient)


# ---------------------------------------------------------------------------
# Medical records
# ---------------------------------------------------------------------------

async def get_medical_records(db: AsyncSession, patient_id: uuid.UUID, limit: int = RECENT_LIMIT) -> list[dict[str, Any]]:
    result = await db.execute(
        select(MedicalRecord)
        .where(MedicalRecord.patient_id == patient_id)
        .order_by(MedicalRecord.visit_date.desc())
        .limit(limit)
    )
    return [record_to_dict(r) for r in result.scalars().all()]


async def create_medical_record(
    db: AsyncSession,
    *,
    patient_id: uuid.UUID,
    doctor_id: uuid.UUID,
    diagnosis: Optional[str] = None,
    symptoms: Optional[str] = None,
    treatment: Optional[str] = None,
    notes: Optional[str] = None,
    visit_date: Optional[datetime] = None,
) -> MedicalRecord:
    record = MedicalRecord(
        patient_id=patient_id,
        doctor_id=doctor_id,
        diagnosis=diagnosis,
        symptoms=symptoms,
        treatment=treatment,
        notes=notes,
    )
    if visit_date is not None:
        record.visit_date = visit_date
    db.add(record)
    await db.flush()
    logger.info("Medical record %s created for patient %s", record.id, patient_id)
    return record


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def decode_document(document_data: str) -> bytes:
    """Validate a base64 payload (optionally a ``data:`` URL) and return its bytes."""
    payload = document_data
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise DocumentError("document_data is not valid base64")
    if not raw:
        raise DocumentError("document_data is empty")
    if len(raw) > MAX_DOCUMENT_BYTES:
        raise DocumentError("Document exceeds the 5 MB limit")
    return raw


async def list_documents(db: AsyncSession, patient_id: uuid.UUID, include_data: bool = True) -> list[dict[str, Any]]:
    result = await db.execute(
        select(PatientDocument)
        .where(PatientDocument.patient_id == patient_id)
        .order_by(PatientDocument.uploaded_at.desc())
    )
    return [document_to_dict(d, include_data) for d in result.scalars().all()]


async def add_document(
    db: AsyncSession,
    *,
    patient_id: uuid.UUID,
    document_type: str,
    document_name: str,
    document_data: str,
    document_date: Optional[date] = None,
    file_type: Optional[str] = None,
    notes: Optional[str] = None,
) -> PatientDocument:
    decode_document(document_data)
    doc = PatientDocument(
        patient_id=patient_id,
        document_type=document_type,
        document_name=document_name,
        document_date=document_date,
        document_data=document_data,
        file_type=file_type,
        notes=notes,
    )
    db.add(doc)
    await db.flush()
    logger.info("Document %s uploaded for patient %s", doc.id, patient_id)
    return doc


async def delete_document(db: AsyncSession, patient_id: uuid.UUID, document_id: uuid.UUID) -> bool:
    doc = await db.get(PatientDocument, document_id)
    if doc is None or doc.patient_id != patient_id:
        return False
    await db.delete(doc)
    await db.flush()
    return True
