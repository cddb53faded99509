"""
Doctor workspace routes.

Endpoints:
    GET  /doctor/dashboard                          — Today, upcoming, recent patients, stats (doctor)
    GET  /doctor/patient/{id}                       — Patient overview (doctor, nurse, admin)
    GET  /doctor/patient/{id}/medical-history       — Documents and visit records (doctor, nurse, admin)
    POST /doctor/patient/{id}/records               — Record a visit (doctor)
    POST /doctor/prescriptions/create               — Prescribe one or more medications (doctor)
    POST /doctor/lab-orders/create                  — Order a lab test (doctor)

Doctors can only read or write the charts of patients they already have a care
relationship with (appointment, visit record, prescription or lab order). The
writes themselves require that relationship, so it always starts with a booked
appointment.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.db.types import utcnow
from medportal.models.doctor import Doctor
from medportal.models.patient import Patient
from medportal.models.user import User, UserRole
from medportal.api.deps import current_doctor, settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import dashboard_service, lab_service, patient_service, prescription_service
from medportal.services.lab_service import lab_test_to_dict
from medportal.services.patient_service import record_to_dict
from medportal.services.prescription_service import (
    Consultation,
    MedicationLine,
    VitalSigns,
    prescription_to_dict,
)
from medportal.services.schedule import to_utc

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class VitalSignsInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blood_pressure: Optional[str] = Field(None, alias="bloodPressure")
    temperature: Optional[str] = None
    pulse: Optional[str] = None
    respiratory_rate: Optional[str] = Field(None, alias="respiratoryRate")
    oxygen_saturation: Optional[str] = Field(None, alias="oxygenSaturation")
    weight: Optional[str] = None


class MedicationInput(BaseModel):
    medication_name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    frequency: str = Field(..., min_length=1)
    duration: Optional[str] = None


class PrescriptionCreateRequest(BaseModel):
    patient_id: UUID
    chief_complaint: str = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)
    medications: list[MedicationInput] = Field(..., min_length=1)
    vital_signs: Optional[VitalSignsInput] = None
    examination_findings: Optional[str] = None
    diet_instructions: Optional[str] = None
    activity_instructions: Optional[str] = None
    general_instructions: Optional[str] = None
    follow_up_date: Optional[date] = None
    follow_up_instructions: Optional[str] = None


class LabOrderCreateRequest(BaseModel):
    patient_id: UUID
    test_name: str = Field(..., min_length=1)
    test_type: str = Field(..., min_length=1)
    urgent: bool = False
    notes: Optional[str] = None


class MedicalRecordCreateRequest(BaseModel):
    diagnosis: str = Field(..., min_length=1)
    symptoms: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    visit_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _load_patient(db: AsyncSession, patient_id: UUID) -> Patient:
    patient = await patient_service.get_patient(db, patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return patient


async def _ensure_care_relationship(db: AsyncSession, doctor: Doctor, patient: Patient) -> None:
    if not await patient_service.doctor_has_relationship(db, doctor.id, patient.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No care relationship with this patient")


async def _viewable_patient(db: AsyncSession, current_user: User, patient_id: UUID) -> Patient:
    """Load a patient the caller may view; doctors are scoped to their own patients."""
    patient = await _load_patient(db, patient_id)
    if current_user.role == UserRole.DOCTOR:
        result = await db.execute(select(Doctor).where(Doctor.user_id == current_user.id))
        doctor = result.scalar_one_or_none()
        if doctor is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor record not found")
        await _ensure_care_relationship(db, doctor, patient)
    return patient


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/doctor/dashboard")
async def doctor_dashboard(
    db: AsyncSession = Depends(get_db),
    doctor: Doctor = Depends(current_doctor),
    settings: Settings = Depends(settings_dep),
):
    data = await dashboard_service.doctor_dashboard(
        db,
        doctor,
        now=utcnow(),
        tz=settings.clinic_tz,
        upcoming_limit=settings.UPCOMING_APPOINTMENTS_LIMIT,
    )
    return envelope(data)


@router.get("/doctor/patient/{patient_id}")
async def patient_overview(
    patient_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DOCTOR, UserRole.NURSE, UserRole.ADMIN)),
):
    patient = await _viewable_patient(db, current_user, patient_id)
    return envelope(await patient_service.get_patient_overview(db, patient))


@router.get("/doctor/patient/{patient_id}/medical-history")
async def patient_medical_history(
    patient_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DOCTOR, UserRole.NURSE, UserRole.ADMIN)),
):
    patient = await _viewable_patient(db, current_user, patient_id)
    return envelope({
        "documents": await patient_service.list_documents(db, patient.id),
        "medicalRecords": await patient_service.get_medical_records(db, patient.id),
    })


@router.post("/doctor/patient/{patient_id}/records", status_code=status.HTTP_201_CREATED)
async def create_medical_record(
    patient_id: UUID,
    payload: MedicalRecordCreateRequest,
    db: AsyncSession = Depends(get_db),
    doctor: Doctor = Depends(current_doctor),
    settings: Settings = Depends(settings_dep),
):
    patient = await _load_patient(db, patient_id)
    await _ensure_care_relationship(db, doctor, patient)
    record = await patient_service.create_medical_record(
        db,
        patient_id=patient.id,
        doctor_id=doctor.id,
        diagnosis=payload.diagnosis,
        symptoms=payload.symptoms,
        treatment=payload.treatment,
        notes=payload.notes,
        visit_date=to_utc(payload.visit_date, settings.clinic_tz) if payload.visit_date else None,
    )
    return envelope(record_to_dict(record), message="Medical record created", status_code=status.HTTP_201_CREATED)


@router.post("/doctor/prescriptions/create", status_code=status.HTTP_201_CREATED)
async def create_prescriptions(
    payload: PrescriptionCreateRequest,
    db: AsyncSession = Depends(get_db),
    doctor: Doctor = Depends(current_doctor),
):
    patient = await _load_patient(db, payload.patient_id)
    await _ensure_care_relationship(db, doctor, patient)

    consultation = Consultation(
        chief_complaint=payload.chief_complaint,
        diagnosis=payload.diagnosis,
        medications=[MedicationLine(**m.model_dump()) for m in payload.medications],
        vital_signs=VitalSigns(**payload.vital_signs.model_dump()) if payload.vital_signs else None,
        examination_findings=payload.examination_findings,
        diet_instructions=payload.diet_instructions,
        activity_instructions=payload.activity_instructions,
        general_instructions=payload.general_instructions,
        follow_up_date=payload.follow_up_date,
        follow_up_instructions=payload.follow_up_instructions,
    )
    prescriptions = await prescription_service.create_prescription_batch(
        db, doctor=doctor, patient=patient, consultation=consultation,
    )
    return envelope(
        {"prescriptions": [prescription_to_dict(p) for p in prescriptions]},
        message=f"{len(prescriptions)} prescription(s) created successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/doctor/lab-orders/create", status_code=status.HTTP_201_CREATED)
async def create_lab_order(
    payload: LabOrderCreateRequest,
    db: AsyncSession = Depends(get_db),
    doctor: Doctor = Depends(current_doctor),
):
    patient = await _load_patient(db, payload.patient_id)
    await _ensure_care_relationship(db, doctor, patient)
    lab_test = await lab_service.order_lab_test(
        db,
        doctor=doctor,
        patient=patient,
        test_name=payload.test_name,
        test_type=payload.test_type,
        urgent=payload.urgent,
        notes=payload.notes,
    )
    return envelope(lab_test_to_dict(lab_test), message="Lab test order created successfully", status_code=status.HTTP_201_CREATED)
