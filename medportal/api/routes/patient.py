"""
Patient self-service routes.

Endpoints:
    GET    /patient/dashboard            — Upcoming visits, active prescriptions, records, lab tests
    GET    /patient/profile              — Profile and medical details
    PUT    /patient/profile              — Partial profile update
    GET    /patient/medical-history      — Uploaded documents
    POST   /patient/medical-history      — Upload a base64 document (max 5 MB)
    DELETE /patient/medical-history?id=  — Delete one of the patient's documents
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.db.types import utcnow
from medportal.models.patient import Patient
from medportal.models.user import User, UserRole, Gender
from medportal.api.deps import current_patient, settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import dashboard_service, patient_service
from medportal.services.patient_service import DocumentError, document_to_dict

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    blood_type: Optional[str] = None
    height_cm: Optional[float] = Field(None, gt=0)
    weight_kg: Optional[float] = Field(None, gt=0)
    allergies: Optional[list[str]] = None
    chronic_conditions: Optional[list[str]] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def name_not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v


class DocumentUploadRequest(BaseModel):
    document_type: str = Field(..., min_length=1)
    document_name: str = Field(..., min_length=1)
    document_data: str = Field(..., min_length=1)
    document_date: Optional[date] = None
    file_type: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/patient/dashboard")
async def patient_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    patient: Patient = Depends(current_patient),
    settings: Settings = Depends(settings_dep),
):
    data = await dashboard_service.patient_dashboard(db, current_user, patient, now=utcnow(), tz=settings.clinic_tz)
    return envelope(data)


@router.get("/patient/profile")
async def get_profile(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    patient: Patient = Depends(current_patient),
):
    return envelope(await patient_service.get_profile(db, current_user, patient))


@router.put("/patient/profile")
async def update_profile(
    payload: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
    patient: Patient = Depends(current_patient),
):
    update_data = payload.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    data = await patient_service.update_profile(db, current_user, patient, update_data)
    return envelope(data, message="Profile updated successfully")


@router.get("/patient/medical-history")
async def list_documents(
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(current_patient),
):
    return envelope(await patient_service.list_documents(db, patient.id))


@router.post("/patient/medical-history", status_code=status.HTTP_201_CREATED)
async def upload_document(
    payload: DocumentUploadRequest,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(current_patient),
):
    try:
        doc = await patient_service.add_document(db, patient_id=patient.id, **payload.model_dump())
    except DocumentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return envelope(
        document_to_dict(doc, include_data=False),
        message="Document uploaded successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.delete("/patient/medical-history")
async def delete_document(
    id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(current_patient),
):
    if id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Document ID is required")
    if not await patient_service.delete_document(db, patient.id, id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return envelope(message="Document deleted successfully")
