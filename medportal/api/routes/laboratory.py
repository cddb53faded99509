"""
Laboratory routes (lab technician).

Endpoints:
    GET /laboratory/dashboard     — Work queue split by stage, with stats
    PUT /laboratory/tests/{id}    — Update status, results or notes of a test
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.db.types import utcnow
from medportal.models.lab_test import LabTestStatus
from medportal.models.user import User, UserRole
from medportal.api.deps import settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import lab_service
from medportal.services.lab_service import LabTestStateError, lab_test_to_dict
from medportal.services.schedule import clinic_day_window, to_utc

router = APIRouter()

lab_technician = require_role(UserRole.LAB_TECHNICIAN)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ResultParameter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    value: str
    unit: Optional[str] = None
    reference_range: Optional[str] = Field(None, alias="referenceRange")
    flag: Optional[Literal["normal", "high", "low", "critical"]] = None


class LabResults(BaseModel):
    parameters: list[ResultParameter] = []
    interpretation: Optional[str] = None
    comments: Optional[str] = None


class LabTestUpdateRequest(BaseModel):
    status: Optional[LabTestStatus] = None
    results: Optional[LabResults] = None
    notes: Optional[str] = None
    sample_collected_date: Optional[datetime] = None

    @field_validator("status")
    @classmethod
    def status_not_null(cls, v):
        if v is None:
            raise ValueError("status cannot be null")
        return v


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/laboratory/dashboard")
async def laboratory_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(lab_technician),
    settings: Settings = Depends(settings_dep),
):
    today = clinic_day_window(utcnow(), settings.clinic_tz)
    return envelope(await lab_service.lab_dashboard(db, today))


@router.put("/laboratory/tests/{test_id}")
async def update_lab_test(
    test_id: UUID,
    payload: LabTestUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(lab_technician),
    settings: Settings = Depends(settings_dep),
):
    update_data = payload.model_dump(exclude_unset=True, by_alias=False)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    if payload.results is not None:
        # Stored with the client-facing key names
        update_data["results"] = payload.results.model_dump(by_alias=True)
    if update_data.get("sample_collected_date") is not None:
        update_data["sample_collected_date"] = to_utc(update_data["sample_collected_date"], settings.clinic_tz)

    try:
        lab_test = await lab_service.update_lab_test(db, test_id, update_data)
    except LabTestStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if lab_test is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lab test not found")
    return envelope(lab_test_to_dict(lab_test), message="Lab test updated successfully")
