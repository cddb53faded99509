"""Route dependencies that resolve the caller's clinical identity."""

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import get_settings, Settings
from medportal.db.postgres import get_db
from medportal.models.doctor import Doctor
from medportal.models.patient import Patient
from medportal.models.user import User, UserRole
from medportal.api.middleware.auth import require_role
from medportal.services import patient_service


async def current_patient(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
) -> Patient:
    patient = await patient_service.get_patient_by_user(db, current_user.id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient record not found")
    return patient


async def current_doctor(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DOCTOR)),
) -> Doctor:
    result = await db.execute(select(Doctor).where(Doctor.user_id == current_user.id))
    doctor = result.scalar_one_or_none()
    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor record not found")
    return doctor


def settings_dep() -> Settings:
    return get_settings()
