"""
Admin routes.

Endpoints:
    GET   /admin/dashboard            — User, staff and appointment overview
    PATCH /admin/users/{id}/status    — Activate, deactivate or suspend an account

Accounts are never deleted; access is withdrawn by changing status.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.db.types import utcnow
from medportal.models.user import User, UserRole, UserStatus
from medportal.api.deps import settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import user_service
from medportal.services.schedule import clinic_day_window

router = APIRouter()

admin_only = require_role(UserRole.ADMIN)


class UserStatusRequest(BaseModel):
    status: UserStatus


@router.get("/admin/dashboard")
async def admin_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
    settings: Settings = Depends(settings_dep),
):
    today = clinic_day_window(utcnow(), settings.clinic_tz)
    return envelope(await user_service.admin_overview(db, today.start, today.end))


@router.patch("/admin/users/{user_id}/status")
async def set_user_status(
    user_id: UUID,
    payload: UserStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own status")

    target = await db.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.role == UserRole.SUPER_ADMIN and current_user.role != UserRole.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a super admin can change this account")

    user = await user_service.set_user_status(db, user_id, payload.status)
    return envelope(user_service.user_to_dict(user), message=f"User status set to {payload.status.value}")
