"""
Notification routes (any signed-in user, own notifications only).

Endpoints:
    GET /notifications   — Latest 50 notifications and the unread count
    PUT /notifications   — Mark one (notificationId) or all (markAllAsRead) as read
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.postgres import get_db
from medportal.models.user import User
from medportal.api.middleware.auth import get_current_user
from medportal.api.responses import envelope
from medportal.services import notification_service

router = APIRouter()


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notification_id: Optional[UUID] = Field(None, alias="notificationId")
    mark_all_as_read: bool = Field(False, alias="markAllAsRead")


@router.get("/notifications")
async def list_notifications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return envelope(await notification_service.list_notifications(db, current_user.id))


@router.put("/notifications")
async def mark_notifications(
    payload: MarkReadRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.mark_all_as_read:
        count = await notification_service.mark_all_read(db, current_user.id)
        return envelope({"updated": count}, message="All notifications marked as read")

    if payload.notification_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    if not await notification_service.mark_read(db, current_user.id, payload.notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return envelope({"updated": 1}, message="Notification marked as read")
