"""Per-user notifications raised as side effects of clinical events."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.types import utcnow
from medportal.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


def notification_to_dict(n: Notification) -> dict[str, Any]:
    return {
        "id": str(n.id),
        "title": n.title,
        "message": n.message,
        "type": n.type.value,
        "related_id": str(n.related_id) if n.related_id else None,
        "is_read": n.is_read,
        "read_at": n.read_at,
        "created_at": n.created_at,
    }


async def create_notification(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: NotificationType,
    related_id: Optional[uuid.UUID] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
        is_read=False,
    )
    db.add(notification)
    await db.flush()
    return notification


async def list_notifications(db: AsyncSession, user_id: uuid.UUID) -> dict[str, Any]:
    rows = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(LIST_LIMIT)
    )
    unread = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return {
        "notifications": [notification_to_dict(n) for n in rows.scalars().all()],
        "unreadCount": unread or 0,
    }


async def mark_read(db: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    """Mark one of the user's notifications read; False when it isn't theirs."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def mark_all_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    logger.debug("Marked %d notifications read for %s", result.rowcount, user_id)
    return result.rowcount
