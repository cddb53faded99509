"""
Partial-update builder.

Routes that accept PATCH-style bodies pass only the fields the client
actually supplied (``model_dump(exclude_unset=True)``). The builder turns
that mapping into a single parameterized ``UPDATE`` whose SET clause holds
exactly those columns plus an ``updated_at`` touch.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Update

from medportal.db.types import utcnow

logger = logging.getLogger(__name__)

# Never writable through a partial update
PROTECTED_COLUMNS = {"id", "created_at", "updated_at"}


def build_update(model, row_id, fields: Mapping[str, Any]) -> Update:
    columns = model.__table__.columns
    unknown = [name for name in fields if name not in columns or name in PROTECTED_COLUMNS]
    if unknown:
        raise ValueError(f"Cannot update {model.__tablename__} columns: {sorted(unknown)}")

    values = dict(fields)
    if "updated_at" in columns:
        values["updated_at"] = utcnow()

    return (
        update(model)
        .where(model.id == row_id)
        .values(**values)
        .returning(model)
        .execution_options(synchronize_session=False, populate_existing=True)
    )


async def apply_partial_update(db: AsyncSession, model, row_id, fields: Mapping[str, Any]):
    """Execute the update and return the refreshed row, or ``None`` if no row matched."""
    stmt = build_update(model, row_id, fields)
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is not None:
        logger.debug("Updated %s %s: %s", model.__tablename__, row_id, sorted(fields))
    return row
