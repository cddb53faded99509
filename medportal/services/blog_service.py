"""
Blog service: public health articles managed by admins.

Visibility: admins see every post, everyone else only published ones.
``published_at`` is stamped once, on the first transition to published.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.types import utcnow
from medportal.db.updates import apply_partial_update
from medportal.models.blog import Blog, BlogStatus

logger = logging.getLogger(__name__)


class SlugConflictError(Exception):
    pass


def blog_to_dict(blog: Blog) -> dict[str, Any]:
    return {
        "id": str(blog.id),
        "author_id": str(blog.author_id) if blog.author_id else None,
        "title": blog.title,
        "slug": blog.slug,
        "excerpt": blog.excerpt,
        "content": blog.content,
        "category": blog.category,
        "tags": blog.tags or [],
        "featured_image": blog.featured_image,
        "status": blog.status.value,
        "published_at": blog.published_at,
        "created_at": blog.created_at,
        "updated_at": blog.updated_at,
    }


def _parse_id(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


async def _slug_taken(db: AsyncSession, slug: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    stmt = select(Blog.id).where(Blog.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(Blog.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def list_blogs(db: AsyncSession, include_drafts: bool) -> list[dict[str, Any]]:
    stmt = select(Blog)
    if include_drafts:
        stmt = stmt.order_by(Blog.created_at.desc())
    else:
        stmt = stmt.where(Blog.status == BlogStatus.PUBLISHED).order_by(Blog.published_at.desc())
    result = await db.execute(stmt)
    return [blog_to_dict(b) for b in result.scalars().all()]


async def get_blog(db: AsyncSession, id_or_slug: str, include_drafts: bool) -> Optional[Blog]:
    blog_id = _parse_id(id_or_slug)
    stmt = select(Blog).where(Blog.id == blog_id) if blog_id else select(Blog).where(Blog.slug == id_or_slug)
    if not include_drafts:
        stmt = stmt.where(Blog.status == BlogStatus.PUBLISHED)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_blog(db: AsyncSession, author_id: uuid.UUID, fields: dict[str, Any]) -> Blog:
    if await _slug_taken(db, fields["slug"]):
        raise SlugConflictError("Slug already exists")

    blog = Blog(author_id=author_id, **fields)
    if blog.status is None:
        blog.status = BlogStatus.DRAFT
    if blog.status == BlogStatus.PUBLISHED:
        blog.published_at = utcnow()
    try:
        async with db.begin_nested():
            db.add(blog)
            await db.flush()
    except IntegrityError:
        # Lost a race against a concurrent insert of the same slug
        raise SlugConflictError("Slug already exists")
    logger.info("Blog %s created (%s)", blog.id, blog.status.value)
    return blog


async def update_blog(db: AsyncSession, blog_id: uuid.UUID, fields: dict[str, Any]) -> Optional[Blog]:
    current = await db.get(Blog, blog_id)
    if current is None:
        return None

    values = dict(fields)
    if "slug" in values and await _slug_taken(db, values["slug"], exclude_id=blog_id):
        raise SlugConflictError("Slug already exists")
    if values.get("status") == BlogStatus.PUBLISHED and current.status != BlogStatus.PUBLISHED:
        values["published_at"] = utcnow()

    try:
        async with db.begin_nested():
            blog = await apply_partial_update(db, Blog, blog_id, values)
    except IntegrityError:
        raise SlugConflictError("Slug already exists")
    logger.info("Blog %s updated: %s", blog_id, sorted(values))
    return blog


async def delete_blog(db: AsyncSession, blog_id: uuid.UUID) -> bool:
    blog = await db.get(Blog, blog_id)
    if blog is None:
        return False
    await db.delete(blog)
    await db.flush()
    logger.info("Blog %s deleted", blog_id)
    return True
