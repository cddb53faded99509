"""
Blog routes.

Endpoints:
    GET    /blogs                 — Published posts (admins see drafts too)
    GET    /blogs/{id_or_slug}    — One post by id or slug
    POST   /blogs                 — Create a post (admin)
    PUT    /blogs/{id}            — Partial update (admin)
    DELETE /blogs/{id}            — Delete a post (admin)
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.postgres import get_db
from medportal.models.blog import BlogStatus
from medportal.models.user import User, UserRole
from medportal.api.middleware.auth import get_optional_user, require_role
from medportal.api.responses import envelope
from medportal.services import blog_service
from medportal.services.blog_service import SlugConflictError, blog_to_dict

router = APIRouter()

admin_only = require_role(UserRole.ADMIN)

ADMIN_ROLES = {UserRole.ADMIN, UserRole.SUPER_ADMIN}

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class BlogCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    excerpt: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    tags: list[str] = []
    featured_image: Optional[str] = Field(None, alias="featuredImage")
    status: BlogStatus = BlogStatus.DRAFT


class BlogUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1, pattern=SLUG_PATTERN)
    excerpt: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    tags: Optional[list[str]] = None
    featured_image: Optional[str] = Field(None, alias="featuredImage")
    status: Optional[BlogStatus] = None

    @field_validator("title", "slug", "excerpt", "content", "category", "status")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def _is_admin(user: Optional[User]) -> bool:
    return user is not None and user.role in ADMIN_ROLES


@router.get("/blogs")
async def list_blogs(
    db: AsyncSession = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    return envelope(await blog_service.list_blogs(db, include_drafts=_is_admin(current_user)))


@router.get("/blogs/{id_or_slug}")
async def get_blog(
    id_or_slug: str,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    blog = await blog_service.get_blog(db, id_or_slug, include_drafts=_is_admin(current_user))
    if blog is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blog not found or not published")
    return envelope(blog_to_dict(blog))


@router.post("/blogs", status_code=status.HTTP_201_CREATED)
async def create_blog(
    payload: BlogCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    try:
        blog = await blog_service.create_blog(db, current_user.id, payload.model_dump())
    except SlugConflictError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return envelope(blog_to_dict(blog), message="Blog created successfully", status_code=status.HTTP_201_CREATED)


@router.put("/blogs/{blog_id}")
async def update_blog(
    blog_id: UUID,
    payload: BlogUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    update_data = payload.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    try:
        blog = await blog_service.update_blog(db, blog_id, update_data)
    except SlugConflictError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if blog is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blog not found")
    return envelope(blog_to_dict(blog), message="Blog updated successfully")


@router.delete("/blogs/{blog_id}")
async def delete_blog(
    blog_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    if not await blog_service.delete_blog(db, blog_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blog not found")
    return envelope(message="Blog deleted successfully")
