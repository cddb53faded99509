"""
Authentication routes.

Endpoints:
    POST /auth/register  — Create an account (and its patient/doctor row) and start a session
    POST /auth/login     — Authenticate by email and password
    POST /auth/logout    — Clear the session cookie
    GET  /auth/me        — Current user with profile
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.db.postgres import get_db
from medportal.models.user import User, UserRole, Gender, REGISTRABLE_ROLES
from medportal.api.middleware.auth import get_current_user, token_for, set_auth_cookie, clear_auth_cookie
from medportal.api.middleware.rate_limit import rate_limit
from medportal.api.responses import envelope
from medportal.services import user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, alias="firstName")
    last_name: str = Field(..., min_length=1, alias="lastName")
    role: UserRole = UserRole.PATIENT
    phone: Optional[str] = Field(None, alias="phoneNumber")
    date_of_birth: Optional[date] = Field(None, alias="dateOfBirth")
    gender: Optional[Gender] = None
    address: Optional[str] = None

    @field_validator("role")
    @classmethod
    def role_is_registrable(cls, v):
        if v not in REGISTRABLE_ROLES:
            raise ValueError(f"Role {v.value} cannot be self-registered")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/auth/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    if await user_service.get_user_by_email(db, payload.email) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    try:
        user, _ = await user_service.register_user(
            db,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            role=payload.role,
            phone=payload.phone,
            date_of_birth=payload.date_of_birth,
            gender=payload.gender,
            address=payload.address,
        )
    except user_service.UserExistsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    response = envelope(
        {"user": await user_service.get_user_with_profile(db, user)},
        message="Registration successful",
        status_code=status.HTTP_201_CREATED,
    )
    set_auth_cookie(response, token_for(user))
    return response


@router.post("/auth/login", dependencies=[rate_limit(max_requests=20, window_seconds=60, key_prefix="login")])
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.authenticate(db, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    response = envelope(
        {"user": await user_service.get_user_with_profile(db, user)},
        message="Login successful",
    )
    set_auth_cookie(response, token_for(user))
    return response


@router.post("/auth/logout")
async def logout():
    response = envelope(message="Logged out successfully")
    clear_auth_cookie(response)
    return response


@router.get("/auth/me")
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return envelope({"user": await user_service.get_user_with_profile(db, current_user)})
