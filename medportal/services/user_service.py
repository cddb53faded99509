"""
User accounts: registration, credential checks, and shared serialisers.

All public functions accept an ``AsyncSession`` so the caller (route layer)
controls the transaction boundary.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.api.middleware.auth import hash_password, verify_password
from medportal.db.types import utcnow
from medportal.models.user import User, UserProfile, UserRole, UserStatus, Gender, STAFF_ROLES
from medportal.models.patient import Patient
from medportal.models.doctor import Doctor
from medportal.models.appointment import Appointment

logger = logging.getLogger(__name__)

DEFAULT_SPECIALIZATION = "General Practice"
DEFAULT_DEPARTMENT = "Medical"


class UserExistsError(Exception):
    pass


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------

def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "status": user.status.value,
        "email_verified": bool(user.email_verified),
        "last_login": user.last_login,
        "created_at": user.created_at,
    }


def profile_to_dict(profile: Optional[UserProfile]) -> Optional[dict[str, Any]]:
    if profile is None:
        return None
    return {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "phone": profile.phone,
        "date_of_birth": profile.date_of_birth,
        "gender": profile.gender.value if profile.gender else None,
        "address": profile.address,
        "emergency_contact": profile.emergency_contact,
    }


def full_name(profile: Optional[UserProfile]) -> Optional[str]:
    if profile is None:
        return None
    return f"{profile.first_name} {profile.last_name}".strip()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Optional[UserProfile]:
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    return result.scalar_one_or_none()


async def get_user_with_profile(db: AsyncSession, user: User) -> dict[str, Any]:
    data = user_to_dict(user)
    data["profile"] = profile_to_dict(await get_profile(db, user.id))
    return data


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------

def _medical_record_number() -> str:
    return f"MRN-{utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _license_number() -> str:
    return f"MD-{uuid.uuid4().hex[:10].upper()}"


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: UserRole,
    phone: Optional[str] = None,
    date_of_birth: Optional[date] = None,
    gender: Optional[Gender] = None,
    address: Optional[str] = None,
) -> tuple[User, UserProfile]:
    """Create the account, its profile, and the patient/doctor row for those roles.

    Everything is flushed in the caller's transaction: a failure on any row
    leaves nothing behind.
    """
    user = User(
        email=email.lower(),
        password_hash=hash_password(password),
        role=role,
        status=UserStatus.ACTIVE,
    )
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError:
        # Email taken by a concurrent registration
        raise UserExistsError("User already exists")

    profile = UserProfile(
        user_id=user.id,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        date_of_birth=date_of_birth,
        gender=gender,
        address=address,
    )
    db.add(profile)

    if role == UserRole.PATIENT:
        db.add(Patient(user_id=user.id, medical_record_number=_medical_record_number(), allergies=[], chronic_conditions=[]))
    elif role == UserRole.DOCTOR:
        db.add(Doctor(
            user_id=user.id,
            specialization=DEFAULT_SPECIALIZATION,
            department=DEFAULT_DEPARTMENT,
            license_number=_license_number(),
        ))

    await db.flush()
    logger.info("Registered %s user %s", role.value, user.id)
    return user, profile


async def authenticate(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """Return the active user for these credentials, else ``None``."""
    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login = utcnow()
    await db.flush()
    return user


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

async def set_user_status(db: AsyncSession, user_id: uuid.UUID, new_status: UserStatus) -> Optional[User]:
    user = await db.get(User, user_id)
    if user is None:
        return None
    user.status = new_status
    await db.flush()
    logger.info("User %s status set to %s", user_id, new_status.value)
    return user


async def admin_overview(db: AsyncSession, day_start: datetime, day_end: datetime) -> dict[str, Any]:
    total_users = await db.scalar(select(func.count(User.id)).where(User.status == UserStatus.ACTIVE))
    total_patients = await db.scalar(select(func.count(Patient.id)))
    total_staff = await db.scalar(
        select(func.count(User.id)).where(User.role.in_(STAFF_ROLES), User.status == UserStatus.ACTIVE)
    )
    today_appointments = await db.scalar(
        select(func.count(Appointment.id)).where(
            Appointment.appointment_date >= day_start,
            Appointment.appointment_date < day_end,
        )
    )

    week_ago = utcnow() - timedelta(days=7)
    recent_rows = await db.execute(
        select(User, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_id == User.id)
        .where(User.created_at >= week_ago, User.status == UserStatus.ACTIVE)
        .order_by(User.created_at.desc())
        .limit(10)
    )
    all_rows = await db.execute(
        select(User, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_id == User.id)
        .order_by(User.created_at.desc())
        .limit(50)
    )
    staff_rows = await db.execute(
        select(User, UserProfile, Doctor)
        .outerjoin(UserProfile, UserProfile.user_id == User.id)
        .outerjoin(Doctor, Doctor.user_id == User.id)
        .where(User.role.in_(STAFF_ROLES), User.status == UserStatus.ACTIVE)
        .order_by(User.created_at.desc())
    )

    def _row(user: User, profile: Optional[UserProfile]) -> dict[str, Any]:
        data = user_to_dict(user)
        data.update(
            first_name=profile.first_name if profile else None,
            last_name=profile.last_name if profile else None,
            phone=profile.phone if profile else None,
        )
        return data

    all_staff = []
    for user, profile, doctor in staff_rows.all():
        entry = _row(user, profile)
        if doctor is not None:
            entry.update(
                doctor_id=str(doctor.id),
                specialization=doctor.specialization,
                department=doctor.department,
                license_number=doctor.license_number,
            )
        all_staff.append(entry)

    return {
        "stats": {
            "totalUsers": total_users or 0,
            "totalPatients": total_patients or 0,
            "totalStaff": total_staff or 0,
            "todayAppointments": today_appointments or 0,
        },
        "recentUsers": [_row(u, p) for u, p in recent_rows.all()],
        "allUsers": [_row(u, p) for u, p in all_rows.all()],
        "allStaff": all_staff,
    }
