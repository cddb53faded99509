"""
Test configuration for the MedPortal API.

Every test gets a fresh in-memory SQLite database; the app's ``get_db``
dependency is overridden so requests run against it with the same
commit/rollback semantics as production.
"""
import itertools
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

# Settings are read once at import time
os.environ["RATE_LIMIT_REQUESTS"] = "0"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CLINIC_TIMEZONE"] = "Asia/Kolkata"
os.environ.pop("REDIS_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medportal.db.postgres import Base, get_db
from medportal.main import app
from medportal.models.appointment import Appointment
from medportal.models.doctor import Doctor
from medportal.models.patient import Patient
from medportal.models.user import User, UserRole, UserStatus
from medportal.api.middleware.auth import token_for
from medportal.api.middleware.rate_limit import _window
from medportal.services import user_service

TEST_DATABASE_URL = "sqlite+aiosqlite://"
PASSWORD = "s3cret-pass"


@dataclass
class Account:
    user: User
    patient: Optional[Patient] = None
    doctor: Optional[Doctor] = None
    headers: dict = field(default_factory=dict)


@pytest_asyncio.fixture
async def engine():
    """
    Fresh in-memory database per test.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    _window.reset()
    yield
    _window.reset()


@pytest_asyncio.fixture
async def client(session_factory):
    """
    HTTP client bound to the app with the test database.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def make_account(session_factory):
    """
    Factory that registers a user of the given role and returns it with auth headers.
    """
    counter = itertools.count(1)

    async def _make(
        role: UserRole = UserRole.PATIENT,
        *,
        first_name: str = "Test",
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> Account:
        n = next(counter)
        email = email or f"{role.value.replace('_', '-')}{n}@example.com"
        async with session_factory() as session:
            user, _ = await user_service.register_user(
                session,
                email=email,
                password=PASSWORD,
                first_name=first_name,
                last_name=last_name or f"{role.value.title()}{n}",
                role=role,
            )
            user.status = status
            await session.commit()

            patient = (await session.execute(select(Patient).where(Patient.user_id == user.id))).scalar_one_or_none()
            doctor = (await session.execute(select(Doctor).where(Doctor.user_id == user.id))).scalar_one_or_none()

        return Account(user=user, patient=patient, doctor=doctor, headers=auth_headers(user))

    return _make


@pytest_asyncio.fixture
async def patient(make_account):
    return await make_account(UserRole.PATIENT, first_name="Priya")


@pytest_asyncio.fixture
async def doctor(make_account):
    return await make_account(UserRole.DOCTOR, first_name="Arjun")


@pytest_asyncio.fixture
async def nurse(make_account):
    return await make_account(UserRole.NURSE)


@pytest_asyncio.fixture
async def pharmacist(make_account):
    return await make_account(UserRole.PHARMACIST)


@pytest_asyncio.fixture
async def lab_technician(make_account):
    return await make_account(UserRole.LAB_TECHNICIAN)


@pytest_asyncio.fixture
async def admin(make_account):
    return await make_account(UserRole.ADMIN)


@pytest_asyncio.fixture
async def super_admin(make_account):
    return await make_account(UserRole.SUPER_ADMIN)


@pytest.fixture
def link_care(session_factory):
    """
    Book a past appointment so the doctor is on the patient's care team.
    """
    async def _link(doctor: Account, patient: Account):
        async with session_factory() as session:
            session.add(Appointment(
                patient_id=patient.patient.id,
                doctor_id=doctor.doctor.id,
                appointment_date=datetime(2020, 1, 6, 4, 0, tzinfo=timezone.utc),
                reason="Initial consultation",
            ))
            await session.commit()
    return _link


@pytest_asyncio.fixture
async def under_care(link_care, doctor, patient):
    await link_care(doctor, patient)


@pytest.fixture
def password():
    return PASSWORD
