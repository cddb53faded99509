"""
Authentication, session resolution and role gate tests.

- POST /auth/register, /auth/login, /auth/logout
- GET  /auth/me
- 401 for missing/invalid/expired tokens and inactive users
- 403 for roles outside an endpoint's allow-list
"""
from datetime import timedelta

import pytest

from medportal.api.middleware.auth import create_access_token
from medportal.models.user import UserRole, UserStatus
from medportal.services import user_service


PROTECTED_ENDPOINTS = [
    ("GET", "/api/auth/me"),
    ("GET", "/api/doctor/dashboard"),
    ("GET", "/api/patient/dashboard"),
    ("GET", "/api/patient/profile"),
    ("GET", "/api/appointments"),
    ("GET", "/api/pharmacy/dashboard"),
    ("GET", "/api/pharmacy/inventory"),
    ("GET", "/api/laboratory/dashboard"),
    ("GET", "/api/notifications"),
    ("GET", "/api/admin/dashboard"),
]


class TestRegistration:
    """Tests for POST /auth/register"""

    async def test_register_creates_patient_and_session(self, client):
        """Should create the account, its patient row, and set the session cookie"""
        response = await client.post("/api/auth/register", json={
            "email": "Meera@Example.com",
            "password": "hunter22",
            "firstName": "Meera",
            "lastName": "Shah",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == "meera@example.com"
        assert body["data"]["user"]["role"] == "patient"
        assert body["data"]["user"]["profile"]["first_name"] == "Meera"
        assert "auth-token" in response.cookies

        # The cookie alone resolves the session
        me = await client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["data"]["user"]["email"] == "meera@example.com"

    async def test_register_duplicate_email_rejected(self, client, patient):
        """Should reject an email that is already registered (case-insensitive)"""
        response = await client.post("/api/auth/register", json={
            "email": patient.user.email.upper(),
            "password": "hunter22",
            "firstName": "Dup",
            "lastName": "User",
        })

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "User already exists"}

    async def test_register_concurrent_duplicate_rejected(self, client, patient, monkeypatch):
        """Should answer 400 when the unique index, not the lookup, catches the duplicate"""
        async def lookup_misses(db, email):
            return None

        monkeypatch.setattr(user_service, "get_user_by_email", lookup_misses)

        response = await client.post("/api/auth/register", json={
            "email": patient.user.email,
            "password": "hunter22",
            "firstName": "Dup",
            "lastName": "User",
        })

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "User already exists"}

    async def test_register_doctor_creates_doctor_profile(self, client):
        """Doctors get a doctor row so they can log in and use the dashboard"""
        response = await client.post("/api/auth/register", json={
            "email": "dr.rao@example.com",
            "password": "hunter22",
            "firstName": "Kiran",
            "lastName": "Rao",
            "role": "doctor",
        })
        assert response.status_code == 201

        dashboard = await client.get("/api/doctor/dashboard")
        assert dashboard.status_code == 200
        assert dashboard.json()["data"]["profile"]["specialization"] == "General Practice"

    async def test_register_super_admin_not_allowed(self, client):
        """super_admin cannot be self-registered"""
        response = await client.post("/api/auth/register", json={
            "email": "root@example.com",
            "password": "hunter22",
            "firstName": "Root",
            "lastName": "User",
            "role": "super_admin",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    async def test_register_validation_details(self, client):
        """Malformed bodies return field-level detail"""
        response = await client.post("/api/auth/register", json={
            "email": "not-an-email",
            "password": "123",
            "firstName": "",
        })

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Validation failed"
        fields = {d["field"] for d in body["details"]}
        assert {"email", "password", "firstName", "lastName"} <= fields


class TestLogin:
    """Tests for POST /auth/login and /auth/logout"""

    async def test_login_sets_cookie(self, client, doctor, password):
        response = await client.post("/api/auth/login", json={"email": doctor.user.email, "password": password})

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["user"]["id"] == str(doctor.user.id)
        assert body["data"]["user"]["last_login"] is not None
        assert "auth-token" in response.cookies

    async def test_login_wrong_password(self, client, doctor):
        response = await client.post("/api/auth/login", json={"email": doctor.user.email, "password": "wrong"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid email or password"}

    async def test_login_inactive_user_rejected(self, client, make_account, password):
        account = await make_account(UserRole.NURSE, status=UserStatus.SUSPENDED)
        response = await client.post("/api/auth/login", json={"email": account.user.email, "password": password})
        assert response.status_code == 401

    async def test_logout_clears_session(self, client, patient, password):
        login = await client.post("/api/auth/login", json={"email": patient.user.email, "password": password})
        assert login.status_code == 200
        assert (await client.get("/api/auth/me")).status_code == 200

        logout = await client.post("/api/auth/logout")
        assert logout.status_code == 200
        assert logout.json()["success"] is True

        assert (await client.get("/api/auth/me")).status_code == 401

    async def test_login_is_rate_limited(self, client):
        """The login route allows 20 attempts per minute per client"""
        payload = {"email": "nobody@example.com", "password": "whatever"}
        for _ in range(20):
            response = await client.post("/api/auth/login", json=payload)
            assert response.status_code == 401

        response = await client.post("/api/auth/login", json=payload)
        assert response.status_code == 429
        assert response.json()["success"] is False
        assert response.headers["retry-after"] == "60"


class TestSessionResolution:
    """Every protected endpoint resolves identity first"""

    @pytest.mark.parametrize("method,path", PROTECTED_ENDPOINTS)
    async def test_missing_token_is_unauthorized(self, client, method, path):
        response = await client.request(method, path)
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Not authenticated"}

    async def test_malformed_token(self, client):
        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token"

    async def test_expired_token(self, client, patient):
        token = create_access_token(
            {"sub": str(patient.user.id), "email": patient.user.email, "role": "patient"},
            expires_delta=timedelta(seconds=-5),
        )
        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_cookie_takes_precedence_over_bearer(self, client, patient, doctor):
        response = await client.get(
            "/api/auth/me",
            headers={**doctor.headers, "Cookie": f"auth-token={patient.headers['Authorization'].split()[1]}"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == str(patient.user.id)

    async def test_deactivated_user_loses_access_immediately(self, client, admin, nurse):
        """Status is re-read per request, so an existing token stops working"""
        assert (await client.get("/api/auth/me", headers=nurse.headers)).status_code == 200

        response = await client.patch(
            f"/api/admin/users/{nurse.user.id}/status", json={"status": "inactive"}, headers=admin.headers,
        )
        assert response.status_code == 200

        response = await client.get("/api/auth/me", headers=nurse.headers)
        assert response.status_code == 401
        assert response.json()["error"] == "User not found or inactive"


class TestRoleGate:
    """Authenticated users outside the allow-list get 403"""

    @pytest.mark.parametrize("role,path", [
        (UserRole.PATIENT, "/api/doctor/dashboard"),
        (UserRole.PATIENT, "/api/pharmacy/inventory"),
        (UserRole.PATIENT, "/api/laboratory/dashboard"),
        (UserRole.PATIENT, "/api/admin/dashboard"),
        (UserRole.DOCTOR, "/api/pharmacy/dashboard"),
        (UserRole.DOCTOR, "/api/patient/profile"),
        (UserRole.NURSE, "/api/doctor/dashboard"),
        (UserRole.PHARMACIST, "/api/admin/dashboard"),
        (UserRole.LAB_TECHNICIAN, "/api/pharmacy/medications"),
        (UserRole.ADMIN, "/api/laboratory/dashboard"),
    ])
    async def test_wrong_role_forbidden(self, client, make_account, role, path):
        account = await make_account(role)
        response = await client.get(path, headers=account.headers)
        assert response.status_code == 403
        assert response.json()["success"] is False

    async def test_super_admin_passes_every_gate(self, client, super_admin):
        for path in ("/api/admin/dashboard", "/api/pharmacy/inventory", "/api/laboratory/dashboard"):
            response = await client.get(path, headers=super_admin.headers)
            assert response.status_code == 200, path
