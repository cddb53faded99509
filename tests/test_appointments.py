"""
Appointment booking, lifecycle and doctor dashboard window tests.

- GET   /doctors/available
- POST  /appointments/book
- GET   /appointments
- PATCH /appointments/{id}/status
- GET   /doctor/dashboard (today / upcoming partition)
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from medportal.db.types import utcnow
from medportal.models.appointment import Appointment, AppointmentStatus
from medportal.models.user import UserRole, UserStatus
from medportal.services.schedule import clinic_day_window

KOLKATA = ZoneInfo("Asia/Kolkata")


async def _seed_appointment(session_factory, patient, doctor, when, status=AppointmentStatus.SCHEDULED):
    async with session_factory() as session:
        appointment = Appointment(
            patient_id=patient.patient.id,
            doctor_id=doctor.doctor.id,
            appointment_date=when,
            status=status,
            reason="Checkup",
        )
        session.add(appointment)
        await session.commit()
        return appointment


class TestAvailableDoctors:
    async def test_lists_active_doctors_only(self, client, make_account):
        active = await make_account(UserRole.DOCTOR, first_name="Anil")
        await make_account(UserRole.DOCTOR, first_name="Zoya", status=UserStatus.INACTIVE)

        response = await client.get("/api/doctors/available")

        assert response.status_code == 200
        doctors = response.json()["data"]
        assert [d["id"] for d in doctors] == [str(active.doctor.id)]
        assert doctors[0]["first_name"] == "Anil"


class TestBooking:
    """Tests for POST /appointments/book"""

    async def test_local_time_round_trip(self, client, session_factory, patient, doctor):
        """A naive clinic-local time is stored as UTC and redisplayed unchanged"""
        response = await client.post("/api/appointments/book", headers=patient.headers, json={
            "doctorId": str(doctor.doctor.id),
            "appointmentDate": "2030-05-14T10:30:00",
            "reason": "Fever",
        })

        assert response.status_code == 200
        appointment = response.json()["data"]["appointment"]
        assert appointment["status"] == "scheduled"
        assert datetime.fromisoformat(appointment["appointment_date"]) == datetime(2030, 5, 14, 5, 0, tzinfo=timezone.utc)
        local = datetime.fromisoformat(appointment["appointment_date_local"])
        assert (local.year, local.month, local.day, local.hour, local.minute) == (2030, 5, 14, 10, 30)
        assert local.utcoffset() == timedelta(hours=5, minutes=30)

        async with session_factory() as session:
            stored = await session.scalar(select(Appointment.appointment_date))
        assert stored == datetime(2030, 5, 14, 5, 0, tzinfo=timezone.utc)

        listed = await client.get("/api/appointments", headers=patient.headers)
        assert listed.status_code == 200
        assert listed.json()["data"][0]["appointment_date_local"] == appointment["appointment_date_local"]

    async def test_same_instant_conflicts(self, client, patient, doctor, make_account):
        other = await make_account(UserRole.PATIENT)
        first = await client.post("/api/appointments/book", headers=patient.headers, json={
            "doctorId": str(doctor.doctor.id),
            "appointmentDate": "2030-05-14T10:30:00",
            "reason": "Fever",
        })
        assert first.status_code == 200

        # Same instant expressed in UTC
        second = await client.post("/api/appointments/book", headers=other.headers, json={
            "doctorId": str(doctor.doctor.id),
            "appointmentDate": "2030-05-14T05:00:00Z",
            "reason": "Cough",
        })
        assert second.status_code == 409
        assert second.json() == {"success": False, "error": "This time slot is already booked"}

    async def test_cancelled_slot_can_be_rebooked(self, client, session_factory, patient, doctor):
        when = datetime(2030, 5, 14, 5, 0, tzinfo=timezone.utc)
        await _seed_appointment(session_factory, patient, doctor, when, AppointmentStatus.CANCELLED)

        response = await client.post("/api/appointments/book", headers=patient.headers, json={
            "doctorId": str(doctor.doctor.id),
            "appointmentDate": "2030-05-14T10:30:00",
            "reason": "Follow-up",
        })
        assert response.status_code == 200

    async def test_unknown_doctor(self, client, patient):
        response = await client.post("/api/appointments/book", headers=patient.headers, json={
            "doctorId": str(uuid4()),
            "appointmentDate": "2030-05-14T10:30:00",
            "reason": "Fever",
        })
        assert response.status_code == 404
        assert response.json()["error"] == "Doctor not found"

    async def test_only_patients_book(self, client, doctor):
        response = await client.post("/api/appointments/book", headers=doctor.headers, json={
            "doctorId": str(doctor.doctor.id),
            "appointmentDate": "2030-05-14T10:30:00",
            "reason": "Self",
        })
        assert response.status_code == 403


class TestStatusTransitions:
    """Tests for PATCH /appointments/{id}/status"""

    async def test_doctor_confirms_then_completes(self, client, session_factory, patient, doctor):
        appointment = await _seed_appointment(session_factory, patient, doctor, datetime(2030, 1, 1, 4, 0, tzinfo=timezone.utc))
        url = f"/api/appointments/{appointment.id}/status"

        confirmed = await client.patch(url, headers=doctor.headers, json={"status": "confirmed"})
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["status"] == "confirmed"

        completed = await client.patch(url, headers=doctor.headers, json={"status": "completed", "notes": "Recovered"})
        assert completed.status_code == 200
        assert completed.json()["data"]["notes"] == "Recovered"

    @pytest.mark.parametrize("terminal", [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ])
    async def test_terminal_statuses_are_final(self, client, session_factory, patient, doctor, terminal):
        appointment = await _seed_appointment(session_factory, patient, doctor, datetime(2030, 1, 1, 4, 0, tzinfo=timezone.utc), terminal)

        response = await client.patch(
            f"/api/appointments/{appointment.id}/status", headers=doctor.headers, json={"status": "scheduled"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == f"Appointment is already {terminal.value}"

    async def test_confirmed_cannot_go_back_to_scheduled(self, client, session_factory, patient, doctor):
        appointment = await _seed_appointment(
            session_factory, patient, doctor, datetime(2030, 1, 1, 4, 0, tzinfo=timezone.utc), AppointmentStatus.CONFIRMED,
        )
        response = await client.patch(
            f"/api/appointments/{appointment.id}/status", headers=doctor.headers, json={"status": "scheduled"},
        )
        assert response.status_code == 400

    async def test_other_doctor_forbidden(self, client, session_factory, patient, doctor, make_account):
        other = await make_account(UserRole.DOCTOR)
        appointment = await _seed_appointment(session_factory, patient, doctor, datetime(2030, 1, 1, 4, 0, tzinfo=timezone.utc))

        response = await client.patch(
            f"/api/appointments/{appointment.id}/status", headers=other.headers, json={"status": "confirmed"},
        )
        assert response.status_code == 403

    async def test_nurse_may_update_any(self, client, session_factory, patient, doctor, nurse):
        appointment = await _seed_appointment(session_factory, patient, doctor, datetime(2030, 1, 1, 4, 0, tzinfo=timezone.utc))

        response = await client.patch(
            f"/api/appointments/{appointment.id}/status", headers=nurse.headers, json={"status": "no_show"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "no_show"

    async def test_unknown_appointment(self, client, doctor):
        response = await client.patch(f"/api/appointments/{uuid4()}/status", headers=doctor.headers, json={"status": "confirmed"})
        assert response.status_code == 404


class TestDoctorDashboardWindows:
    """Today is the clinic calendar day; upcoming starts at the next local midnight"""

    async def test_today_and_upcoming_partition(self, client, session_factory, patient, doctor):
        window = clinic_day_window(utcnow(), KOLKATA)

        yesterday = await _seed_appointment(session_factory, patient, doctor, window.start - timedelta(minutes=1))
        first_today = await _seed_appointment(session_factory, patient, doctor, window.start)
        last_today = await _seed_appointment(session_factory, patient, doctor, window.end - timedelta(minutes=1))
        done_today = await _seed_appointment(
            session_factory, patient, doctor, window.start + timedelta(hours=2), AppointmentStatus.COMPLETED,
        )
        await _seed_appointment(
            session_factory, patient, doctor, window.start + timedelta(hours=3), AppointmentStatus.CANCELLED,
        )
        at_midnight = await _seed_appointment(session_factory, patient, doctor, window.end)
        next_week = await _seed_appointment(session_factory, patient, doctor, window.end + timedelta(days=7))

        response = await client.get("/api/doctor/dashboard", headers=doctor.headers)

        assert response.status_code == 200
        data = response.json()["data"]
        today_ids = [a["id"] for a in data["todayAppointments"]]
        upcoming_ids = [a["id"] for a in data["upcomingAppointments"]]

        assert today_ids == [str(first_today.id), str(done_today.id), str(last_today.id)]
        assert upcoming_ids == [str(at_midnight.id), str(next_week.id)]
        assert str(yesterday.id) not in today_ids + upcoming_ids
        assert data["stats"]["todayAppointments"] == 3
        assert data["stats"]["upcomingAppointments"] == 2
        assert data["todayAppointments"][0]["patient_first_name"] == "Priya"

    async def test_upcoming_is_capped_and_ascending(self, client, session_factory, patient, doctor):
        window = clinic_day_window(utcnow(), KOLKATA)
        for day in reversed(range(12)):
            await _seed_appointment(session_factory, patient, doctor, window.end + timedelta(days=day, hours=1))

        response = await client.get("/api/doctor/dashboard", headers=doctor.headers)

        data = response.json()["data"]
        upcoming = [datetime.fromisoformat(a["appointment_date"]) for a in data["upcomingAppointments"]]
        assert len(upcoming) == 10
        assert upcoming == sorted(upcoming)
        assert upcoming[0] == window.end + timedelta(hours=1)
        assert data["stats"]["upcomingAppointments"] == 12
