"""
Doctor workspace tests: chart access, visit records and the recent-patients list.
"""
from datetime import datetime, timezone
from uuid import uuid4


class TestChartAccess:
    async def test_doctor_without_relationship_forbidden(self, client, doctor, patient):
        for path in (f"/api/doctor/patient/{patient.patient.id}", f"/api/doctor/patient/{patient.patient.id}/medical-history"):
            response = await client.get(path, headers=doctor.headers)
            assert response.status_code == 403, path
            assert response.json()["success"] is False

    async def test_doctor_with_appointment_can_view(self, client, doctor, patient, link_care):
        await link_care(doctor, patient)

        response = await client.get(f"/api/doctor/patient/{patient.patient.id}", headers=doctor.headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["patient"]["email"] == patient.user.email
        assert data["patient"]["profile"]["first_name"] == "Priya"
        assert len(data["appointments"]) == 1
        assert data["prescriptions"] == []
        assert data["labTests"] == []

    async def test_lab_order_extends_existing_relationship(self, client, doctor, patient, under_care):
        order = await client.post("/api/doctor/lab-orders/create", headers=doctor.headers, json={
            "patient_id": str(patient.patient.id),
            "test_name": "HbA1c",
            "test_type": "blood",
        })
        assert order.status_code == 201

        response = await client.get(f"/api/doctor/patient/{patient.patient.id}", headers=doctor.headers)
        assert response.status_code == 200
        assert [t["test_name"] for t in response.json()["data"]["labTests"]] == ["HbA1c"]

    async def test_writes_cannot_grant_access(self, client, doctor, patient):
        chart = f"/api/doctor/patient/{patient.patient.id}"

        record = await client.post(f"{chart}/records", headers=doctor.headers, json={"diagnosis": "Walk-in"})
        order = await client.post("/api/doctor/lab-orders/create", headers=doctor.headers, json={
            "patient_id": str(patient.patient.id),
            "test_name": "HbA1c",
            "test_type": "blood",
        })

        assert record.status_code == 403
        assert order.status_code == 403
        assert (await client.get(f"{chart}/medical-history", headers=doctor.headers)).status_code == 403

    async def test_nurse_and_admin_see_any_chart(self, client, nurse, admin, patient):
        for account in (nurse, admin):
            response = await client.get(f"/api/doctor/patient/{patient.patient.id}", headers=account.headers)
            assert response.status_code == 200

    async def test_patient_cannot_use_doctor_view(self, client, patient):
        response = await client.get(f"/api/doctor/patient/{patient.patient.id}", headers=patient.headers)
        assert response.status_code == 403

    async def test_unknown_patient(self, client, nurse):
        response = await client.get(f"/api/doctor/patient/{uuid4()}", headers=nurse.headers)
        assert response.status_code == 404


class TestVisitRecords:
    async def test_record_visit_then_view_history(self, client, doctor, patient, under_care):
        created = await client.post(f"/api/doctor/patient/{patient.patient.id}/records", headers=doctor.headers, json={
            "diagnosis": "Seasonal allergy",
            "symptoms": "Sneezing",
            "treatment": "Antihistamines",
            "visit_date": "2030-02-10T11:00:00",
        })

        assert created.status_code == 201
        record = created.json()["data"]
        assert datetime.fromisoformat(record["visit_date"]) == datetime(2030, 2, 10, 5, 30, tzinfo=timezone.utc)

        history = await client.get(f"/api/doctor/patient/{patient.patient.id}/medical-history", headers=doctor.headers)
        assert history.status_code == 200
        assert [r["diagnosis"] for r in history.json()["data"]["medicalRecords"]] == ["Seasonal allergy"]
        assert history.json()["data"]["documents"] == []

    async def test_record_needs_a_diagnosis(self, client, doctor, patient, under_care):
        response = await client.post(f"/api/doctor/patient/{patient.patient.id}/records", headers=doctor.headers, json={})

        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "diagnosis"

    async def test_dashboard_recent_patients(self, client, doctor, patient, make_account, link_care):
        other = await make_account(first_name="Ravi")
        for account in (patient, other):
            await link_care(doctor, account)
        for account, diagnosis, visit in (
            (patient, "Flu", "2030-02-10T11:00:00"),
            (patient, "Flu follow-up", "2030-02-17T11:00:00"),
            (other, "Sprain", "2030-02-12T11:00:00"),
        ):
            response = await client.post(f"/api/doctor/patient/{account.patient.id}/records", headers=doctor.headers, json={
                "diagnosis": diagnosis,
                "visit_date": visit,
            })
            assert response.status_code == 201

        data = (await client.get("/api/doctor/dashboard", headers=doctor.headers)).json()["data"]

        recent = [(p["first_name"], p["diagnosis"]) for p in data["recentPatients"]]
        assert recent == [("Priya", "Flu follow-up"), ("Ravi", "Sprain")]
        assert data["stats"]["totalPatients"] == 2
