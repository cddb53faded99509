"""
Laboratory service: ordering tests, the technician work queue, and results.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from medportal.db.types import utcnow
from medportal.db.updates import apply_partial_update
from medportal.models.doctor import Doctor
from medportal.models.lab_test import LabTest, LabTestStatus
from medportal.models.notification import NotificationType
from medportal.models.patient import Patient
from medportal.models.user import UserProfile
from medportal.services import notification_service
from medportal.services.schedule import DayWindow

logger = logging.getLogger(__name__)

QUEUE_LIMIT = 100

# Work-queue ordering: open work first
_STATUS_RANK = case(
    (LabTest.status == LabTestStatus.ORDERED, 1),
    (LabTest.status == LabTestStatus.SAMPLE_COLLECTED, 2),
    (LabTest.status == LabTestStatus.IN_PROGRESS, 2),
    (LabTest.status == LabTestStatus.COMPLETED, 3),
    else_=4,
)

IN_PROGRESS_STATUSES = {LabTestStatus.SAMPLE_COLLECTED, LabTestStatus.IN_PROGRESS}


class LabTestStateError(Exception):
    pass


def lab_test_to_dict(t: LabTest) -> dict[str, Any]:
    return {
        "id": str(t.id),
        "patient_id": str(t.patient_id),
        "ordered_by": str(t.ordered_by),
        "test_name": t.test_name,
        "test_type": t.test_type,
        "urgent": bool(t.urgent),
        "status": t.status.value,
        "notes": t.notes,
        "results": t.results,
        "ordered_date": t.ordered_date,
        "sample_collected_date": t.sample_collected_date,
        "completed_date": t.completed_date,
    }


async def order_lab_test(
    db: AsyncSession,
    *,
    doctor: Doctor,
    patient: Patient,
    test_name: str,
    test_type: str,
    urgent: bool = False,
    notes: Optional[str] = None,
) -> LabTest:
    lab_test = LabTest(
        patient_id=patient.id,
        ordered_by=doctor.id,
        test_name=test_name,
        test_type=test_type,
        urgent=urgent,
        notes=notes,
        status=LabTestStatus.ORDERED,
        ordered_date=utcnow(),
    )
    db.add(lab_test)
    await db.flush()

    await notification_service.create_notification(
        db,
        user_id=patient.user_id,
        title="New Lab Test Order",
        message=f"Your doctor has ordered a lab test: {test_name}. Please visit the lab for sample collection.",
        type=NotificationType.LAB_TEST,
        related_id=lab_test.id,
    )
    logger.info("Doctor %s ordered %s for patient %s", doctor.id, test_name, patient.id)
    return lab_test


async def lab_dashboard(db: AsyncSession, today: DayWindow) -> dict[str, Any]:
    patient_profile = aliased(UserProfile)
    doctor_profile = aliased(UserProfile)

    result = await db.execute(
        select(LabTest, patient_profile, doctor_profile)
        .join(Patient, Patient.id == LabTest.patient_id)
        .outerjoin(patient_profile, patient_profile.user_id == Patient.user_id)
        .join(Doctor, Doctor.id == LabTest.ordered_by)
        .outerjoin(doctor_profile, doctor_profile.user_id == Doctor.user_id)
        .order_by(_STATUS_RANK, LabTest.ordered_date.desc())
        .limit(QUEUE_LIMIT)
    )

    tests = []
    for lab_test, p_profile, d_profile in result.all():
        entry = lab_test_to_dict(lab_test)
        entry["patient_name"] = f"{p_profile.first_name} {p_profile.last_name}" if p_profile else None
        entry["doctor_name"] = f"Dr. {d_profile.first_name} {d_profile.last_name}" if d_profile else None
        tests.append(entry)

    pending = [t for t in tests if t["status"] == LabTestStatus.ORDERED.value]
    in_progress = [t for t in tests if t["status"] in {s.value for s in IN_PROGRESS_STATUSES}]
    completed = [t for t in tests if t["status"] == LabTestStatus.COMPLETED.value]
    completed_today = [t for t in completed if t["completed_date"] and today.contains(t["completed_date"])]

    return {
        "stats": {
            "pending": len(pending),
            "inProgress": len(in_progress),
            "completedToday": len(completed_today),
            "total": len(tests),
        },
        "pendingTests": pending,
        "inProgressTests": in_progress,
        "completedTests": completed,
        "allTests": tests,
    }


async def _notify_results_ready(db: AsyncSession, lab_test: LabTest) -> None:
    """Best effort: a failed notification never undoes the result update."""
    try:
        async with db.begin_nested():
            patient = await db.get(Patient, lab_test.patient_id)
            if patient is None:
                return
            await notification_service.create_notification(
                db,
                user_id=patient.user_id,
                title="Lab Test Results Ready",
                message=f"Your {lab_test.test_name} results are now available. Click to view your test results.",
                type=NotificationType.LAB_TEST,
                related_id=lab_test.id,
            )
    except SQLAlchemyError:
        logger.exception("Could not notify patient about lab test %s", lab_test.id)


async def update_lab_test(db: AsyncSession, test_id: uuid.UUID, fields: dict[str, Any]) -> Optional[LabTest]:
    """Apply a technician update.

    Completed is terminal: results and notes may still be corrected, but the
    status stays put and the completion stamp and patient notice happen once.
    """
    current = await db.get(LabTest, test_id)
    if current is None:
        return None

    values = dict(fields)
    new_status = values.get("status")
    already_completed = current.status == LabTestStatus.COMPLETED
    if already_completed and new_status not in (None, LabTestStatus.COMPLETED):
        raise LabTestStateError("Lab test is already completed")
    completing = new_status == LabTestStatus.COMPLETED and not already_completed
    if completing:
        values["completed_date"] = utcnow()

    lab_test = await apply_partial_update(db, LabTest, test_id, values)
    if lab_test is None:
        return None

    if completing:
        logger.info("Lab test %s completed", test_id)
        await _notify_results_ready(db, lab_test)
    return lab_test
