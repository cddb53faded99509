"""
Pharmacy service: medication catalog, stock batches and the dispensing queue.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import select, func, cast, Float
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from medportal.db.updates import apply_partial_update
from medportal.models.doctor import Doctor
from medportal.models.patient import Patient
from medportal.models.pharmacy import Medication, Inventory
from medportal.models.prescription import Prescription, PrescriptionStatus
from medportal.models.user import UserProfile
from medportal.services.prescription_service import prescription_to_dict
from medportal.services.schedule import DayWindow

logger = logging.getLogger(__name__)

DASHBOARD_LIMIT = 10


def medication_to_dict(m: Medication) -> dict[str, Any]:
    return {
        "id": str(m.id),
        "name": m.name,
        "generic_name": m.generic_name,
        "category": m.category,
        "description": m.description,
        "dosage_form": m.dosage_form,
        "strength": m.strength,
        "unit_price": m.unit_price,
        "requires_prescription": m.requires_prescription,
    }


def inventory_to_dict(item: Inventory, medication: Optional[Medication] = None) -> dict[str, Any]:
    data = {
        "id": str(item.id),
        "medication_id": str(item.medication_id),
        "batch_number": item.batch_number,
        "quantity_available": item.quantity_available,
        "minimum_stock_level": item.minimum_stock_level,
        "expiry_date": item.expiry_date,
        "supplier": item.supplier,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }
    if medication is not None:
        data.update(
            medication_name=medication.name,
            generic_name=medication.generic_name,
            category=medication.category,
            dosage_form=medication.dosage_form,
            strength=medication.strength,
            unit_price=medication.unit_price,
        )
    return data


def _is_low_stock():
    return Inventory.quantity_available <= Inventory.minimum_stock_level


def _is_expiring(today: date, warning_days: int):
    return Inventory.expiry_date.between(today, today + timedelta(days=warning_days))


# ---------------------------------------------------------------------------
# Catalog and stock
# ---------------------------------------------------------------------------

async def list_medications(db: AsyncSession) -> list[dict[str, Any]]:
    result = await db.execute(select(Medication).order_by(Medication.name))
    return [medication_to_dict(m) for m in result.scalars().all()]


async def list_inventory(db: AsyncSession) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Inventory, Medication)
        .join(Medication, Medication.id == Inventory.medication_id)
        .order_by(Medication.name, Inventory.expiry_date)
    )
    return [inventory_to_dict(i, m) for i, m in result.all()]


async def get_inventory_item(db: AsyncSession, item_id: uuid.UUID) -> Optional[dict[str, Any]]:
    result = await db.execute(
        select(Inventory, Medication)
        .join(Medication, Medication.id == Inventory.medication_id)
        .where(Inventory.id == item_id)
    )
    row = result.first()
    if row is None:
        return None
    return inventory_to_dict(*row)


async def add_inventory(
    db: AsyncSession,
    *,
    medication_id: uuid.UUID,
    quantity_available: int,
    minimum_stock_level: int,
    expiry_date: Optional[date] = None,
    batch_number: Optional[str] = None,
    supplier: Optional[str] = None,
) -> Optional[Inventory]:
    """Add a stock batch; ``None`` when the medication is not in the catalog."""
    medication = await db.get(Medication, medication_id)
    if medication is None:
        return None

    item = Inventory(
        medication_id=medication_id,
        quantity_available=quantity_available,
        minimum_stock_level=minimum_stock_level,
        expiry_date=expiry_date,
        batch_number=batch_number,
        supplier=supplier,
    )
    db.add(item)
    await db.flush()
    logger.info("Inventory batch %s added for %s (qty %d)", item.id, medication.name, quantity_available)
    return item


async def update_inventory(db: AsyncSession, item_id: uuid.UUID, fields: dict[str, Any]) -> Optional[Inventory]:
    item = await apply_partial_update(db, Inventory, item_id, fields)
    if item is not None:
        logger.info("Inventory batch %s updated: %s", item_id, sorted(fields))
    return item


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

async def pharmacy_dashboard(db: AsyncSession, today: DayWindow, local_today: date, warning_days: int) -> dict[str, Any]:
    patient_profile = aliased(UserProfile)
    doctor_profile = aliased(UserProfile)

    pending = await db.execute(
        select(Prescription, Medication, Patient, patient_profile, doctor_profile)
        .outerjoin(Medication, Medication.id == Prescription.medication_id)
        .join(Patient, Patient.id == Prescription.patient_id)
        .outerjoin(patient_profile, patient_profile.user_id == Patient.user_id)
        .join(Doctor, Doctor.id == Prescription.doctor_id)
        .outerjoin(doctor_profile, doctor_profile.user_id == Doctor.user_id)
        .where(Prescription.status == PrescriptionStatus.PENDING)
        .order_by(Prescription.created_at.desc())
        .limit(DASHBOARD_LIMIT)
    )
    pending_rows = []
    for prescription, medication, patient, p_profile, d_profile in pending.all():
        entry = prescription_to_dict(prescription)
        entry.update(
            medication_name=medication.name if medication else None,
            medical_record_number=patient.medical_record_number,
            patient_first_name=p_profile.first_name if p_profile else None,
            patient_last_name=p_profile.last_name if p_profile else None,
            doctor_first_name=d_profile.first_name if d_profile else None,
            doctor_last_name=d_profile.last_name if d_profile else None,
        )
        pending_rows.append(entry)

    # Lowest stock-to-minimum ratio first
    stock_ratio = cast(Inventory.quantity_available, Float) / func.nullif(Inventory.minimum_stock_level, 0)
    low_stock = await db.execute(
        select(Inventory, Medication)
        .join(Medication, Medication.id == Inventory.medication_id)
        .where(_is_low_stock())
        .order_by(stock_ratio)
        .limit(DASHBOARD_LIMIT)
    )
    expiring = await db.execute(
        select(Inventory, Medication)
        .join(Medication, Medication.id == Inventory.medication_id)
        .where(_is_expiring(local_today, warning_days))
        .order_by(Inventory.expiry_date)
        .limit(DASHBOARD_LIMIT)
    )
    recent = await db.execute(
        select(Inventory, Medication)
        .join(Medication, Medication.id == Inventory.medication_id)
        .order_by(Inventory.updated_at.desc())
        .limit(DASHBOARD_LIMIT)
    )

    pending_count = await db.scalar(
        select(func.count(Prescription.id)).where(Prescription.status == PrescriptionStatus.PENDING)
    )
    low_stock_count = await db.scalar(select(func.count(Inventory.id)).where(_is_low_stock()))
    expiring_count = await db.scalar(
        select(func.count(Inventory.id)).where(_is_expiring(local_today, warning_days))
    )
    filled_today = await db.scalar(
        select(func.count(Prescription.id)).where(
            Prescription.status == PrescriptionStatus.FILLED,
            Prescription.filled_at >= today.start,
            Prescription.filled_at < today.end,
        )
    )

    return {
        "pendingPrescriptions": pending_rows,
        "lowStockItems": [inventory_to_dict(i, m) for i, m in low_stock.all()],
        "expiringItems": [inventory_to_dict(i, m) for i, m in expiring.all()],
        "recentInventory": [inventory_to_dict(i, m) for i, m in recent.all()],
        "stats": {
            "pendingPrescriptions": pending_count or 0,
            "lowStockCount": low_stock_count or 0,
            "expiringCount": expiring_count or 0,
            "filledToday": filled_today or 0,
        },
    }
