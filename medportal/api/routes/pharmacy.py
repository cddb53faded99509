"""
Pharmacy routes (pharmacist).

Endpoints:
    GET   /pharmacy/dashboard                   — Queue, low stock, expiring batches, stats
    GET   /pharmacy/medications                 — Medication catalog
    GET   /pharmacy/inventory                   — All stock batches
    POST  /pharmacy/inventory                   — Add a stock batch
    GET   /pharmacy/inventory/{id}              — One stock batch
    PATCH /pharmacy/inventory/{id}              — Partial update of a stock batch
    GET   /pharmacy/prescriptions/{id}          — Prescription detail
    POST  /pharmacy/prescriptions/{id}/fill     — Mark a prescription filled
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import Settings
from medportal.db.postgres import get_db
from medportal.db.types import utcnow
from medportal.models.user import User, UserRole
from medportal.api.deps import settings_dep
from medportal.api.middleware.auth import require_role
from medportal.api.responses import envelope
from medportal.services import pharmacy_service, prescription_service
from medportal.services.pharmacy_service import inventory_to_dict
from medportal.services.prescription_service import PrescriptionStateError, prescription_to_dict
from medportal.services.schedule import clinic_day_window, local_date

router = APIRouter()

pharmacist = require_role(UserRole.PHARMACIST)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class InventoryCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    medication_id: UUID = Field(..., alias="medicationId")
    quantity_available: int = Field(..., gt=0, alias="quantityAvailable")
    minimum_stock_level: int = Field(..., gt=0, alias="minimumStockLevel")
    expiry_date: Optional[date] = Field(None, alias="expiryDate")
    batch_number: Optional[str] = Field(None, alias="batchNumber")
    supplier: Optional[str] = None


class InventoryUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quantity_available: Optional[int] = Field(None, ge=0, alias="quantityAvailable")
    minimum_stock_level: Optional[int] = Field(None, ge=0, alias="minimumStockLevel")
    expiry_date: Optional[date] = Field(None, alias="expiryDate")
    batch_number: Optional[str] = Field(None, alias="batchNumber")
    supplier: Optional[str] = None

    @field_validator("quantity_available", "minimum_stock_level")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("cannot be null")
        return v


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/pharmacy/dashboard")
async def pharmacy_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
    settings: Settings = Depends(settings_dep),
):
    now = utcnow()
    tz = settings.clinic_tz
    data = await pharmacy_service.pharmacy_dashboard(
        db,
        today=clinic_day_window(now, tz),
        local_today=local_date(now, tz),
        warning_days=settings.EXPIRY_WARNING_DAYS,
    )
    return envelope(data)


@router.get("/pharmacy/medications")
async def list_medications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    return envelope(await pharmacy_service.list_medications(db))


@router.get("/pharmacy/inventory")
async def list_inventory(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    return envelope(await pharmacy_service.list_inventory(db))


@router.post("/pharmacy/inventory", status_code=status.HTTP_201_CREATED)
async def add_inventory(
    payload: InventoryCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    item = await pharmacy_service.add_inventory(db, **payload.model_dump())
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medication not found")
    return envelope(inventory_to_dict(item), message="Inventory added successfully", status_code=status.HTTP_201_CREATED)


@router.get("/pharmacy/inventory/{item_id}")
async def get_inventory_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    item = await pharmacy_service.get_inventory_item(db, item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")
    return envelope(item)


@router.patch("/pharmacy/inventory/{item_id}")
async def update_inventory_item(
    item_id: UUID,
    payload: InventoryUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    update_data = payload.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    item = await pharmacy_service.update_inventory(db, item_id, update_data)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")
    return envelope(inventory_to_dict(item), message="Inventory updated successfully")


@router.get("/pharmacy/prescriptions/{prescription_id}")
async def get_prescription(
    prescription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    data = await prescription_service.get_prescription_detail(db, prescription_id)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prescription not found")
    return envelope(data)


@router.post("/pharmacy/prescriptions/{prescription_id}/fill")
async def fill_prescription(
    prescription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(pharmacist),
):
    try:
        prescription = await prescription_service.fill_prescription(db, prescription_id, current_user.id)
    except PrescriptionStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if prescription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prescription not found")
    return envelope(prescription_to_dict(prescription), message="Prescription filled successfully")
