import uuid

from sqlalchemy import Column, String, Integer, Float, Boolean, Date, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from medportal.db.postgres import Base
from medportal.db.types import UTCDateTime, utcnow


class Medication(Base):
    __tablename__ = "medications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    generic_name = Column(String, nullable=True)
    category = Column(String, nullable=True)
    description = Column(String, nullable=True)
    dosage_form = Column(String, nullable=True)  # tablet, syrup, injection
    strength = Column(String, nullable=True)
    unit_price = Column(Float, nullable=True)
    requires_prescription = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Inventory(Base):
    """One stock batch of a catalog medication."""

    __tablename__ = "inventory"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    medication_id = Column(UUID(as_uuid=True), ForeignKey("medications.id"), nullable=False, index=True)
    batch_number = Column(String, nullable=True)
    quantity_available = Column(Integer, nullable=False, default=0)
    minimum_stock_level = Column(Integer, nullable=False, default=10)
    expiry_date = Column(Date, nullable=True)
    supplier = Column(String, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
