import enum
import uuid

from sqlalchemy import Column, String, Enum, Integer, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from medportal.db.postgres import Base
from medportal.db.types import UTCDateTime, enum_values, utcnow


class PrescriptionStatus(str, enum.Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=False, index=True)
    medication_id = Column(UUID(as_uuid=True), ForeignKey("medications.id"), nullable=True)
    dosage = Column(String, nullable=False)       # "Amoxicillin - 500mg"
    frequency = Column(String, nullable=False)
    duration_days = Column(Integer, nullable=True)
    instructions = Column(Text, nullable=True)    # compiled clinical notes
    status = Column(
        Enum(PrescriptionStatus, name="prescription_status", values_callable=enum_values),
        nullable=False,
        default=PrescriptionStatus.PENDING,
    )
    prescribed_date = Column(UTCDateTime, default=utcnow)
    filled_at = Column(UTCDateTime, nullable=True)
    filled_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
