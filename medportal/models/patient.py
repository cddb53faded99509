import uuid

from sqlalchemy import Column, String, Float, Date, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from medportal.db.postgres import Base
from medportal.db.types import JSONType, UTCDateTime, utcnow


class Patient(Base):
    __tablename__ = "patients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    medical_record_number = Column(String, unique=True, nullable=False)

    # Physical
    blood_type = Column(String, nullable=True)
    height_cm = Column(Float, nullable=True)
    weight_kg = Column(Float, nullable=True)

    # Medical
    allergies = Column(JSONType, default=list)            # ["penicillin", "peanuts"]
    chronic_conditions = Column(JSONType, default=list)   # ["diabetes", "hypertension"]

    # Emergency contact
    emergency_contact_name = Column(String, nullable=True)
    emergency_contact_phone = Column(String, nullable=True)
    emergency_contact_relationship = Column(String, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class PatientDocument(Base):
    """Medical-history upload stored inline as base64 text."""

    __tablename__ = "patient_documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(String, nullable=False)  # lab_report, prescription, xray, ...
    document_name = Column(String, nullable=False)
    document_date = Column(Date, nullable=True)
    document_data = Column(Text, nullable=False)
    file_type = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    uploaded_at = Column(UTCDateTime, default=utcnow)
