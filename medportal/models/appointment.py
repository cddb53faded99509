import enum
import uuid

from sqlalchemy import Column, String, Enum, Integer, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID

from medportal.db.postgres import Base
from medportal.db.types import UTCDateTime, enum_values, utcnow


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# A slot held by an appointment in one of these states is free again
SLOT_RELEASING_STATUSES = {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED}

# No transition leaves these states
TERMINAL_STATUSES = {
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
}


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=False)
    appointment_date = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(
        Enum(AppointmentStatus, name="appointment_status", values_callable=enum_values),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    reason = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
