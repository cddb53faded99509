import enum
import uuid

from sqlalchemy import Column, String, Enum, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from medportal.db.postgres import Base
from medportal.db.types import UTCDateTime, enum_values, utcnow


class NotificationType(str, enum.Enum):
    PRESCRIPTION = "prescription"
    LAB_TEST = "lab_test"
    APPOINTMENT = "appointment"
    SYSTEM = "system"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    type = Column(Enum(NotificationType, name="notification_type", values_callable=enum_values), nullable=False)
    related_id = Column(UUID(as_uuid=True), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
