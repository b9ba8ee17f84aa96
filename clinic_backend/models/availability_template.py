"""Availability template model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, String, Text
from clinic_backend.database import Base


class AvailabilityTemplate(Base):
    """A named, reusable weekly availability pattern owned by a doctor."""
    __tablename__ = "availability_templates"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    working_days = Column(JSON, default=list)  # weekday indices, 0 = Sunday
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    slot_duration = Column(Integer, default=30)
    buffer_minutes = Column(Integer, default=0)
    breaks = Column(JSON, default=list)  # [{start_time, end_time, label}]
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now)
