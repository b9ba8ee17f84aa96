"""Doctor settings model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, JSON, Numeric, String
from clinic_backend.database import Base


class DoctorSettings(Base):
    """Per-doctor fallback availability used when no explicit schedule exists."""
    __tablename__ = "doctor_settings"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    available_days = Column(JSON, nullable=True)  # ["Monday", "Tuesday", ...]
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
    appointment_duration = Column(Integer, nullable=True)
    consultation_fee = Column(Numeric(10, 2), nullable=True)
    buffer_minutes = Column(Integer, default=0)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    default_template_id = Column(Integer, ForeignKey("availability_templates.id"), nullable=True)
