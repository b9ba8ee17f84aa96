"""Daily schedule model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, JSON, UniqueConstraint
from clinic_backend.database import Base


class SlotStatus:
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"
    BREAK = "break"

    ALL = (AVAILABLE, BOOKED, BLOCKED, BREAK)


SHIFT_TYPES = ("morning", "afternoon", "evening", "custom")


class DailySchedule(Base):
    """A doctor's shifts, breaks and slots for one calendar day."""
    __tablename__ = "doctor_schedules"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", name="uq_doctor_schedules_doctor_date"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    shifts = Column(JSON, default=list)  # [{type, start_time, end_time, slot_duration, enabled}]
    breaks = Column(JSON, default=list)  # [{start_time, end_time, reason}]
    slots = Column(JSON, default=list)  # [{start_time, end_time, status, appointment_id, blocked_reason}]
    slot_duration = Column(Integer, default=30)
