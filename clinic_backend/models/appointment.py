"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, text
from clinic_backend.database import ACTIVE_APPOINTMENT_STATUSES, OCCUPYING_APPOINTMENT_STATUSES, Base


class AppointmentStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"
    OVERDUE = "overdue"

    ACTIVE = ACTIVE_APPOINTMENT_STATUSES
    OCCUPYING = OCCUPYING_APPOINTMENT_STATUSES
    TERMINAL = (COMPLETED, CANCELLED, MISSED, OVERDUE)
    ALL = (PENDING, CONFIRMED, SCHEDULED, WAITING, IN_PROGRESS, COMPLETED, CANCELLED, MISSED, OVERDUE)


class PaymentStatus:
    PENDING = "pending"
    NOT_PAID = "not_paid"
    PAID = "paid"


APPOINTMENT_TYPES = ("Consultation", "Follow-up", "New Patient", "Video Call", "Checkup")

_occupying_statuses_sql = text(
    "status IN (" + ", ".join(f"'{status}'" for status in OCCUPYING_APPOINTMENT_STATUSES) + ")"
)


class Appointment(Base):
    """Represents a booked appointment between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one occupying appointment per doctor, date and time.
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=_occupying_statuses_sql,
            postgresql_where=_occupying_statuses_sql,
        ),
        Index("idx_appointments_status_date", "status", "appointment_date"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receptionist_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, default=30)
    appointment_type = Column(String, default="Consultation")
    status = Column(String, default=AppointmentStatus.PENDING, nullable=False)
    payment_status = Column(String, default=PaymentStatus.PENDING)
    arrived = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
