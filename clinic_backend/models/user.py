"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, JSON, String
from clinic_backend.database import Base


class UserRole:
    PATIENT = "patient"
    DOCTOR = "doctor"
    RECEPTIONIST = "receptionist"
    ADMIN = "admin"

    STAFF = (RECEPTIONIST, ADMIN)


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    hashed_password = Column(String)
    role = Column(String, default=UserRole.PATIENT)  # patient/doctor/receptionist/admin
    is_active = Column(Boolean, default=True)

    # Doctor fallback availability, mirrored from DoctorSettings
    available_days = Column(JSON, nullable=True)  # ["Monday", "Wed", ...]
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)
