"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from clinic.database import Base


class Appointment(Base):
    """Represents a booked consultation in a doctor's calendar."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_start", "doctor_id", "date_time"),
        Index(
            "uq_appointments_doctor_slot",
            "doctor_id",
            "date_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date_time = Column(DateTime, nullable=False)
    appointment_type = Column(String, nullable=False, default="consultation")
    status = Column(String, nullable=False, default="upcoming")  # upcoming/completed/cancelled
    notes = Column(String)
    created_at = Column(DateTime, default=datetime.now)
