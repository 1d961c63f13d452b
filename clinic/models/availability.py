"""Doctor availability model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Time, UniqueConstraint
from clinic.database import Base


class DoctorAvailability(Base):
    """Weekly working hours for one doctor and weekday (0 = Sunday)."""
    __tablename__ = "doctor_availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", name="uq_doctor_availability_day"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    lunch_break_start = Column(Time)
    lunch_break_end = Column(Time)
    slot_duration = Column(Integer, nullable=False, default=20)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
