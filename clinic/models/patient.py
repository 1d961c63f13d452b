"""Patient model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from clinic.database import Base


class Patient(Base):
    """Represents a patient registered with a doctor."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
