"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from clinic.database import Base


class User(Base):
    """Represents a clinic staff account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="doctor")  # doctor/admin
    is_active = Column(Boolean, nullable=False, default=True)
