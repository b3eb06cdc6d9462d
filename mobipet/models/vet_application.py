"""Vet waitlist application model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String
from mobipet.database import Base


class VetApplication(Base):
    """A veterinarian's request to join the provider waitlist."""
    __tablename__ = "vet_applications"

    id = Column(Integer, primary_key=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String)
    license_number = Column(String)
    years_experience = Column(Integer)
    specialties = Column(JSON, default=list)
    location = Column(String)
    bio = Column(String)
    status = Column(String, nullable=False, default="pending")
    notes = Column(String)
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
