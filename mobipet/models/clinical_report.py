"""Clinical report model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String
from mobipet.database import Base


class ClinicalReport(Base):
    """The vet's write-up of a completed visit, one per appointment."""
    __tablename__ = "clinical_reports"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    pet_id = Column(Integer, ForeignKey("pets.id"))
    vet_id = Column(String, ForeignKey("users.id"), nullable=False)
    shared_notes = Column(String)
    confidential_notes = Column(String)
    additional_services = Column(JSON, default=list)
    total_additional_cost = Column(Float, default=0.0)
    follow_up_recommended = Column(Boolean, default=False)
    follow_up_date = Column(Date)
    follow_up_reason = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
