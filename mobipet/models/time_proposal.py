"""Time proposal model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from mobipet.database import Base

PROPOSAL_PENDING = "pending"
PROPOSAL_ACCEPTED = "accepted"
PROPOSAL_DECLINED = "declined"


class TimeProposal(Base):
    """An alternate date/time a vet offers for an appointment."""
    __tablename__ = "time_proposals"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    vet_id = Column(String, ForeignKey("users.id"), nullable=False)
    proposed_date = Column(Date, nullable=False)
    proposed_time_range = Column(String, nullable=False)
    proposed_exact_time = Column(String)
    message = Column(String)
    status = Column(String, nullable=False, default=PROPOSAL_PENDING)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("appointment_id", "vet_id", name="uq_time_proposals_appointment_vet"),
    )
