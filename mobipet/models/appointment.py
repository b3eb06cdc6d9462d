"""Appointment model definitions."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from mobipet.database import DRAFT_INDEX_NAME, Base


class AppointmentStatus(str, Enum):
    PENDING = "pending"  # draft during booking
    WAITING_FOR_VET = "waiting_for_vet"  # paid, waiting for a vet to respond
    CONFIRMED = "confirmed"
    TIME_PROPOSED = "time_proposed"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    PAID = "paid"  # legacy rows charged before manual capture
    RELEASED = "released"


class Appointment(Base):
    """Represents a house-call booking, from draft to completed visit."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    pet_owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    vet_id = Column(String, ForeignKey("users.id"))
    pet_id = Column(Integer, ForeignKey("pets.id"))

    date = Column(Date)
    time_slot = Column(String)
    time_of_day = Column(String)
    address = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    is_in_perth = Column(Boolean)
    notes = Column(String)
    additional_info = Column(String)
    services = Column(JSON, default=list)
    total_price = Column(Float, default=0.0)

    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    decline_reason = Column(String)

    payment_status = Column(String)
    payment_amount = Column(Float)
    stripe_session_id = Column(String)
    stripe_payment_intent_id = Column(String)

    proposed_date = Column(Date)
    proposed_time = Column(String)
    proposed_message = Column(String)
    proposed_by = Column(String, ForeignKey("users.id"))
    proposed_at = Column(DateTime)

    accepted_at = Column(DateTime)
    completed_at = Column(DateTime)
    captured_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            DRAFT_INDEX_NAME,
            "pet_owner_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_appointments_owner_status", "pet_owner_id", "status"),
        Index("idx_appointments_vet_status", "vet_id", "status"),
    )

    def clear_proposal(self) -> None:
        self.proposed_date = None
        self.proposed_time = None
        self.proposed_message = None
        self.proposed_at = None
        self.proposed_by = None
