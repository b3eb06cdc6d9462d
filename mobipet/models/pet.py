"""Pet model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from mobipet.database import Base


class Pet(Base):
    """A pet registered by its owner."""
    __tablename__ = "pets"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    breed = Column(String)
    age = Column(Integer)
    weight = Column(Float)
    image = Column(String)
    medical_history = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
