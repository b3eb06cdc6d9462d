"""User model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String
from mobipet.database import Base

ROLE_PET_OWNER = "pet_owner"
ROLE_VET = "vet"
ROLE_ADMIN = "admin"
ROLES = (ROLE_PET_OWNER, ROLE_VET, ROLE_ADMIN)


class User(Base):
    """Mirror of an auth-provider identity, kept for querying and role lookup."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default=ROLE_PET_OWNER)  # pet_owner/vet/admin
    name = Column(String)
    first_name = Column(String)
    last_name = Column(String)
    phone = Column(String)
    address = Column(String)
    city = Column(String)
    state = Column(String)
    postal_code = Column(String)
    emergency_contact = Column(String)
    emergency_phone = Column(String)
    additional_info = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.name or self.email
