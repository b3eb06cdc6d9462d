from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, get_auth_context
from mobipet.core.errors import ValidationError
from mobipet.database import get_db
from mobipet.models.user import User
from mobipet.services import store

router = APIRouter(tags=['profile'])


class ProfileResponse(BaseModel):
    id: str
    email: str
    role: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    additional_info: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    additional_info: str | None = None

    @field_validator('*')
    @classmethod
    def strip_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


def get_or_create_profile(db: Session, context: AuthContext) -> User:
    user = store.get_user(db, context.identity)
    if user is not None:
        return user

    if not context.email:
        raise ValidationError('Token has no email claim.')

    user = User(id=context.identity, email=context.email, role=context.role)
    db.add(user)
    store.commit(db)
    db.refresh(user)
    return user


@router.get('', response_model=ProfileResponse)
def get_profile(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return get_or_create_profile(db, context)


@router.patch('', response_model=ProfileResponse)
def update_profile(
    data: UpdateProfileRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    user = get_or_create_profile(db, context)
    for name, value in data.model_dump(exclude_unset=True).items():
        setattr(user, name, value)
    store.commit(db)
    db.refresh(user)
    return user
