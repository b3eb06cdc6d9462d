from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, require_admin
from mobipet.database import get_db
from mobipet.models.user import ROLES
from mobipet.services import admin
from mobipet.services.integrations import Integrations, get_integrations

router = APIRouter(tags=['admin'])
waitlist_router = APIRouter(tags=['vet-waitlist'])


class StatsResponse(BaseModel):
    total_pet_owners: int
    total_vets: int
    total_appointments: int
    total_pets: int


class UserResponse(BaseModel):
    id: str
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SetRoleRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError('Invalid role.')
        return normalized


class VetApplicationRequest(BaseModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    license_number: str | None = None
    years_experience: int | None = None
    specialties: list[str] = []
    location: str | None = None
    bio: str | None = None


class VetApplicationResponse(BaseModel):
    id: int
    full_name: str
    email: str
    phone: str | None = None
    license_number: str | None = None
    years_experience: int | None = None
    specialties: list[str] | None = None
    location: str | None = None
    bio: str | None = None
    status: str
    notes: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewApplicationRequest(BaseModel):
    action: str
    notes: str | None = None
    send_email: bool = False

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in (admin.REVIEW_APPROVE, admin.REVIEW_DECLINE):
            raise ValueError('Invalid action.')
        return normalized


class ReviewApplicationResponse(BaseModel):
    application: VetApplicationResponse
    user_id: str | None = None


@router.get('/stats', response_model=StatsResponse)
def get_stats(
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return admin.get_stats(db)


@router.get('/users', response_model=list[UserResponse])
def list_users(
    role: str | None = Query(default=None),
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return admin.list_users(db, role=role)


@router.patch('/users/{user_id}/role', response_model=UserResponse)
def set_user_role(
    user_id: str,
    data: SetRoleRequest,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return admin.set_user_role(db, user_id, data.role)


@router.get('/vet-applications', response_model=list[VetApplicationResponse])
def list_vet_applications(
    application_status: str | None = Query(default=None, alias='status'),
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return admin.list_applications(db, status=application_status)


@router.post('/vet-applications/{application_id}/review', response_model=ReviewApplicationResponse)
def review_vet_application(
    application_id: int,
    data: ReviewApplicationRequest,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    application, user = admin.review_application(
        db,
        application_id,
        data.action,
        notes=data.notes,
        send_email=data.send_email,
        mailer=integrations.mailer,
    )
    return ReviewApplicationResponse(
        application=VetApplicationResponse.model_validate(application),
        user_id=user.id if user is not None else None,
    )


@waitlist_router.post('', response_model=VetApplicationResponse, status_code=status.HTTP_201_CREATED)
def join_vet_waitlist(data: VetApplicationRequest, db: Session = Depends(get_db)):
    details = data.model_dump(exclude={'full_name', 'email'})
    return admin.submit_application(db, data.full_name, data.email, **details)
