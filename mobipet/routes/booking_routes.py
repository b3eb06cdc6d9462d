import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, require_pet_owner
from mobipet.database import get_db
from mobipet.routes.appointment_routes import AppointmentResponse
from mobipet.services import drafts, payments
from mobipet.services.integrations import Integrations, get_integrations

router = APIRouter(tags=['bookings'])

MAX_NOTES_LENGTH = 600


class ServiceLineItem(BaseModel):
    id: str | None = None
    name: str
    price: float = 0.0

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: float) -> float:
        if value < 0:
            raise ValueError('Service price cannot be negative.')
        return value


class UpdateDraftRequest(BaseModel):
    pet_id: int | None = None
    date: datetime.date | None = None
    time_slot: str | None = None
    time_of_day: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_in_perth: bool | None = None
    notes: str | None = None
    additional_info: str | None = None
    services: list[ServiceLineItem] | None = None

    @field_validator('notes', 'additional_info')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

        return normalized


class CheckoutSessionResponse(BaseModel):
    session_id: str | None = None
    url: str | None = None


class ConfirmPaymentRequest(BaseModel):
    session_id: str
    appointment_id: int

    @field_validator('session_id')
    @classmethod
    def validate_session_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Session ID is required.')
        return normalized


@router.post('/draft', response_model=AppointmentResponse)
def get_or_create_draft(
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    return drafts.get_or_create_draft(db, context.identity)


@router.patch('/draft/{draft_id}', response_model=AppointmentResponse)
def update_draft(
    draft_id: int,
    data: UpdateDraftRequest,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    return drafts.update_draft(db, draft_id, context.identity, changes)


@router.delete('/draft/{draft_id}', status_code=status.HTTP_204_NO_CONTENT)
def discard_draft(
    draft_id: int,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
):
    drafts.discard_draft(db, draft_id, context.identity)


@router.post('/{appointment_id}/checkout-session', response_model=CheckoutSessionResponse)
def create_checkout_session(
    appointment_id: int,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return payments.create_checkout_session(db, appointment_id, context, integrations.gateway)


@router.post('/confirm-payment', response_model=AppointmentResponse)
def confirm_payment(
    data: ConfirmPaymentRequest,
    context: AuthContext = Depends(require_pet_owner),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return payments.confirm_payment(db, data.session_id, data.appointment_id, context, integrations)
