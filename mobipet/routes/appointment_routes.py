from datetime import date, datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, get_auth_context, require_vet
from mobipet.core.errors import ValidationError
from mobipet.database import get_db
from mobipet.models.appointment import Appointment
from mobipet.services import appointments, reports, store
from mobipet.services.integrations import Integrations, get_integrations

router = APIRouter(tags=['appointments'])

ACTION_ACCEPT = 'accept'
ACTION_DECLINE = 'decline'
ACTION_PROPOSE = 'propose'
ACTION_START = 'start'
VET_ACTIONS = (ACTION_ACCEPT, ACTION_DECLINE, ACTION_PROPOSE, ACTION_START)
MAX_NOTES_LENGTH = 2000


class AppointmentResponse(BaseModel):
    id: int
    pet_owner_id: str
    vet_id: str | None = None
    pet_id: int | None = None
    date: date | None
    time_slot: str | None = None
    time_of_day: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_in_perth: bool | None = None
    notes: str | None = None
    additional_info: str | None = None
    services: list[dict] | None = None
    total_price: float | None = None
    status: str
    decline_reason: str | None = None
    payment_status: str | None = None
    payment_amount: float | None = None
    proposed_date: date | None = None
    proposed_time: str | None = None
    proposed_message: str | None = None
    proposed_by: str | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    version: int

    model_config = ConfigDict(from_attributes=True)


class StatusChangeRequest(BaseModel):
    action: str
    reason: str | None = None
    proposed_date: date | None = None
    proposed_time: str | None = None
    message: str | None = None

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in VET_ACTIONS:
            raise ValueError('Invalid action.')
        return normalized


class OwnerResponseRequest(BaseModel):
    action: str

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in appointments.OWNER_DECISIONS:
            raise ValueError('Invalid action.')
        return normalized


class AdditionalService(BaseModel):
    name: str
    price: float = 0.0


class CompleteAppointmentRequest(BaseModel):
    shared_notes: str | None = None
    confidential_notes: str | None = None
    additional_services: list[AdditionalService] = []
    follow_up_recommended: bool = False
    follow_up_date: date | None = None
    follow_up_reason: str | None = None

    @field_validator('shared_notes', 'confidential_notes')
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


class ClinicalReportResponse(BaseModel):
    id: int
    appointment_id: int
    vet_id: str
    shared_notes: str | None = None
    confidential_notes: str | None = None
    additional_services: list[dict] | None = None
    total_additional_cost: float | None = None
    follow_up_recommended: bool | None = None
    follow_up_date: date | None = None
    follow_up_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CompleteAppointmentResponse(BaseModel):
    appointment: AppointmentResponse
    report: ClinicalReportResponse
    payment_captured: bool


class CancelAppointmentResponse(BaseModel):
    appointment_id: int
    deleted_notifications: int
    deleted_proposals: int


class EmailReportRequest(BaseModel):
    recipient_type: str

    @field_validator('recipient_type')
    @classmethod
    def validate_recipient_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in reports.RECIPIENT_TYPES:
            raise ValueError('Invalid recipient type.')
        return normalized


class EmailReportResponse(BaseModel):
    success: bool
    recipient: str


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    include_drafts: bool = False,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    if context.is_owner:
        return appointments.list_for_owner(db, context.identity, include_drafts=include_drafts)
    if context.is_vet:
        return appointments.list_for_vet(db, context.identity)
    return db.query(Appointment).order_by(Appointment.created_at.desc()).all()


@router.get('/open', response_model=list[AppointmentResponse])
def list_open_appointments(
    context: AuthContext = Depends(require_vet),
    db: Session = Depends(get_db),
):
    return appointments.list_open_requests(db)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    return store.get_appointment_for(db, appointment_id, context)


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def change_status(
    appointment_id: int,
    data: StatusChangeRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    if data.action == ACTION_ACCEPT:
        return appointments.accept(db, appointment_id, context, integrations)
    if data.action == ACTION_DECLINE:
        return appointments.decline(db, appointment_id, context, integrations, reason=data.reason)
    if data.action == ACTION_PROPOSE:
        return appointments.propose(
            db,
            appointment_id,
            context,
            integrations,
            data.proposed_date,
            data.proposed_time,
            message=data.message,
        )
    if data.action == ACTION_START:
        return appointments.start(db, appointment_id, context, integrations)
    raise ValidationError('Invalid action.')


@router.post('/{appointment_id}/owner-response', response_model=AppointmentResponse)
def owner_response(
    appointment_id: int,
    data: OwnerResponseRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return appointments.owner_respond(db, appointment_id, context, integrations, data.action)


@router.post('/{appointment_id}/complete', response_model=CompleteAppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: CompleteAppointmentRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    report = appointments.ClinicalReportInput(
        shared_notes=data.shared_notes,
        confidential_notes=data.confidential_notes,
        additional_services=[service.model_dump() for service in data.additional_services],
        follow_up_recommended=data.follow_up_recommended,
        follow_up_date=data.follow_up_date,
        follow_up_reason=data.follow_up_reason,
    )
    result = appointments.complete(db, appointment_id, context, integrations, report)
    return CompleteAppointmentResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        report=ClinicalReportResponse.model_validate(result.report),
        payment_captured=result.payment_captured,
    )


@router.delete('/{appointment_id}', response_model=CancelAppointmentResponse, status_code=status.HTTP_200_OK)
def cancel_appointment(
    appointment_id: int,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    return appointments.cancel(db, appointment_id, context, integrations)


@router.get('/{appointment_id}/report', response_model=ClinicalReportResponse)
def get_report(
    appointment_id: int,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    view = reports.get_report(db, appointment_id, context)
    response = ClinicalReportResponse.model_validate(view.report)
    if not view.include_confidential:
        response.confidential_notes = None
    return response


@router.post('/{appointment_id}/report/email', response_model=EmailReportResponse)
def email_report(
    appointment_id: int,
    data: EmailReportRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    recipient = reports.email_report(db, appointment_id, context, integrations.mailer, data.recipient_type)
    return EmailReportResponse(success=True, recipient=recipient)
