"""
Clinical report read-back and emailing.

Confidential notes are for the assigned vet (and admins) only; owners see
the shared notes.
"""

import logging
from typing import NamedTuple

from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext
from mobipet.core.errors import EmailUpstreamError, ForbiddenError, NotFoundError, ValidationError
from mobipet.models.appointment import Appointment
from mobipet.models.clinical_report import ClinicalReport
from mobipet.services import email_templates, store
from mobipet.services.email_service import Mailer

logger = logging.getLogger(__name__)

RECIPIENT_VET = 'vet'
RECIPIENT_PET_OWNER = 'pet_owner'
RECIPIENT_TYPES = (RECIPIENT_VET, RECIPIENT_PET_OWNER)


class ReportView(NamedTuple):
    appointment: Appointment
    report: ClinicalReport
    include_confidential: bool


def can_see_confidential(appointment: Appointment, actor: AuthContext) -> bool:
    return actor.is_admin or (actor.is_vet and appointment.vet_id == actor.identity)


def get_report(db: Session, appointment_id: int, actor: AuthContext) -> ReportView:
    appointment = store.get_appointment(db, appointment_id)
    if actor.is_vet:
        allowed = appointment.vet_id == actor.identity
    elif actor.is_owner:
        allowed = appointment.pet_owner_id == actor.identity
    else:
        allowed = actor.is_admin
    if not allowed:
        raise NotFoundError('Report not found.')

    report = db.query(ClinicalReport).filter(ClinicalReport.appointment_id == appointment.id).first()
    if report is None:
        raise NotFoundError('Report not found.')
    return ReportView(appointment, report, can_see_confidential(appointment, actor))


def email_report(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    mailer: Mailer | None,
    recipient_type: str,
) -> str:
    """Email the report to the vet or the pet owner and return the address it went to."""
    if recipient_type not in RECIPIENT_TYPES:
        raise ValidationError('Invalid recipient type.')
    if mailer is None:
        raise EmailUpstreamError('Email is not configured.')

    view = get_report(db, appointment_id, actor)
    if recipient_type == RECIPIENT_VET and not view.include_confidential:
        raise ForbiddenError('Only the assigned veterinarian can receive the full report.')

    recipient_id = view.report.vet_id if recipient_type == RECIPIENT_VET else view.appointment.pet_owner_id
    recipient = store.get_user(db, recipient_id)
    if recipient is None or not recipient.email:
        raise NotFoundError('Recipient not found.')

    pet = store.get_pet(db, view.appointment.pet_id)
    message = email_templates.clinical_report_template(
        recipient.display_name,
        pet.name if pet else 'your pet',
        view.appointment.date,
        view.report,
        include_confidential=recipient_type == RECIPIENT_VET,
    )
    try:
        mailer.send(recipient.email, message.subject, message.html)
    except Exception as exc:
        logger.exception('Failed to email report for appointment %s to %s', appointment_id, recipient.email)
        raise EmailUpstreamError('Failed to send report email.') from exc

    logger.info('Emailed report for appointment %s to %s (%s)', appointment_id, recipient.email, recipient_type)
    return recipient.email
