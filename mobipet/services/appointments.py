"""
Appointment status state machine.

Each operation loads the appointment, checks the caller and the current
status, applies the change together with its related rows (proposals,
clinical report, notifications) and commits once. Emails, realtime pushes and
payment capture/release run after the commit and never undo it.

Concurrent writers are resolved by the appointment's version counter: the
first commit wins and the other request gets a 409.
"""

import logging
from datetime import date, datetime
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext
from mobipet.core.errors import AppError, ConflictError, ValidationError
from mobipet.models.appointment import Appointment, PaymentStatus
from mobipet.models.clinical_report import ClinicalReport
from mobipet.models.notification import Notification
from mobipet.models.time_proposal import (
    PROPOSAL_ACCEPTED,
    PROPOSAL_DECLINED,
    PROPOSAL_PENDING,
    TimeProposal,
)
from mobipet.services import email_templates, payments, store
from mobipet.services.appointment_states import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    DECLINED,
    IN_PROGRESS,
    OWNER_CANCELLABLE_STATUSES,
    TIME_PROPOSED,
    WAITING_FOR_VET,
    require_status,
    transition,
)
from mobipet.services.integrations import Integrations
from mobipet.services.notifications import Outbox
from mobipet.services.payment_gateway import PaymentGatewayError

logger = logging.getLogger(__name__)

ACCEPT_PROPOSAL = 'accept_proposal'
DECLINE_PROPOSAL = 'decline_proposal'
OWNER_DECISIONS = (ACCEPT_PROPOSAL, DECLINE_PROPOSAL)


class ClinicalReportInput(NamedTuple):
    shared_notes: Optional[str] = None
    confidential_notes: Optional[str] = None
    additional_services: Optional[list[dict]] = None
    follow_up_recommended: bool = False
    follow_up_date: Optional[date] = None
    follow_up_reason: Optional[str] = None


class CompletionResult(NamedTuple):
    appointment: Appointment
    report: ClinicalReport
    payment_captured: bool


def _pet_name(db: Session, appointment: Appointment) -> str:
    pet = store.get_pet(db, appointment.pet_id)
    return pet.name if pet else 'your pet'


def _finish(db: Session, outbox: Outbox, integrations: Integrations) -> None:
    store.commit(db)
    outbox.flush(integrations.mailer, integrations.broker)


def accept(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    start: bool = False,
) -> Appointment:
    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, WAITING_FOR_VET)

    transition(appointment, IN_PROGRESS if start else CONFIRMED)
    appointment.vet_id = actor.identity
    appointment.accepted_at = datetime.utcnow()

    owner = store.get_user(db, appointment.pet_owner_id)
    pet_name = _pet_name(db, appointment)
    outbox = Outbox()
    outbox.notify(
        db,
        appointment.pet_owner_id,
        'appointment_accepted',
        f'Your appointment for {pet_name} has been confirmed by the vet.',
        title='Appointment Confirmed',
        appointment_id=appointment.id,
    )
    if owner is not None:
        outbox.email(
            owner.email,
            email_templates.appointment_accepted_template(
                owner.display_name, pet_name, appointment.date, appointment.time_slot,
            ),
        )

    _finish(db, outbox, integrations)
    logger.info('Appointment %s accepted by vet %s (%s)', appointment.id, actor.identity, appointment.status)
    return appointment


def decline(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    reason: str | None = None,
) -> Appointment:
    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, WAITING_FOR_VET, TIME_PROPOSED)

    transition(appointment, DECLINED)
    appointment.decline_reason = reason
    appointment.clear_proposal()
    db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment.id,
        TimeProposal.status == PROPOSAL_PENDING,
    ).update({TimeProposal.status: PROPOSAL_DECLINED}, synchronize_session=False)

    owner = store.get_user(db, appointment.pet_owner_id)
    pet_name = _pet_name(db, appointment)
    outbox = Outbox()
    outbox.notify(
        db,
        appointment.pet_owner_id,
        'appointment_declined',
        f'Your appointment for {pet_name} has been declined by the vet. Please book again.',
        title='Appointment Declined',
        appointment_id=appointment.id,
    )
    if owner is not None:
        outbox.email(
            owner.email,
            email_templates.appointment_declined_template(owner.display_name, pet_name, appointment.date, reason),
        )

    _finish(db, outbox, integrations)
    payments.release_authorization(db, appointment, integrations.gateway)
    logger.info('Appointment %s declined by vet %s', appointment.id, actor.identity)
    return appointment


def mirror_proposal(
    appointment: Appointment,
    vet_id: str,
    proposed_date: date,
    proposed_time: str,
    message: str | None,
) -> None:
    transition(appointment, TIME_PROPOSED)
    appointment.proposed_date = proposed_date
    appointment.proposed_time = proposed_time
    appointment.proposed_message = message
    appointment.proposed_by = vet_id
    appointment.proposed_at = datetime.utcnow()


def proposal_slot(proposal: TimeProposal) -> str:
    if proposal.proposed_exact_time:
        return f'{proposal.proposed_time_range} at {proposal.proposed_exact_time}'
    return proposal.proposed_time_range


def refresh_proposal_mirror(db: Session, appointment: Appointment, excluding: int | None = None) -> None:
    """
    Point the appointment's proposed_* fields at the newest pending proposal.
    With no pending proposal left the request goes back to waiting_for_vet.
    """
    query = db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment.id,
        TimeProposal.status == PROPOSAL_PENDING,
    )
    if excluding is not None:
        query = query.filter(TimeProposal.id != excluding)
    latest = query.order_by(TimeProposal.updated_at.desc(), TimeProposal.id.desc()).first()

    if latest is None:
        appointment.clear_proposal()
        transition(appointment, WAITING_FOR_VET)
        return
    mirror_proposal(appointment, latest.vet_id, latest.proposed_date, proposal_slot(latest), latest.message)


def upsert_proposal(
    db: Session,
    appointment_id: int,
    vet_id: str,
    proposed_date: date,
    proposed_time_range: str,
    proposed_exact_time: str | None = None,
    message: str | None = None,
) -> TimeProposal:
    """One proposal per (appointment, vet): a repeat proposal replaces the earlier one."""
    proposal = db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment_id,
        TimeProposal.vet_id == vet_id,
    ).first()
    if proposal is None:
        proposal = TimeProposal(appointment_id=appointment_id, vet_id=vet_id)
        db.add(proposal)

    proposal.proposed_date = proposed_date
    proposal.proposed_time_range = proposed_time_range
    proposal.proposed_exact_time = proposed_exact_time
    proposal.message = message
    proposal.status = PROPOSAL_PENDING
    return proposal


def notify_time_proposed(
    db: Session,
    outbox: Outbox,
    appointment: Appointment,
    old_date,
    old_time: str | None,
) -> None:
    owner = store.get_user(db, appointment.pet_owner_id)
    pet_name = _pet_name(db, appointment)
    outbox.notify(
        db,
        appointment.pet_owner_id,
        'time_proposed',
        f'The vet has proposed a new time for {pet_name}\'s appointment: '
        f'{appointment.proposed_date.isoformat()} {appointment.proposed_time}',
        title='New Time Proposed',
        appointment_id=appointment.id,
    )
    if owner is not None:
        outbox.email(
            owner.email,
            email_templates.time_proposed_template(
                owner.display_name,
                pet_name,
                old_date,
                old_time,
                appointment.proposed_date,
                appointment.proposed_time,
                appointment.proposed_message,
            ),
        )


def propose(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    proposed_date: date | None,
    proposed_time: str | None,
    message: str | None = None,
) -> Appointment:
    store.require_vet(actor)
    if proposed_date is None or not (proposed_time or '').strip():
        raise ValidationError('Proposed date and time are required.')
    proposed_time = proposed_time.strip()

    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, WAITING_FOR_VET, TIME_PROPOSED)

    old_date, old_time = appointment.date, appointment.time_slot
    mirror_proposal(appointment, actor.identity, proposed_date, proposed_time, message)
    upsert_proposal(db, appointment.id, actor.identity, proposed_date, proposed_time, message=message)

    outbox = Outbox()
    notify_time_proposed(db, outbox, appointment, old_date, old_time)

    _finish(db, outbox, integrations)
    logger.info('Vet %s proposed %s %s for appointment %s', actor.identity, proposed_date, proposed_time, appointment.id)
    return appointment


def start(db: Session, appointment_id: int, actor: AuthContext, integrations: Integrations) -> Appointment:
    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, CONFIRMED)

    transition(appointment, IN_PROGRESS)
    appointment.vet_id = actor.identity

    outbox = Outbox()
    outbox.notify(
        db,
        appointment.pet_owner_id,
        'appointment_started',
        f'Your appointment for {_pet_name(db, appointment)} is now in progress.',
        title='Appointment Started',
        appointment_id=appointment.id,
    )

    _finish(db, outbox, integrations)
    return appointment


def accept_time_proposal(db: Session, appointment: Appointment, proposal: TimeProposal) -> None:
    """Adopt the proposal's time and vet, then decline every sibling proposal."""
    if proposal.status != PROPOSAL_PENDING:
        raise ConflictError(f'Proposal has already been {proposal.status}.')
    transition(appointment, CONFIRMED)
    appointment.date = proposal.proposed_date
    appointment.time_slot = proposal.proposed_time_range
    appointment.time_of_day = proposal.proposed_time_range
    appointment.vet_id = proposal.vet_id
    appointment.accepted_at = datetime.utcnow()
    appointment.clear_proposal()

    proposal.status = PROPOSAL_ACCEPTED
    db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment.id,
        TimeProposal.id != proposal.id,
    ).update({TimeProposal.status: PROPOSAL_DECLINED}, synchronize_session=False)


def owner_respond(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    decision: str,
) -> Appointment:
    if decision not in OWNER_DECISIONS:
        raise ValidationError('Invalid action.')

    appointment = store.get_owned_appointment(db, appointment_id, actor)
    require_status(appointment, TIME_PROPOSED)

    proposing_vet = appointment.proposed_by
    pet_name = _pet_name(db, appointment)
    outbox = Outbox()

    if decision == ACCEPT_PROPOSAL:
        proposal = db.query(TimeProposal).filter(
            TimeProposal.appointment_id == appointment.id,
            TimeProposal.vet_id == proposing_vet,
            TimeProposal.status == PROPOSAL_PENDING,
        ).first() if proposing_vet else None
        if proposal is None:
            raise ConflictError('There is no pending proposal to accept.')

        accept_time_proposal(db, appointment, proposal)

        outbox.notify(
            db,
            proposing_vet,
            'time_proposal_accepted',
            f'Your proposed time for {pet_name}\'s appointment has been accepted!',
            title='Time Proposal Accepted',
            appointment_id=appointment.id,
        )
    else:
        transition(appointment, CANCELLED)
        appointment.clear_proposal()
        db.query(TimeProposal).filter(
            TimeProposal.appointment_id == appointment.id,
            TimeProposal.status == PROPOSAL_PENDING,
        ).update({TimeProposal.status: PROPOSAL_DECLINED}, synchronize_session=False)

        outbox.notify(
            db,
            proposing_vet,
            'time_proposal_declined',
            f'Your proposed time for {pet_name}\'s appointment has been declined.',
            title='Time Proposal Declined',
            appointment_id=appointment.id,
        )

    _finish(db, outbox, integrations)
    if decision == DECLINE_PROPOSAL:
        payments.release_authorization(db, appointment, integrations.gateway)

    logger.info('Owner %s responded %s on appointment %s', actor.identity, decision, appointment.id)
    return appointment


def complete(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    report: ClinicalReportInput,
) -> CompletionResult:
    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, CONFIRMED, IN_PROGRESS)

    transition(appointment, COMPLETED)
    appointment.vet_id = actor.identity
    appointment.completed_at = datetime.utcnow()

    additional_services = list(report.additional_services or [])
    clinical_report = db.query(ClinicalReport).filter(ClinicalReport.appointment_id == appointment.id).first()
    if clinical_report is None:
        clinical_report = ClinicalReport(appointment_id=appointment.id)
        db.add(clinical_report)
    clinical_report.pet_id = appointment.pet_id
    clinical_report.vet_id = actor.identity
    clinical_report.shared_notes = report.shared_notes
    clinical_report.confidential_notes = report.confidential_notes
    clinical_report.additional_services = additional_services
    clinical_report.total_additional_cost = sum(float(item.get('price') or 0) for item in additional_services)
    clinical_report.follow_up_recommended = report.follow_up_recommended
    clinical_report.follow_up_date = report.follow_up_date
    clinical_report.follow_up_reason = report.follow_up_reason

    owner = store.get_user(db, appointment.pet_owner_id)
    vet = store.get_user(db, actor.identity)
    pet_name = _pet_name(db, appointment)
    outbox = Outbox()
    outbox.notify(
        db,
        appointment.pet_owner_id,
        'appointment_completed',
        f'Your appointment for {pet_name} has been completed. Check your portal for the vet\'s report.',
        title='Appointment Completed',
        appointment_id=appointment.id,
    )
    if owner is not None:
        follow_up = None
        if report.follow_up_recommended and report.follow_up_date:
            follow_up = f'On {report.follow_up_date.isoformat()}'
            if report.follow_up_reason:
                follow_up = f'{follow_up}: {report.follow_up_reason}'
        outbox.email(
            owner.email,
            email_templates.appointment_completed_template(
                owner.display_name,
                pet_name,
                appointment.date,
                vet.display_name if vet else 'your veterinarian',
                report.shared_notes,
                follow_up,
            ),
        )

    store.commit(db)

    payment_captured = False
    try:
        payment_captured = payments.capture_payment(db, appointment.id, integrations.gateway).captured
    except (AppError, PaymentGatewayError):
        logger.exception('Payment capture failed for completed appointment %s', appointment.id)

    outbox.flush(integrations.mailer, integrations.broker)
    logger.info('Appointment %s completed by vet %s', appointment.id, actor.identity)
    return CompletionResult(appointment, clinical_report, payment_captured)


def cancel(db: Session, appointment_id: int, actor: AuthContext, integrations: Integrations) -> dict:
    """Delete an owner's appointment and its dependent rows, children first."""
    appointment = store.get_owned_appointment(db, appointment_id, actor)
    require_status(appointment, *OWNER_CANCELLABLE_STATUSES)

    vet_id = appointment.vet_id
    payment_intent_id = appointment.stripe_payment_intent_id if appointment.payment_status == PaymentStatus.AUTHORIZED.value else None
    pet_name = _pet_name(db, appointment)
    appointment_date, time_slot = appointment.date, appointment.time_slot

    deleted_notifications = db.query(Notification).filter(
        Notification.appointment_id == appointment.id,
    ).delete(synchronize_session=False)
    deleted_proposals = db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment.id,
    ).delete(synchronize_session=False)
    db.query(ClinicalReport).filter(
        ClinicalReport.appointment_id == appointment.id,
    ).delete(synchronize_session=False)
    db.delete(appointment)

    outbox = Outbox()
    outbox.notify(
        db,
        vet_id,
        'appointment_cancelled',
        f'The appointment for {pet_name} on {appointment_date.isoformat() if appointment_date else "an unscheduled date"} was cancelled by the owner.',
        title='Appointment Cancelled',
    )
    vet = store.get_user(db, vet_id)
    if vet is not None:
        outbox.email(
            vet.email,
            email_templates.appointment_cancelled_template(vet.display_name, pet_name, appointment_date, time_slot),
        )

    _finish(db, outbox, integrations)
    payments.release_hold(integrations.gateway, payment_intent_id)

    logger.info(
        'Appointment %s cancelled by owner %s (%s notifications, %s proposals removed)',
        appointment_id, actor.identity, deleted_notifications, deleted_proposals,
    )
    return {
        'appointment_id': appointment_id,
        'deleted_notifications': deleted_notifications,
        'deleted_proposals': deleted_proposals,
    }


def list_for_owner(db: Session, owner_id: str, include_drafts: bool = False) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.pet_owner_id == owner_id)
    if not include_drafts:
        query = query.filter(Appointment.status != 'pending')
    return query.order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()


def list_for_vet(db: Session, vet_id: str) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.vet_id == vet_id,
    ).order_by(Appointment.created_at.desc(), Appointment.id.desc()).all()


def list_open_requests(db: Session) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.vet_id.is_(None),
        Appointment.status == WAITING_FOR_VET,
    ).order_by(Appointment.date.asc(), Appointment.created_at.asc()).all()
