"""
Time-proposal sub-flow: vets counter-propose, owners accept or decline.

A proposal is ``pending`` until the owner answers. There is at most one
proposal per (appointment, vet); accepting one declines all of its siblings
in the same transaction as the appointment update.
"""

import logging
from datetime import date

from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext
from mobipet.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from mobipet.models.time_proposal import (
    PROPOSAL_ACCEPTED,
    PROPOSAL_DECLINED,
    PROPOSAL_PENDING,
    TimeProposal,
)
from mobipet.services import appointments, store
from mobipet.services.appointment_states import TIME_PROPOSED, WAITING_FOR_VET, require_status
from mobipet.services.integrations import Integrations
from mobipet.services.notifications import Outbox

logger = logging.getLogger(__name__)

OWNER_RESPONSES = (PROPOSAL_ACCEPTED, PROPOSAL_DECLINED)


def submit_proposal(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
    proposed_date: date | None,
    proposed_time_range: str | None,
    proposed_exact_time: str | None = None,
    message: str | None = None,
) -> TimeProposal:
    store.require_vet(actor)
    if proposed_date is None or not (proposed_time_range or '').strip():
        raise ValidationError('Missing required fields.')

    appointment = store.get_vet_appointment(db, appointment_id, actor)
    require_status(appointment, WAITING_FOR_VET, TIME_PROPOSED)

    old_date, old_time = appointment.date, appointment.time_slot
    proposal = appointments.upsert_proposal(
        db,
        appointment.id,
        actor.identity,
        proposed_date,
        proposed_time_range.strip(),
        proposed_exact_time=proposed_exact_time or None,
        message=message or None,
    )
    appointments.mirror_proposal(
        appointment, actor.identity, proposed_date, appointments.proposal_slot(proposal), proposal.message,
    )

    outbox = Outbox()
    appointments.notify_time_proposed(db, outbox, appointment, old_date, old_time)

    store.commit(db)
    outbox.flush(integrations.mailer, integrations.broker)
    db.refresh(proposal)
    logger.info('Vet %s submitted proposal %s for appointment %s', actor.identity, proposal.id, appointment.id)
    return proposal


def list_proposals(db: Session, appointment_id: int, actor: AuthContext) -> list[TimeProposal]:
    store.get_appointment_for(db, appointment_id, actor)
    return db.query(TimeProposal).filter(
        TimeProposal.appointment_id == appointment_id,
    ).order_by(TimeProposal.created_at.desc(), TimeProposal.id.desc()).all()


def get_proposal(db: Session, proposal_id: int) -> TimeProposal:
    proposal = db.get(TimeProposal, proposal_id)
    if proposal is None:
        raise NotFoundError('Proposal not found.')
    return proposal


def respond_to_proposal(
    db: Session,
    proposal_id: int,
    actor: AuthContext,
    integrations: Integrations,
    status: str,
) -> TimeProposal:
    if status not in OWNER_RESPONSES:
        raise ValidationError('Invalid status.')
    store.require_owner(actor)

    proposal = get_proposal(db, proposal_id)
    appointment = store.get_appointment(db, proposal.appointment_id)
    if appointment.pet_owner_id != actor.identity:
        raise NotFoundError('Proposal not found.')
    if proposal.status != PROPOSAL_PENDING:
        raise ConflictError(f'Proposal has already been {proposal.status}.')

    pet_name = appointments._pet_name(db, appointment)
    outbox = Outbox()

    if status == PROPOSAL_ACCEPTED:
        require_status(appointment, WAITING_FOR_VET, TIME_PROPOSED)
        appointments.accept_time_proposal(db, appointment, proposal)
        notification_type = 'time_proposal_accepted'
        title = 'Time Proposal Accepted'
        message = f'Your proposed time for {pet_name}\'s appointment has been accepted!'
    else:
        proposal.status = PROPOSAL_DECLINED
        if appointment.status == TIME_PROPOSED:
            appointments.refresh_proposal_mirror(db, appointment, excluding=proposal.id)
        notification_type = 'time_proposal_declined'
        title = 'Time Proposal Declined'
        message = f'Your proposed time for {pet_name}\'s appointment has been declined.'

    outbox.notify(db, proposal.vet_id, notification_type, message, title=title, appointment_id=appointment.id)

    store.commit(db)
    outbox.flush(integrations.mailer, integrations.broker)
    logger.info('Owner %s %s proposal %s', actor.identity, status, proposal.id)
    return proposal


def withdraw_proposal(db: Session, proposal_id: int, actor: AuthContext) -> None:
    store.require_vet(actor)
    proposal = get_proposal(db, proposal_id)
    if proposal.vet_id != actor.identity:
        raise ForbiddenError('You can only withdraw your own proposals.')
    if proposal.status != PROPOSAL_PENDING:
        raise ConflictError(f'Proposal has already been {proposal.status}.')

    appointment = store.get_appointment(db, proposal.appointment_id)
    if appointment.status == TIME_PROPOSED:
        appointments.refresh_proposal_mirror(db, appointment, excluding=proposal.id)

    db.delete(proposal)
    store.commit(db)
    logger.info('Vet %s withdrew proposal %s', actor.identity, proposal_id)
