"""
Appointment record store: loading rows, scoping them to the caller, and
committing a unit of work.

Cross-tenant reads are reported as missing rows, the same way row-level
security hides them.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mobipet.auth.dependencies import AuthContext
from mobipet.core.errors import ConflictError, ForbiddenError, NotFoundError, UpstreamError
from mobipet.models.appointment import Appointment
from mobipet.models.pet import Pet
from mobipet.models.time_proposal import TimeProposal
from mobipet.models.user import ROLE_PET_OWNER, ROLE_VET, User
from mobipet.services.appointment_states import WAITING_FOR_VET

logger = logging.getLogger(__name__)


def commit(db: Session) -> None:
    """Commit the session, translating store failures into API errors."""
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError() from exc
    except IntegrityError as exc:
        db.rollback()
        logger.warning('Integrity error on commit: %s', exc.orig)
        raise ConflictError('The change conflicts with existing data.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Commit failed')
        raise UpstreamError() from exc


def require_role(actor: AuthContext, role: str, message: str) -> None:
    if actor.role != role:
        raise ForbiddenError(message)


def require_vet(actor: AuthContext) -> None:
    require_role(actor, ROLE_VET, 'Only veterinarians can perform this action.')


def require_owner(actor: AuthContext) -> None:
    require_role(actor, ROLE_PET_OWNER, 'Only pet owners can perform this action.')


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    try:
        appointment = db.get(Appointment, appointment_id)
    except SQLAlchemyError as exc:
        raise UpstreamError() from exc
    if appointment is None:
        raise NotFoundError('Appointment not found.')
    return appointment


def has_proposed(db: Session, appointment_id: int, vet_id: str) -> bool:
    return db.query(TimeProposal.id).filter(
        TimeProposal.appointment_id == appointment_id,
        TimeProposal.vet_id == vet_id,
    ).first() is not None


def can_view(db: Session, appointment: Appointment, actor: AuthContext) -> bool:
    if actor.is_admin:
        return True
    if actor.is_owner:
        return appointment.pet_owner_id == actor.identity
    if actor.is_vet:
        if appointment.vet_id == actor.identity:
            return True
        if appointment.vet_id is None and appointment.status == WAITING_FOR_VET:
            return True
        return has_proposed(db, appointment.id, actor.identity)
    return False


def get_appointment_for(db: Session, appointment_id: int, actor: AuthContext) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not can_view(db, appointment, actor):
        raise NotFoundError('Appointment not found.')
    return appointment


def get_owned_appointment(db: Session, appointment_id: int, actor: AuthContext) -> Appointment:
    require_owner(actor)
    appointment = get_appointment(db, appointment_id)
    if appointment.pet_owner_id != actor.identity:
        raise NotFoundError('Appointment not found or access denied.')
    return appointment


def get_vet_appointment(db: Session, appointment_id: int, actor: AuthContext) -> Appointment:
    """Load an appointment the calling vet may act on: assigned to them, or still unclaimed."""
    require_vet(actor)
    appointment = get_appointment(db, appointment_id)
    if appointment.vet_id not in (None, actor.identity):
        raise NotFoundError('Appointment not found.')
    return appointment


def get_assigned_appointment(db: Session, appointment_id: int, actor: AuthContext) -> Appointment:
    """Load an appointment the calling vet has been assigned to; unclaimed requests do not count."""
    require_vet(actor)
    appointment = get_appointment(db, appointment_id)
    if appointment.vet_id != actor.identity:
        raise NotFoundError('Appointment not found.')
    return appointment


def get_pet(db: Session, pet_id: int | None) -> Pet | None:
    return db.get(Pet, pet_id) if pet_id is not None else None


def get_user(db: Session, user_id: str | None) -> User | None:
    return db.get(User, user_id) if user_id else None
