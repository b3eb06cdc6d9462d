"""
Booking drafts.

An owner has at most one ``pending`` appointment while booking. The partial
unique index on ``appointments(pet_owner_id) WHERE status = 'pending'`` is the
source of truth; ``get_or_create_draft`` relies on it to settle concurrent
inserts and collapses duplicates left over from before the index existed.
"""

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mobipet.core.errors import NotFoundError, UpstreamError, ValidationError
from mobipet.models.appointment import Appointment, AppointmentStatus
from mobipet.services import store
from mobipet.services.appointment_states import PENDING, require_status

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'pet_id',
    'date',
    'time_slot',
    'time_of_day',
    'address',
    'latitude',
    'longitude',
    'is_in_perth',
    'notes',
    'additional_info',
    'services',
)


def _pending_drafts(db: Session, owner_id: str) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.pet_owner_id == owner_id,
        Appointment.status == PENDING,
    ).order_by(Appointment.updated_at.desc(), Appointment.id.desc()).all()


def _collapse_duplicates(db: Session, owner_id: str, drafts: list[Appointment]) -> Appointment:
    keep, stale = drafts[0], drafts[1:]
    logger.warning('Owner %s has %s pending drafts; keeping %s', owner_id, len(drafts), keep.id)
    stale_ids = [draft.id for draft in stale]
    try:
        db.query(Appointment).filter(Appointment.id.in_(stale_ids)).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to remove duplicate drafts %s for owner %s', stale_ids, owner_id)
    return keep


def get_or_create_draft(db: Session, owner_id: str) -> Appointment:
    try:
        drafts = _pending_drafts(db, owner_id)
    except SQLAlchemyError as exc:
        raise UpstreamError() from exc

    if len(drafts) > 1:
        return _collapse_duplicates(db, owner_id, drafts)
    if drafts:
        return drafts[0]

    draft = Appointment(
        pet_owner_id=owner_id,
        status=AppointmentStatus.PENDING.value,
        services=[],
        total_price=0.0,
    )
    try:
        with db.begin_nested():
            db.add(draft)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('Concurrent draft insert for owner %s; reusing existing draft', owner_id)
        drafts = _pending_drafts(db, owner_id)
        if not drafts:
            raise UpstreamError('Could not create a booking draft.')
        return drafts[0]
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create draft for owner %s', owner_id)
        raise UpstreamError() from exc

    db.refresh(draft)
    logger.info('Created draft %s for owner %s', draft.id, owner_id)
    return draft


def services_total(services: list[dict] | None) -> float:
    total = 0.0
    for item in services or []:
        try:
            total += float(item.get('price') or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError('Service price must be a number.') from exc
    return round(total, 2)


def get_owned_draft(db: Session, draft_id: int, owner_id: str) -> Appointment:
    draft = store.get_appointment(db, draft_id)
    if draft.pet_owner_id != owner_id:
        raise NotFoundError('Appointment not found or access denied.')
    require_status(draft, PENDING)
    return draft


def update_draft(db: Session, draft_id: int, owner_id: str, changes: dict[str, Any]) -> Appointment:
    draft = get_owned_draft(db, draft_id, owner_id)

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Fields cannot be changed: {", ".join(sorted(unknown))}.')

    if changes.get('pet_id') is not None:
        pet = store.get_pet(db, changes['pet_id'])
        if pet is None or pet.owner_id != owner_id:
            raise NotFoundError('Pet not found.')

    for name, value in changes.items():
        setattr(draft, name, value)

    if 'services' in changes:
        draft.services = list(changes['services'] or [])
        draft.total_price = services_total(draft.services)

    store.commit(db)
    db.refresh(draft)
    return draft


def discard_draft(db: Session, draft_id: int, owner_id: str) -> None:
    draft = get_owned_draft(db, draft_id, owner_id)
    db.delete(draft)
    store.commit(db)
    logger.info('Owner %s discarded draft %s', owner_id, draft_id)
