"""Admin dashboard queries, role management and the vet waitlist."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from mobipet.core.errors import ConflictError, NotFoundError, ValidationError
from mobipet.models.appointment import Appointment
from mobipet.models.pet import Pet
from mobipet.models.user import ROLE_PET_OWNER, ROLE_VET, ROLES, User
from mobipet.models.vet_application import VetApplication
from mobipet.services import email_templates, store
from mobipet.services.email_service import Mailer

logger = logging.getLogger(__name__)

APPLICATION_PENDING = 'pending'
APPLICATION_APPROVED = 'approved'
APPLICATION_DECLINED = 'declined'

REVIEW_APPROVE = 'approve'
REVIEW_DECLINE = 'decline'


def get_stats(db: Session) -> dict:
    role_counts = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    return {
        'total_pet_owners': role_counts.get(ROLE_PET_OWNER, 0),
        'total_vets': role_counts.get(ROLE_VET, 0),
        'total_appointments': db.query(func.count(Appointment.id)).scalar() or 0,
        'total_pets': db.query(func.count(Pet.id)).scalar() or 0,
    }


def list_users(db: Session, role: str | None = None) -> list[User]:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.created_at.desc()).all()


def set_user_role(db: Session, user_id: str, role: str) -> User:
    if role not in ROLES:
        raise ValidationError('Invalid role.')
    user = store.get_user(db, user_id)
    if user is None:
        raise NotFoundError('User not found.')
    user.role = role
    store.commit(db)
    logger.info('User %s role set to %s', user_id, role)
    return user


def submit_application(db: Session, full_name: str | None, email: str | None, **details) -> VetApplication:
    full_name = (full_name or '').strip()
    email = (email or '').strip().lower()
    if not full_name or not email:
        raise ValidationError('Full name and email are required.')

    existing = db.query(VetApplication.id).filter(func.lower(VetApplication.email) == email).first()
    if existing is not None:
        raise ConflictError('An application with this email already exists.')

    application = VetApplication(
        full_name=full_name,
        email=email,
        phone=details.get('phone') or None,
        license_number=details.get('license_number') or None,
        years_experience=details.get('years_experience'),
        specialties=list(details.get('specialties') or []),
        location=details.get('location') or None,
        bio=details.get('bio') or None,
        status=APPLICATION_PENDING,
    )
    db.add(application)
    store.commit(db)
    db.refresh(application)
    logger.info('Vet application %s submitted for %s', application.id, email)
    return application


def list_applications(db: Session, status: str | None = None) -> list[VetApplication]:
    query = db.query(VetApplication)
    if status:
        query = query.filter(VetApplication.status == status)
    return query.order_by(VetApplication.created_at.desc()).all()


def _split_name(full_name: str) -> tuple[str, str]:
    first, _, last = full_name.strip().partition(' ')
    return first, last.strip()


def review_application(
    db: Session,
    application_id: int,
    action: str,
    notes: str | None = None,
    send_email: bool = False,
    mailer: Mailer | None = None,
) -> tuple[VetApplication, User | None]:
    if action not in (REVIEW_APPROVE, REVIEW_DECLINE):
        raise ValidationError('Invalid action.')

    application = db.get(VetApplication, application_id)
    if application is None:
        raise NotFoundError('Application not found.')
    if application.status != APPLICATION_PENDING:
        raise ConflictError(f'Application has already been {application.status}.')

    application.reviewed_at = datetime.utcnow()

    if action == REVIEW_DECLINE:
        application.status = APPLICATION_DECLINED
        application.notes = notes or 'Application declined'
        store.commit(db)
        return application, None

    first_name, last_name = _split_name(application.full_name)
    user = db.query(User).filter(func.lower(User.email) == application.email.lower()).first()
    if user is None:
        user = User(
            id=str(uuid.uuid4()),
            email=application.email,
            first_name=first_name,
            last_name=last_name or None,
            phone=application.phone,
        )
        db.add(user)
    user.role = ROLE_VET

    application.status = APPLICATION_APPROVED
    application.notes = notes or 'Application approved and user account created'
    store.commit(db)
    logger.info('Vet application %s approved; user %s is now a vet', application.id, user.id)

    if send_email and mailer is not None:
        message = email_templates.vet_welcome_template(first_name)
        try:
            mailer.send(application.email, message.subject, message.html)
        except Exception:
            logger.exception('Failed to send welcome email to %s', application.email)

    return application, user
