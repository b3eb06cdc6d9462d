"""
Payment authorization and capture.

Checkout sessions use manual capture: the card is authorized when the owner
pays and charged only when the vet completes the visit. Capture is idempotent
by checking the local payment status before calling the processor.
"""

import json
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext
from mobipet.core import config
from mobipet.core.errors import PaymentUpstreamError, ValidationError
from mobipet.models.appointment import Appointment, PaymentStatus
from mobipet.models.user import ROLE_VET, User
from mobipet.services import store
from mobipet.services.appointment_states import PENDING, WAITING_FOR_VET, require_status, transition
from mobipet.services.integrations import Integrations
from mobipet.services.notifications import Outbox
from mobipet.services.payment_gateway import PaymentGateway, PaymentGatewayError
from mobipet.services.webhook_security import WebhookSignatureError, verify_signature

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED_EVENT = 'checkout.session.completed'
AUTHORIZED_INTENT_STATUSES = {'requires_capture', 'succeeded'}
SETTLED_PAYMENT_STATUSES = {PaymentStatus.CAPTURED.value, PaymentStatus.PAID.value}


class CaptureResult(NamedTuple):
    captured: bool
    already_captured: bool
    payment_intent_id: Optional[str] = None


def amount_to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _require_gateway(gateway: PaymentGateway | None) -> PaymentGateway:
    if gateway is None:
        raise PaymentUpstreamError('Payment processor is not configured.')
    return gateway


def create_checkout_session(
    db: Session,
    appointment_id: int,
    actor: AuthContext,
    gateway: PaymentGateway | None,
) -> dict:
    appointment = store.get_owned_appointment(db, appointment_id, actor)
    require_status(appointment, PENDING)

    if appointment.pet_id is None:
        raise ValidationError('Choose a pet before paying.')
    if not appointment.total_price or appointment.total_price <= 0:
        raise ValidationError('Select at least one service before paying.')

    pet = store.get_pet(db, appointment.pet_id)
    pet_name = pet.name if pet else 'your pet'
    service_names = [item.get('name') for item in (appointment.services or []) if item.get('name')]
    product_name = f'MobiPet: {service_names[0] if service_names else "Vet Appointment"} for {pet_name}'
    description = f'Appointment for {pet_name}' + (f' ({pet.type})' if pet and pet.type else '')

    try:
        session = _require_gateway(gateway).create_checkout_session(
            appointment_id=appointment.id,
            amount_cents=amount_to_cents(appointment.total_price),
            product_name=product_name,
            description=description,
            success_url=config.CHECKOUT_SUCCESS_URL,
            cancel_url=config.CHECKOUT_CANCEL_URL,
            customer_email=actor.email,
        )
    except PaymentGatewayError as exc:
        raise PaymentUpstreamError(f'Failed to create checkout session: {exc.message}') from exc

    appointment.stripe_session_id = session.get('id')
    appointment.payment_amount = appointment.total_price
    appointment.payment_status = PaymentStatus.UNPAID.value
    store.commit(db)

    logger.info('Checkout session %s opened for appointment %s', appointment.stripe_session_id, appointment.id)
    return {'session_id': appointment.stripe_session_id, 'url': session.get('url')}


def record_authorization(
    db: Session,
    appointment: Appointment,
    payment_intent_id: str,
    outbox: Outbox,
    session_id: str | None = None,
) -> bool:
    """Store the authorized intent and hand a draft over to the vets. Returns False if already applied."""
    if (
        appointment.stripe_payment_intent_id == payment_intent_id
        and appointment.payment_status in {PaymentStatus.AUTHORIZED.value, *SETTLED_PAYMENT_STATUSES}
    ):
        return False

    appointment.stripe_payment_intent_id = payment_intent_id
    if session_id:
        appointment.stripe_session_id = session_id
    appointment.payment_status = PaymentStatus.AUTHORIZED.value

    if appointment.status == PENDING:
        transition(appointment, WAITING_FOR_VET)
        vet_ids = [row.id for row in db.query(User.id).filter(User.role == ROLE_VET).all()]
        for vet_id in vet_ids:
            outbox.notify(
                db,
                vet_id,
                'new_appointment',
                'A new house-call request is waiting for a vet.',
                title='New Appointment Request',
                appointment_id=appointment.id,
            )
    return True


def handle_webhook(db: Session, payload: bytes, signature_header: str | None, integrations: Integrations) -> dict:
    try:
        verify_signature(
            payload,
            signature_header,
            config.STRIPE_WEBHOOK_SECRET,
            config.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except WebhookSignatureError as exc:
        logger.warning('Rejected webhook: %s', exc)
        raise ValidationError(f'Webhook Error: {exc}') from exc

    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise ValidationError('Webhook Error: invalid JSON payload') from exc

    event_type = event.get('type')
    if event_type != CHECKOUT_COMPLETED_EVENT:
        logger.info('Unhandled event type %s', event_type)
        return {'received': True}

    session = (event.get('data') or {}).get('object') or {}
    appointment_id = (session.get('metadata') or {}).get('appointmentId')
    payment_intent_id = session.get('payment_intent')
    if not appointment_id or not payment_intent_id:
        logger.warning('Checkout session %s has no appointment or payment intent', session.get('id'))
        return {'received': True}

    try:
        appointment = db.get(Appointment, int(appointment_id))
    except (TypeError, ValueError):
        appointment = None
    if appointment is None:
        logger.warning('Checkout session %s references unknown appointment %s', session.get('id'), appointment_id)
        return {'received': True}

    outbox = Outbox()
    if record_authorization(db, appointment, payment_intent_id, outbox, session_id=session.get('id')):
        store.commit(db)
        outbox.flush(integrations.mailer, integrations.broker)
        logger.info('Payment authorized for appointment %s', appointment.id)
    return {'received': True}


def confirm_payment(
    db: Session,
    session_id: str,
    appointment_id: int,
    actor: AuthContext,
    integrations: Integrations,
) -> Appointment:
    appointment = store.get_owned_appointment(db, appointment_id, actor)
    gateway = _require_gateway(integrations.gateway)

    try:
        session = gateway.retrieve_checkout_session(session_id)
        payment_intent_id = session.get('payment_intent')
        if not payment_intent_id:
            raise ValidationError('Payment session invalid.')
        if str((session.get('metadata') or {}).get('appointmentId')) != str(appointment_id):
            logger.error(
                'Appointment ID mismatch for session %s: expected %s', session_id, appointment_id,
            )
            raise ValidationError('Invalid appointment ID.')
        intent = gateway.retrieve_payment_intent(payment_intent_id)
    except PaymentGatewayError as exc:
        raise PaymentUpstreamError(f'Failed to confirm payment: {exc.message}') from exc

    if intent.get('status') not in AUTHORIZED_INTENT_STATUSES:
        logger.error('Invalid payment intent status: %s', intent.get('status'))
        raise ValidationError('Payment authorization failed.')

    outbox = Outbox()
    if record_authorization(db, appointment, payment_intent_id, outbox, session_id=session_id):
        store.commit(db)
        outbox.flush(integrations.mailer, integrations.broker)
    return appointment


def capture_payment(db: Session, appointment_id: int, gateway: PaymentGateway | None) -> CaptureResult:
    appointment = store.get_appointment(db, appointment_id)

    if appointment.payment_status in SETTLED_PAYMENT_STATUSES:
        logger.info('Payment for appointment %s already captured', appointment_id)
        return CaptureResult(True, True, appointment.stripe_payment_intent_id)

    payment_intent_id = appointment.stripe_payment_intent_id
    if not payment_intent_id:
        raise ValidationError('No payment intent found for this appointment.')

    try:
        _require_gateway(gateway).capture_payment_intent(payment_intent_id)
    except PaymentGatewayError as exc:
        raise PaymentUpstreamError(f'Failed to capture payment: {exc.message}') from exc

    appointment.payment_status = PaymentStatus.CAPTURED.value
    appointment.captured_at = datetime.utcnow()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            'Payment %s captured but appointment %s was not updated', payment_intent_id, appointment_id,
        )

    logger.info('Captured payment %s for appointment %s', payment_intent_id, appointment_id)
    return CaptureResult(True, False, payment_intent_id)


def release_hold(gateway: PaymentGateway | None, payment_intent_id: str | None) -> bool:
    if gateway is None or not payment_intent_id:
        return False
    try:
        gateway.cancel_payment_intent(payment_intent_id)
    except PaymentGatewayError:
        logger.exception('Failed to release payment authorization %s', payment_intent_id)
        return False
    logger.info('Released payment authorization %s', payment_intent_id)
    return True


def release_authorization(db: Session, appointment: Appointment, gateway: PaymentGateway | None) -> None:
    if appointment.payment_status != PaymentStatus.AUTHORIZED.value:
        return
    if not release_hold(gateway, appointment.stripe_payment_intent_id):
        return

    appointment.payment_status = PaymentStatus.RELEASED.value
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Authorization released but appointment %s was not updated', appointment.id)
