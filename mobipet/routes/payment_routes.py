from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from mobipet.auth.dependencies import AuthContext, require_roles
from mobipet.database import get_db
from mobipet.models.user import ROLE_ADMIN, ROLE_VET
from mobipet.services import payments, store
from mobipet.services.appointment_states import COMPLETED, IN_PROGRESS, require_status
from mobipet.services.integrations import Integrations, get_integrations

router = APIRouter(tags=['payments'])
webhook_router = APIRouter(tags=['webhooks'])


class CapturePaymentRequest(BaseModel):
    appointment_id: int


class CapturePaymentResponse(BaseModel):
    success: bool
    already_captured: bool
    payment_intent_id: str | None = None


@router.post('/capture', response_model=CapturePaymentResponse)
def capture_payment(
    data: CapturePaymentRequest,
    context: AuthContext = Depends(require_roles(ROLE_VET, ROLE_ADMIN)),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    if context.is_vet:
        appointment = store.get_assigned_appointment(db, data.appointment_id, context)
        require_status(appointment, IN_PROGRESS, COMPLETED)

    result = payments.capture_payment(db, data.appointment_id, integrations.gateway)
    return CapturePaymentResponse(
        success=result.captured,
        already_captured=result.already_captured,
        payment_intent_id=result.payment_intent_id,
    )


@webhook_router.post('/stripe')
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    # Signature is checked against the raw body; the rest blocks on the database and mailer.
    payload = await request.body()
    return await run_in_threadpool(payments.handle_webhook, db, payload, stripe_signature, integrations)
