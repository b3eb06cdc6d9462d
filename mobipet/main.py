import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from mobipet.core import config
from mobipet.core.logging_config import configure_logging
from mobipet.database import Base, engine, ensure_appointment_schema, ensure_notification_schema
from mobipet.models import appointment, clinical_report, notification, pet, time_proposal, user, vet_application  # noqa: F401
from mobipet.routes import (
    admin_routes,
    appointment_routes,
    auth_routes,
    booking_routes,
    notification_routes,
    payment_routes,
    pet_routes,
    profile_routes,
    time_proposal_routes,
)
from mobipet.services.integrations import Integrations, build_integrations

app = FastAPI(title='MobiPet API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

# Replaced at startup; handlers only see the empty set if startup was skipped.
app.state.integrations = Integrations()

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize() -> None:
    configure_logging()
    config.validate_runtime_config()
    app.state.integrations = build_integrations()

    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_notification_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('shutdown')
def close_integrations() -> None:
    app.state.integrations.close()


@app.get('/')
def root():
    return {'status': 'MobiPet API Running'}


@app.get('/health')
def health():
    return {'status': 'ok', 'environment': config.APP_ENV}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(time_proposal_routes.router, prefix='/time-proposals')
app.include_router(payment_routes.router, prefix='/payments')
app.include_router(payment_routes.webhook_router, prefix='/webhooks')
app.include_router(notification_routes.router, prefix='/notifications')
app.include_router(pet_routes.router, prefix='/pets')
app.include_router(profile_routes.router, prefix='/profile')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(admin_routes.waitlist_router, prefix='/vet-waitlist')
