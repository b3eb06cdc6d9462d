import os

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-enough-length-for-hs256')
os.environ.setdefault('STRIPE_WEBHOOK_SECRET', 'whsec_test')
os.environ.setdefault('EMAIL_ENABLED', 'false')

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mobipet.auth.dependencies import AuthContext  # noqa: E402
from mobipet.auth.jwt_handler import create_access_token  # noqa: E402
from mobipet.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from mobipet.main import app  # noqa: E402
from mobipet.models import appointment, clinical_report, notification, pet, time_proposal, user, vet_application  # noqa: E402,F401
from mobipet.models.appointment import Appointment, PaymentStatus  # noqa: E402
from mobipet.models.pet import Pet  # noqa: E402
from mobipet.models.user import ROLE_ADMIN, ROLE_PET_OWNER, ROLE_VET, User  # noqa: E402
from mobipet.services.integrations import Integrations, get_integrations  # noqa: E402
from mobipet.services.notifications import NotificationBroker  # noqa: E402
from mobipet.services.payment_gateway import PaymentGatewayError  # noqa: E402


class FakeGateway:
    def __init__(self, intent_status: str = 'requires_capture'):
        self.intent_status = intent_status
        self.sessions: dict[str, dict] = {}
        self.captured: list[str] = []
        self.cancelled: list[str] = []
        self.fail_capture = False

    def create_checkout_session(self, **kwargs) -> dict:
        session_id = f'cs_test_{len(self.sessions) + 1}'
        self.sessions[session_id] = {
            'id': session_id,
            'url': f'https://checkout.example/{session_id}',
            'payment_intent': f'pi_test_{len(self.sessions) + 1}',
            'metadata': {'appointmentId': str(kwargs['appointment_id'])},
            'amount_cents': kwargs['amount_cents'],
        }
        return self.sessions[session_id]

    def retrieve_checkout_session(self, session_id: str) -> dict:
        if session_id not in self.sessions:
            raise PaymentGatewayError('No such checkout session', status_code=404)
        return self.sessions[session_id]

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict:
        return {'id': payment_intent_id, 'status': self.intent_status}

    def capture_payment_intent(self, payment_intent_id: str) -> dict:
        if self.fail_capture:
            raise PaymentGatewayError('Card declined', status_code=402)
        self.captured.append(payment_intent_id)
        return {'id': payment_intent_id, 'status': 'succeeded'}

    def cancel_payment_intent(self, payment_intent_id: str) -> dict:
        self.cancelled.append(payment_intent_id)
        return {'id': payment_intent_id, 'status': 'canceled'}

    def close(self) -> None:
        pass


class FakeMailer:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send(self, to, subject: str, html: str):
        self.sent.append((to, subject))
        return {'id': f'email_{len(self.sent)}'}


@pytest.fixture
def engine():
    test_engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def integrations(gateway, mailer):
    return Integrations(mailer=mailer, gateway=gateway, broker=NotificationBroker())


@pytest.fixture
def client(session_factory, integrations):
    """API client with one session per request on the test engine; startup hooks are not run."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_integrations] = lambda: integrations
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def bearer(user_id: str) -> dict:
    return {'Authorization': f'Bearer {create_access_token(user_id)}'}


def make_user(db, user_id: str, role: str = ROLE_PET_OWNER, email: str | None = None, **fields) -> User:
    record = User(id=user_id, email=email or f'{user_id}@example.com', role=role, **fields)
    db.add(record)
    db.commit()
    return record


def make_pet(db, owner_id: str, name: str = 'Buddy', type: str = 'dog') -> Pet:
    record = Pet(owner_id=owner_id, name=name, type=type)
    db.add(record)
    db.commit()
    return record


def make_appointment(db, owner_id: str, **fields) -> Appointment:
    values = {
        'status': 'waiting_for_vet',
        'date': date(2026, 11, 2),
        'time_slot': 'Morning (8am - 12pm)',
        'services': [{'name': 'Consultation', 'price': 120.0}],
        'total_price': 120.0,
        'payment_status': PaymentStatus.AUTHORIZED.value,
        'stripe_payment_intent_id': 'pi_existing',
    }
    values.update(fields)
    record = Appointment(pet_owner_id=owner_id, **values)
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def owner(db) -> User:
    return make_user(db, 'owner-1', ROLE_PET_OWNER, first_name='Olivia', last_name='Owner')


@pytest.fixture
def vet(db) -> User:
    return make_user(db, 'vet-1', ROLE_VET, first_name='Victor', last_name='Vet')


@pytest.fixture
def other_vet(db) -> User:
    return make_user(db, 'vet-2', ROLE_VET, first_name='Vera', last_name='Vet')


@pytest.fixture
def admin_user(db) -> User:
    return make_user(db, 'admin-1', ROLE_ADMIN)


@pytest.fixture
def pet(db, owner) -> Pet:
    return make_pet(db, owner.id)


def as_actor(record: User) -> AuthContext:
    return AuthContext(identity=record.id, role=record.role, email=record.email)
