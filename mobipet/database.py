import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mobipet.db")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """Let SQLAlchemy issue BEGIN itself so SAVEPOINTs work with pysqlite."""

    @event.listens_for(sqlite_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin(connection):
        connection.exec_driver_sql("BEGIN")


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
if DATABASE_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

_schema_lock = Lock()
_appointment_schema_checked = False
_notification_schema_checked = False

DRAFT_INDEX_NAME = 'uq_appointments_one_draft_per_owner'


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER NOT NULL DEFAULT 1'),
            ('decline_reason', 'ALTER TABLE appointments ADD COLUMN decline_reason VARCHAR'),
            ('stripe_session_id', 'ALTER TABLE appointments ADD COLUMN stripe_session_id VARCHAR'),
            ('captured_at', 'ALTER TABLE appointments ADD COLUMN captured_at TIMESTAMP'),
            ('proposed_date', 'ALTER TABLE appointments ADD COLUMN proposed_date DATE'),
            ('proposed_at', 'ALTER TABLE appointments ADD COLUMN proposed_at TIMESTAMP'),
            ('proposed_by', 'ALTER TABLE appointments ADD COLUMN proposed_by VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_owner_status ON appointments(pet_owner_id, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_vet_status ON appointments(vet_id, status)')
            )

        # Older databases may still hold duplicate drafts; the unique index can only be
        # created once the draft manager has collapsed them, so a failure here is not fatal.
        try:
            with engine.begin() as connection:
                connection.execute(
                    text(
                        f'CREATE UNIQUE INDEX IF NOT EXISTS {DRAFT_INDEX_NAME} '
                        "ON appointments(pet_owner_id) WHERE status = 'pending'"
                    )
                )
        except SQLAlchemyError:
            logger.warning(
                'Could not create %s; duplicate pending drafts exist.', DRAFT_INDEX_NAME,
            )
            return

        _appointment_schema_checked = True


def ensure_notification_schema() -> None:
    global _notification_schema_checked

    if _notification_schema_checked:
        return

    with _schema_lock:
        if _notification_schema_checked:
            return

        inspector = inspect(engine)

        if 'notifications' not in inspector.get_table_names():
            _notification_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('notifications')}
        migration_steps = [
            ('title', 'ALTER TABLE notifications ADD COLUMN title VARCHAR'),
            ('appointment_id', 'ALTER TABLE notifications ADD COLUMN appointment_id INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_notifications_user_created ON notifications(user_id, created_at)')
            )

        _notification_schema_checked = True
