# backend/tests/conftest.py
"""
Pytest configuration for the autoscuola engine.

Every test gets a fresh in-memory SQLite database. Services commit their own
transactions, so isolation comes from a new engine per test rather than a
rolled-back outer transaction.

Time is pinned with ``FixedClock`` at Monday 2026-03-02 08:00 UTC
(09:00 in Rome, before the spring DST switch).
"""

import os

# Set before any autoscuola import so settings and the module engine pick them up
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("INVOICING_API_KEY", None)

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from autoscuola.core.clock import FixedClock
from autoscuola.database import Base
import autoscuola.models  # noqa: F401
from autoscuola.services.appointment_service import AppointmentService
from autoscuola.services.invoice_service import InvoiceService
from autoscuola.services.notification_service import NotificationService
from autoscuola.services.payment_service import PaymentService
from autoscuola.services.reposition_service import RepositionService
from tests.factories.school_builders import seed_school
from tests.helpers.fakes import FakeGateway, FakeInvoicingClient, RecordingDispatcher

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notifications(dispatcher) -> NotificationService:
    return NotificationService(dispatcher, timezone="Europe/Rome")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def invoicing_client() -> FakeInvoicingClient:
    return FakeInvoicingClient()


@pytest.fixture
def school(db):
    """Payments disabled; see ``seed_school`` for the resources."""
    return seed_school(db)


@pytest.fixture
def paid_school(db):
    """Payments enabled at the default presets, both students with a saved card."""
    return seed_school(
        db,
        payments_enabled=True,
        lesson_price_30_cents=2500,
        lesson_price_60_cents=5000,
        penalty_cutoff_hours=24,
        penalty_percent=50,
    )


@pytest.fixture
def reposition_service(db, notifications, clock) -> RepositionService:
    return RepositionService(db, notifications=notifications, clock=clock)


@pytest.fixture
def appointment_service(db, notifications, reposition_service, clock) -> AppointmentService:
    return AppointmentService(
        db,
        notifications=notifications,
        reposition_service=reposition_service,
        clock=clock,
    )


@pytest.fixture
def payment_service(db, gateway, notifications, clock) -> PaymentService:
    return PaymentService(db, gateway=gateway, notifications=notifications, clock=clock)


@pytest.fixture
def invoice_service(db, invoicing_client, clock) -> InvoiceService:
    return InvoiceService(db, client=invoicing_client, clock=clock)
