"""
Pytest configuration and fixtures for registration payment tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conference_payments.domain.models import Registration, format_timestamp
from conference_payments.infrastructure.database import (
    create_engine_from_url,
    create_session_factory,
    init_db,
)
from conference_payments.infrastructure.ledger_store import InMemoryLedgerStore
from conference_payments.infrastructure.sql_store import SqlLedgerStore
from conference_payments.services.audit_trail import AuditTrail, InMemoryAuditSink
from conference_payments.services.orchestrator import PaymentOrchestrator


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, isolated tests")
    config.addinivalue_line("markers", "race: concurrent access scenarios")


class FrozenClock:
    """Deterministic clock: returns the same instant until advanced."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingErrorLogger:
    """Error logger double that keeps every call."""

    def __init__(self):
        self.errors = []
        self.events = []

    def log_payment_error(self, registration_id="", reason=None, error_code=None):
        self.errors.append(
            {"registration_id": registration_id, "reason": reason, "error_code": error_code}
        )

    def log_payment_event(self, event=None, details=None):
        self.events.append((event, dict(details or {})))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def sql_store():
    engine = create_engine_from_url("sqlite:///:memory:")
    init_db(engine)
    yield SqlLedgerStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def ledger(request):
    """Every ledger backend, so store contract tests run against both."""
    if request.param == "memory":
        return InMemoryLedgerStore()
    return request.getfixturevalue("sql_store")


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def error_logger():
    return RecordingErrorLogger()


@pytest.fixture
def orchestrator(store, audit_sink, error_logger, clock):
    return PaymentOrchestrator(
        store=store,
        audit=AuditTrail(sink=audit_sink, clock=clock),
        error_logger=error_logger,
        clock=clock,
    )


def create_registration(
    registration_id: str = "R1",
    attendee_id: str = "attendee-1",
    category: str = "regular",
    fee_amount="200",
    status: str = "unpaid",
    status_reason: str = "",
    status_updated_at=None,
) -> Registration:
    """Helper to create a registration record."""
    if isinstance(status_updated_at, datetime):
        status_updated_at = format_timestamp(status_updated_at)
    return Registration(
        registration_id=registration_id,
        attendee_id=attendee_id,
        category=category,
        fee_amount=fee_amount,
        status=status,
        status_reason=status_reason,
        status_updated_at=status_updated_at or "2026-03-01T09:00:00+00:00",
    )
