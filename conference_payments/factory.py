"""Build the ledger store and orchestrator from settings."""
from typing import Optional

import structlog

from conference_payments.config import Settings, get_settings
from conference_payments.infrastructure.database import (
    create_engine_from_url,
    create_session_factory,
    init_db,
)
from conference_payments.infrastructure.ledger_store import InMemoryLedgerStore, LedgerStoreBase
from conference_payments.infrastructure.sql_store import SqlLedgerStore
from conference_payments.services.audit_trail import (
    AuditSink,
    AuditTrail,
    JsonLinesAuditSink,
    StructlogAuditSink,
)
from conference_payments.services.error_log import PaymentErrorLogger
from conference_payments.services.orchestrator import Clock, PaymentOrchestrator

logger = structlog.get_logger(__name__)


def create_ledger_store(settings: Optional[Settings] = None) -> LedgerStoreBase:
    """Create the configured ledger backend; SQL tables are created if missing."""
    settings = settings or get_settings()

    if settings.ledger_backend == "sql":
        engine = create_engine_from_url(settings.database_url, echo=settings.database_echo)
        init_db(engine)
        logger.info("ledger_store_initialized", backend="sql", dialect=engine.dialect.name)
        return SqlLedgerStore(
            create_session_factory(engine),
            gateway_reference_prefix=settings.gateway_reference_prefix,
        )

    logger.info("ledger_store_initialized", backend="memory")
    return InMemoryLedgerStore(gateway_reference_prefix=settings.gateway_reference_prefix)


def create_payment_orchestrator(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStoreBase] = None,
    clock: Optional[Clock] = None,
    audit_sink: Optional[AuditSink] = None,
) -> PaymentOrchestrator:
    settings = settings or get_settings()

    if audit_sink is None:
        if settings.audit_log_path:
            audit_sink = JsonLinesAuditSink(settings.audit_log_path)
        else:
            audit_sink = StructlogAuditSink()

    return PaymentOrchestrator(
        store=store or create_ledger_store(settings),
        audit=AuditTrail(sink=audit_sink, clock=clock),
        error_logger=PaymentErrorLogger(),
        clock=clock,
        pending_timeout=settings.pending_timeout,
        default_currency=settings.default_currency,
    )
