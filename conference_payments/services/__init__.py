"""Application services: orchestration, audit, error logging, status messages."""
from .audit_trail import (
    AuditEventType,
    AuditTrail,
    InMemoryAuditSink,
    JsonLinesAuditSink,
    StructlogAuditSink,
)
from .error_log import PaymentErrorLogger
from .messages import StatusTranslator
from .orchestrator import PENDING_TIMEOUT, PaymentOrchestrator

__all__ = [
    "AuditEventType",
    "AuditTrail",
    "InMemoryAuditSink",
    "JsonLinesAuditSink",
    "PENDING_TIMEOUT",
    "PaymentErrorLogger",
    "PaymentOrchestrator",
    "StatusTranslator",
    "StructlogAuditSink",
]
