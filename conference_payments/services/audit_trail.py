"""
Audit Trail - Append-Only Payment Event Log

Events recorded:
- payment_initiated
- payment_confirmed
- payment_failed
- payment_duplicate_confirmation
- payment_pending_timeout

Each record is a flat JSON-compatible dict: ``event``, a server-assigned
``at`` timestamp, and the contextual fields (registration_id, payment_id,
gateway_reference, actor_id, reason_code as applicable).

Redaction is MANDATORY and unconditional. Card fields are stripped before
a record reaches any sink, whatever the caller passed and whatever casing
convention it used (card_number, cardNumber, CVV, ...).

Writing is best-effort: a failing sink is logged and never interrupts the
payment flow.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog

from conference_payments.domain.models import format_timestamp, utc_now
from conference_payments.monitoring.logging import redact_sensitive_fields

logger = structlog.get_logger(__name__)


class AuditEventType(str, Enum):
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    DUPLICATE_CONFIRMATION = "payment_duplicate_confirmation"
    PENDING_TIMEOUT = "payment_pending_timeout"


class AuditSink(Protocol):
    """Destination for redacted audit records."""

    def emit(self, record: dict[str, Any]) -> None:
        ...


class StructlogAuditSink:
    """Writes audit records through structlog (default sink)."""

    def __init__(self, logger_name: str = "conference_payments.audit"):
        self._logger = structlog.get_logger(logger_name)

    def emit(self, record: dict[str, Any]) -> None:
        fields = dict(record)
        event = fields.pop("event")
        self._logger.info(event, **fields)


class InMemoryAuditSink:
    """In-memory audit sink for testing."""

    def __init__(self):
        self.records: list[dict[str, Any]] = []

    def emit(self, record: dict[str, Any]) -> None:
        self.records.append(record)

    def events(self, event_type: AuditEventType | str | None = None) -> list[dict[str, Any]]:
        """Helper for testing: records, optionally of one event type."""
        if event_type is None:
            return list(self.records)
        name = event_type.value if isinstance(event_type, AuditEventType) else event_type
        return [r for r in self.records if r["event"] == name]


class JsonLinesAuditSink:
    """Appends one JSON document per line to a file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def emit(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, default=str, sort_keys=True)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class AuditTrail:
    """Records payment lifecycle events."""

    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sink = sink or StructlogAuditSink()
        self._now = clock or utc_now

    def write(self, event: AuditEventType | str, details: dict[str, Any]) -> Optional[dict[str, Any]]:
        """
        Redact, stamp and emit one record.

        Returns the record as emitted, or None when the sink failed.
        """
        name = event.value if isinstance(event, AuditEventType) else _text(event)
        record = {
            **redact_sensitive_fields(details),
            "event": name,
            "at": format_timestamp(self._now()),
        }
        try:
            self.sink.emit(record)
        except Exception as e:
            logger.warning("audit_trail.write_failed", audit_event=name, error=str(e))
            return None
        return record

    def log_payment_initiated(
        self,
        registration_id: str = "",
        payment_id: str = "",
        amount: Any = None,
        gateway_reference: str = "",
        actor_id: str = "",
        **extra: Any,
    ) -> Optional[dict[str, Any]]:
        return self.write(
            AuditEventType.PAYMENT_INITIATED,
            {
                **extra,
                "registration_id": _text(registration_id),
                "payment_id": _text(payment_id),
                "amount": None if amount is None else str(amount),
                "gateway_reference": _text(gateway_reference),
                "actor_id": _text(actor_id),
            },
        )

    def log_payment_confirmed(
        self,
        registration_id: str = "",
        payment_id: str = "",
        gateway_reference: str = "",
        actor_id: str = "",
        **extra: Any,
    ) -> Optional[dict[str, Any]]:
        return self.write(
            AuditEventType.PAYMENT_CONFIRMED,
            {
                **extra,
                "registration_id": _text(registration_id),
                "payment_id": _text(payment_id),
                "gateway_reference": _text(gateway_reference),
                "actor_id": _text(actor_id),
            },
        )

    def log_payment_failed(
        self,
        registration_id: str = "",
        payment_id: str = "",
        gateway_reference: str = "",
        reason_code: str = "",
        actor_id: str = "",
        **extra: Any,
    ) -> Optional[dict[str, Any]]:
        return self.write(
            AuditEventType.PAYMENT_FAILED,
            {
                **extra,
                "registration_id": _text(registration_id),
                "payment_id": _text(payment_id),
                "gateway_reference": _text(gateway_reference),
                "reason_code": _text(reason_code),
                "actor_id": _text(actor_id),
            },
        )

    def log_duplicate_confirmation(
        self,
        registration_id: str = "",
        payment_id: str = "",
        gateway_reference: str = "",
        **extra: Any,
    ) -> Optional[dict[str, Any]]:
        return self.write(
            AuditEventType.DUPLICATE_CONFIRMATION,
            {
                **extra,
                "registration_id": _text(registration_id),
                "payment_id": _text(payment_id),
                "gateway_reference": _text(gateway_reference),
            },
        )

    def log_pending_timeout(
        self,
        registration_id: str = "",
        payment_id: str = "",
        **extra: Any,
    ) -> Optional[dict[str, Any]]:
        return self.write(
            AuditEventType.PENDING_TIMEOUT,
            {
                **extra,
                "registration_id": _text(registration_id),
                "payment_id": _text(payment_id),
            },
        )
