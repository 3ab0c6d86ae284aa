"""
Orchestrator results.

Every orchestrator operation returns a :class:`PaymentResult` tagged with a
:class:`ResultKind`. Callers branch on ``kind``; they never see storage
exceptions or their messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from conference_payments.domain.models import PaymentTransaction, Registration


class ResultKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ALREADY_PAID = "already_paid"
    PENDING = "pending"
    INITIATED = "initiated"
    DUPLICATE = "duplicate"
    PROCESSED = "processed"
    SUCCESS = "success"


ERROR_KINDS = frozenset(
    {ResultKind.NOT_FOUND, ResultKind.VALIDATION_ERROR, ResultKind.SERVICE_UNAVAILABLE}
)


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of an orchestrator call."""

    kind: ResultKind
    registration: Optional[Registration] = None
    payment: Optional[PaymentTransaction] = None
    latest_record: Optional[PaymentTransaction] = None
    records: list[PaymentTransaction] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind not in ERROR_KINDS

    @property
    def outcome(self) -> Optional[str]:
        """Confirmation vocabulary: a redelivered callback is "duplicate_ignored"."""
        if self.kind is ResultKind.DUPLICATE:
            return "duplicate_ignored"
        if self.kind is ResultKind.PROCESSED:
            return "processed"
        return None
