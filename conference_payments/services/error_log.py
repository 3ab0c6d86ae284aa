"""Payment error logger consumed by the orchestrator."""
from typing import Any, Optional

import structlog

from conference_payments.monitoring.logging import redact_sensitive_fields


class PaymentErrorLogger:
    """
    Structured logger for payment failures.

    Records carry codes and identifiers only; storage exception messages
    stay out of them.
    """

    def __init__(self, logger: Optional[Any] = None):
        self._logger = logger or structlog.get_logger("conference_payments.errors")

    def log_payment_error(
        self,
        registration_id: str = "",
        reason: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self._logger.error(
            "payment_error",
            registration_id=registration_id,
            reason=reason or "unknown",
            error_code=error_code or "UNKNOWN_ERROR",
        )

    def log_payment_event(self, event: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        """Log an arbitrary payment event, card fields removed."""
        fields = redact_sensitive_fields(details or {})
        fields.pop("event", None)
        self._logger.info(event or "payment_event", **fields)
