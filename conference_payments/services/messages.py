"""
Status Translator - human labels and messages for payment state.

Pure mapping from status and reason codes to presentation text. The
orchestrator never calls this; the surrounding application uses it to
shape responses.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from conference_payments.domain.models import PaymentTransaction, Registration
from conference_payments.domain.status_codes import (
    PAYMENT_STATUS_LABELS,
    REGISTRATION_STATUS_LABELS,
    RegistrationStatus,
)


@dataclass(frozen=True)
class _MessageConfig:
    message: str
    can_retry: bool


ERROR_MESSAGES: dict[str, _MessageConfig] = {
    "invalid_details": _MessageConfig(
        "Payment details are invalid or incomplete. Please review and try again.", True
    ),
    "declined": _MessageConfig(
        "Payment was declined. Please try another card or contact your bank.", True
    ),
    "service_unavailable": _MessageConfig(
        "Online payment is temporarily unavailable. Please try again later.", True
    ),
    "not_eligible_already_paid": _MessageConfig(
        "This registration is already paid. No further payment is needed.", False
    ),
    "pending_timeout": _MessageConfig(
        "Payment confirmation timed out. Please retry your payment.", True
    ),
    "auth_required": _MessageConfig("Please log in to continue.", False),
    "not_found": _MessageConfig("Registration not found.", False),
    "missing_parameters": _MessageConfig("Required payment details are missing.", False),
}

FALLBACK_ERROR = _MessageConfig("Something went wrong. Please try again.", True)

STATUS_MESSAGES: dict[str, str] = {
    RegistrationStatus.UNPAID.value: "Payment has not been completed.",
    RegistrationStatus.PENDING_CONFIRMATION.value: (
        "Payment is pending confirmation from the gateway. Please check back soon."
    ),
    RegistrationStatus.PAID_CONFIRMED.value: "Payment confirmed. Thank you.",
}


class ErrorMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    can_retry: bool
    code: Optional[str] = None


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    registration_id: str
    status_code: str
    status_label: str
    last_updated_at: str
    reason_code: Optional[str] = None
    message: Optional[str] = None


class RecordView(BaseModel):
    """Public projection of a payment record: no ids, no gateway payloads."""

    model_config = ConfigDict(frozen=True)

    amount: Optional[Decimal] = None
    currency: str
    status: str
    created_at: str
    confirmed_at: Optional[str] = None
    gateway_reference: str


def _code(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(getattr(value, "value", value)).strip()
    return text or default


class StatusTranslator:
    """Maps registration/payment codes to labels, messages and error payloads."""

    def __init__(self, labels: Optional[Mapping[str, Mapping[str, str]]] = None):
        labels = labels or {}
        self.registration_labels = {
            **REGISTRATION_STATUS_LABELS,
            **labels.get("registration", {}),
        }
        self.payment_labels = {**PAYMENT_STATUS_LABELS, **labels.get("payment", {})}

    def status_label_for_registration(self, status_code: Any) -> str:
        code = _code(status_code, RegistrationStatus.UNPAID.value)
        return self.registration_labels.get(code, "Unknown")

    def status_label_for_payment(self, status_code: Any) -> str:
        return self.payment_labels.get(_code(status_code), "Unknown")

    def status_message_for_registration(self, status_code: Any, reason_code: Any = None) -> str:
        reason = _code(reason_code)
        if reason in ERROR_MESSAGES:
            return ERROR_MESSAGES[reason].message
        return STATUS_MESSAGES.get(_code(status_code, RegistrationStatus.UNPAID.value), "")

    def error_for_code(self, code: Any) -> ErrorMessage:
        normalized = _code(code)
        config = ERROR_MESSAGES.get(normalized, FALLBACK_ERROR)
        return ErrorMessage(
            message=config.message,
            can_retry=config.can_retry,
            code=normalized or None,
        )

    def build_status_response(
        self,
        registration: Optional[Registration],
        reason_code: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Optional[StatusResponse]:
        if registration is None:
            return None
        status_code = _code(registration.status, RegistrationStatus.UNPAID.value)
        resolved_reason = reason_code or registration.status_reason or None
        resolved_message = message or self.status_message_for_registration(
            status_code, resolved_reason
        )
        return StatusResponse(
            registration_id=registration.registration_id,
            status_code=status_code,
            status_label=self.status_label_for_registration(status_code),
            last_updated_at=registration.status_updated_at,
            reason_code=resolved_reason,
            message=resolved_message or None,
        )

    def record_view(self, record: PaymentTransaction) -> RecordView:
        return RecordView(
            amount=record.amount,
            currency=record.currency,
            status=record.status.value,
            created_at=record.created_at,
            confirmed_at=record.confirmed_at,
            gateway_reference=record.gateway_reference,
        )
