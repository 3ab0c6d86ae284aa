"""
Status Codes - The Two Payment State Machines

Registration (what the attendee sees):

    UNPAID → PENDING_CONFIRMATION → PAID_CONFIRMED
       ↑              │
       └──────────────┘  declined / failed / 24h pending timeout

Payment transaction (one gateway attempt):

    INITIATED / PENDING_CONFIRMATION → SUCCEEDED | FAILED | DECLINED

A transaction is settled once it leaves INITIATED/PENDING_CONFIRMATION.
Settled transactions are never re-applied.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class RegistrationStatus(str, Enum):
    """Payment status of a conference registration."""

    UNPAID = "unpaid"
    PENDING_CONFIRMATION = "pending_confirmation"
    PAID_CONFIRMED = "paid_confirmed"


class PaymentTransactionStatus(str, Enum):
    """Status of a single gateway payment attempt."""

    INITIATED = "initiated"
    PENDING_CONFIRMATION = "pending_confirmation"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DECLINED = "declined"

    @property
    def is_settled(self) -> bool:
        return self not in (
            PaymentTransactionStatus.INITIATED,
            PaymentTransactionStatus.PENDING_CONFIRMATION,
        )


# Reason codes stored in Registration.status_reason
REASON_PENDING_TIMEOUT = "pending_timeout"
REASON_DECLINED = "declined"
REASON_INVALID_DETAILS = "invalid_details"

REGISTRATION_STATUS_LABELS: dict[str, str] = {
    RegistrationStatus.UNPAID.value: "Unpaid",
    RegistrationStatus.PENDING_CONFIRMATION.value: "Pending Confirmation",
    RegistrationStatus.PAID_CONFIRMED.value: "Paid/Confirmed",
}

PAYMENT_STATUS_LABELS: dict[str, str] = {
    PaymentTransactionStatus.INITIATED.value: "Initiated",
    PaymentTransactionStatus.PENDING_CONFIRMATION.value: "Pending Confirmation",
    PaymentTransactionStatus.SUCCEEDED.value: "Succeeded",
    PaymentTransactionStatus.FAILED.value: "Failed",
    PaymentTransactionStatus.DECLINED.value: "Declined",
}


def _normalize(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_registration_status(value: Any) -> RegistrationStatus:
    """Map any input onto a registration status; unknown input becomes UNPAID."""
    try:
        return RegistrationStatus(_normalize(value))
    except ValueError:
        return RegistrationStatus.UNPAID


def normalize_payment_status(value: Any) -> PaymentTransactionStatus:
    """Map any input onto a transaction status; unknown input becomes INITIATED."""
    try:
        return PaymentTransactionStatus(_normalize(value))
    except ValueError:
        return PaymentTransactionStatus.INITIATED


def registration_status_for_payment(
    payment_status: PaymentTransactionStatus,
) -> tuple[RegistrationStatus, str]:
    """
    Derive the registration status (and reason code) a confirmation produces.

    succeeded            → paid_confirmed
    pending_confirmation → pending_confirmation
    declined             → unpaid, reason "declined"
    failed               → unpaid, reason "invalid_details"
    """
    if payment_status is PaymentTransactionStatus.SUCCEEDED:
        return RegistrationStatus.PAID_CONFIRMED, ""
    if payment_status is PaymentTransactionStatus.PENDING_CONFIRMATION:
        return RegistrationStatus.PENDING_CONFIRMATION, ""
    if payment_status is PaymentTransactionStatus.DECLINED:
        return RegistrationStatus.UNPAID, REASON_DECLINED
    if payment_status is PaymentTransactionStatus.FAILED:
        return RegistrationStatus.UNPAID, REASON_INVALID_DETAILS
    return RegistrationStatus.UNPAID, ""
