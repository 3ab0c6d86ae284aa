"""
Registration and Payment Transaction records.

Both records are immutable pydantic models. Every change produces a new
instance that has passed through the same normalization as the original,
so a stored record can never hold a negative amount or an unknown status.

Records accept snake_case field names or their camelCase aliases
(``registration_id`` / ``registrationId``).

Timestamps are kept as ISO-8601 strings exactly as persisted. A legacy
record with an unparsable timestamp is still loadable; code that needs a
point in time calls :func:`parse_timestamp` and handles ``None``.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from conference_payments.domain.status_codes import (
    PaymentTransactionStatus,
    RegistrationStatus,
    normalize_payment_status,
    normalize_registration_status,
)

DEFAULT_CURRENCY = "USD"


def utc_now() -> datetime:
    """Wall-clock time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as UTC ISO-8601 (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware datetime.

    Returns None when the value is empty or not ISO-8601.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = "" if value is None else str(value).strip()
        if not text:
            return None
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_amount(value: Any) -> Optional[Decimal]:
    """
    Normalize a money amount.

    Absent, empty, non-numeric, non-finite and negative input all become
    None; a negative number is never stored.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        amount = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _clean_timestamp(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return format_timestamp(value)
    text = _clean_str(value)
    return text or None


class _LedgerRecord(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    @classmethod
    def _by_field_name(cls, data: Mapping[str, Any]) -> dict[str, Any]:
        """Rewrite camelCase alias keys to field names."""
        aliases = {
            field.alias: name
            for name, field in cls.model_fields.items()
            if field.alias and field.alias != name
        }
        return {aliases.get(key, key): value for key, value in data.items()}

    def _replace(self, changes: Mapping[str, Any]):
        data = self.model_dump()
        data.update(self._by_field_name(changes))
        return type(self).model_validate(data)


class Registration(_LedgerRecord):
    """
    An attendee's conference registration and its payment status.

    Created elsewhere in the unpaid state; only the payment orchestrator
    moves ``status``. Never deleted.
    """

    registration_id: str
    attendee_id: str = ""
    category: str = ""
    fee_amount: Optional[Decimal] = None
    status: RegistrationStatus = RegistrationStatus.UNPAID
    status_reason: str = ""
    status_updated_at: str = Field(default_factory=lambda: format_timestamp(utc_now()))

    @field_validator("registration_id", "attendee_id", "category", "status_reason", mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> str:
        return _clean_str(v)

    @field_validator("fee_amount", mode="before")
    @classmethod
    def _normalize_fee(cls, v: Any) -> Optional[Decimal]:
        return to_amount(v)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> RegistrationStatus:
        return normalize_registration_status(v)

    @field_validator("status_updated_at", mode="before")
    @classmethod
    def _normalize_updated_at(cls, v: Any) -> str:
        return _clean_timestamp(v) or format_timestamp(utc_now())

    def with_status(
        self,
        status: Any,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> Registration:
        """Copy with a new status; an empty status keeps the current one."""
        return self._replace(
            {
                "status": status or self.status,
                "status_reason": reason_code,
                "status_updated_at": updated_at,
            }
        )


# Fields an update can never touch once a transaction exists.
IMMUTABLE_PAYMENT_FIELDS = ("payment_id", "registration_id", "gateway_reference", "created_at")


class PaymentTransaction(_LedgerRecord):
    """
    One attempt to pay a registration's fee.

    ``gateway_reference`` is the external idempotency key: at most one
    transaction exists per non-empty reference. Empty references only
    occur on legacy/internal records.
    """

    payment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    registration_id: str = ""
    amount: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    status: PaymentTransactionStatus = PaymentTransactionStatus.INITIATED
    created_at: str = Field(default_factory=lambda: format_timestamp(utc_now()))
    confirmed_at: Optional[str] = None
    gateway_reference: str = ""

    @field_validator("payment_id", mode="before")
    @classmethod
    def _ensure_payment_id(cls, v: Any) -> str:
        return _clean_str(v) or str(uuid.uuid4())

    @field_validator("registration_id", "gateway_reference", mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> str:
        return _clean_str(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, v: Any) -> Optional[Decimal]:
        return to_amount(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v: Any) -> str:
        return _clean_str(v).upper() or DEFAULT_CURRENCY

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> PaymentTransactionStatus:
        return normalize_payment_status(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_created_at(cls, v: Any) -> str:
        return _clean_timestamp(v) or format_timestamp(utc_now())

    @field_validator("confirmed_at", mode="before")
    @classmethod
    def _normalize_confirmed_at(cls, v: Any) -> Optional[str]:
        return _clean_timestamp(v)

    @classmethod
    def from_input(cls, payment_input: PaymentTransaction | Mapping[str, Any]) -> PaymentTransaction:
        if isinstance(payment_input, cls):
            return payment_input
        return cls.model_validate(cls._by_field_name(payment_input))

    def with_updates(self, updates: Mapping[str, Any]) -> PaymentTransaction:
        """Apply ``updates``, keeping identity and creation fields untouched."""
        changes = self._by_field_name(updates)
        for name in IMMUTABLE_PAYMENT_FIELDS:
            changes.pop(name, None)
        return self._replace(changes)
