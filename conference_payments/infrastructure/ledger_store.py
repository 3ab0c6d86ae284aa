"""
Ledger Store - Registrations and Payment Transactions

Three access paths into the same payment records:
1. by payment id (primary key)
2. by registration id (insertion-ordered list, latest-attempt lookup)
3. by gateway reference (idempotency lookup, uniqueness authority)

The store is the ONLY place that enforces gateway-reference uniqueness.
Check and insert happen as one step; no caller ever observes two records
with the same reference.

The one compound write, save_payment_and_registration, is deliberately
ordered and non-atomic:

    1. create payment record      (failure propagates, nothing written)
    2. update registration status (failure logged and swallowed)

The payment record is the append-only source of truth. The registration
status is a derived projection for display and gating, so a failure in
step 2 never undoes step 1.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import structlog

from conference_payments.domain.errors import (
    DuplicateGatewayReference,
    InvalidRecord,
    LedgerError,
)
from conference_payments.domain.models import (
    PaymentTransaction,
    Registration,
    parse_timestamp,
)
from conference_payments.domain.status_codes import RegistrationStatus

logger = structlog.get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PaymentAndRegistration:
    """Result of the ordered compound write."""

    payment: PaymentTransaction
    registration: Optional[Registration]
    consistency: str = "ordered"


class LedgerStore(Protocol):
    """Interface for registration/payment storage (in-memory, SQL, etc.)."""

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        ...

    def save_registration(self, registration: Registration) -> Registration:
        ...

    def update_registration_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> Optional[Registration]:
        """Returns None when the registration does not exist."""
        ...

    def create_payment_record(
        self, payment_input: PaymentTransaction | Mapping[str, Any]
    ) -> PaymentTransaction:
        """Raises DuplicateGatewayReference for an already indexed reference."""
        ...

    def update_payment_record(
        self, payment_id: str, updates: Mapping[str, Any]
    ) -> Optional[PaymentTransaction]:
        ...

    def find_payment_by_gateway_reference(self, reference: str) -> Optional[PaymentTransaction]:
        ...

    def list_payments_by_registration(self, registration_id: str) -> list[PaymentTransaction]:
        ...

    def latest_payment(self, registration_id: str) -> Optional[PaymentTransaction]:
        ...

    def save_payment_and_registration(
        self,
        registration_id: str,
        payment_input: PaymentTransaction | Mapping[str, Any],
        new_status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> PaymentAndRegistration:
        ...

    def generate_gateway_reference(self) -> str:
        ...

    def lock(self, key: str) -> Any:
        """Context manager serializing check-then-act sequences on ``key``."""
        ...


def _clean_id(value: Any) -> str:
    return "" if value is None else str(value).strip()


@dataclass
class _KeyLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class LedgerStoreBase(ABC):
    """
    Behaviour shared by every backend: latest-record selection, the ordered
    compound write, reference generation and keyed locks.

    Subclasses provide the primitive reads and writes.
    """

    def __init__(self, gateway_reference_prefix: str = "gw_"):
        self.gateway_reference_prefix = gateway_reference_prefix
        self._locks: dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    def generate_gateway_reference(self) -> str:
        return f"{self.gateway_reference_prefix}{uuid.uuid4().hex}"

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """
        Hold a per-key re-entrant lock.

        Guards the read-status-then-write sequence of initiate, confirm and
        the pending timeout within one process. Across processes the unique
        gateway reference remains the backstop.

        An entry lives only while a thread holds or waits on it, so keys
        from unknown ids or junk callbacks do not accumulate.
        """
        key = str(key)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    @property
    def active_locks(self) -> int:
        """Number of keys currently held or awaited."""
        with self._locks_guard:
            return len(self._locks)

    @abstractmethod
    def get_registration(self, registration_id: str) -> Optional[Registration]:
        ...

    @abstractmethod
    def save_registration(self, registration: Registration) -> Registration:
        ...

    @abstractmethod
    def update_registration_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> Optional[Registration]:
        ...

    @abstractmethod
    def create_payment_record(
        self, payment_input: PaymentTransaction | Mapping[str, Any]
    ) -> PaymentTransaction:
        ...

    @abstractmethod
    def update_payment_record(
        self, payment_id: str, updates: Mapping[str, Any]
    ) -> Optional[PaymentTransaction]:
        ...

    @abstractmethod
    def find_payment_by_gateway_reference(self, reference: str) -> Optional[PaymentTransaction]:
        ...

    @abstractmethod
    def list_payments_by_registration(self, registration_id: str) -> list[PaymentTransaction]:
        ...

    def latest_payment(self, registration_id: str) -> Optional[PaymentTransaction]:
        """
        Most recent attempt by created_at.

        Unparsable timestamps sort oldest; ties go to the record inserted last.
        """
        records = self.list_payments_by_registration(registration_id)
        if not records:
            return None
        _, latest = max(
            enumerate(records),
            key=lambda item: (parse_timestamp(item[1].created_at) or _EPOCH, item[0]),
        )
        return latest

    def save_payment_and_registration(
        self,
        registration_id: str,
        payment_input: PaymentTransaction | Mapping[str, Any],
        new_status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> PaymentAndRegistration:
        # Step 1: errors (duplicate reference included) go straight to the caller
        payment = self.create_payment_record(payment_input)

        # Step 2: best effort, the payment record stays regardless
        registration: Optional[Registration] = None
        try:
            registration = self.update_registration_status(
                registration_id, new_status, reason_code, updated_at
            )
        except Exception as e:
            logger.warning(
                "ledger_store.registration_update_failed",
                registration_id=registration_id,
                payment_id=payment.payment_id,
                error=str(e) or type(e).__name__,
            )
        else:
            if registration is None:
                logger.warning(
                    "ledger_store.registration_update_failed",
                    registration_id=registration_id,
                    payment_id=payment.payment_id,
                    error="registration_not_found",
                )

        return PaymentAndRegistration(payment=payment, registration=registration)


class InMemoryLedgerStore(LedgerStoreBase):
    """
    In-memory ledger for tests and single-process deployments.

    All maps are guarded by one re-entrant mutex, so the duplicate check
    and the insert in create_payment_record cannot interleave with another
    thread's insert.
    """

    def __init__(self, gateway_reference_prefix: str = "gw_"):
        super().__init__(gateway_reference_prefix)
        self._mutex = threading.RLock()
        self._registrations: dict[str, Registration] = {}
        self._payments_by_id: dict[str, PaymentTransaction] = {}
        self._payments_by_registration: dict[str, list[str]] = {}
        self._payments_by_gateway_reference: dict[str, str] = {}

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        key = _clean_id(registration_id)
        if not key:
            return None
        with self._mutex:
            return self._registrations.get(key)

    def save_registration(self, registration: Registration) -> Registration:
        if registration is None or not registration.registration_id:
            raise InvalidRecord("Registration id is required")
        with self._mutex:
            self._registrations[registration.registration_id] = registration
        return registration

    def update_registration_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> Optional[Registration]:
        key = _clean_id(registration_id)
        with self._mutex:
            existing = self._registrations.get(key) if key else None
            if existing is None:
                return None
            updated = existing.with_status(status, reason_code, updated_at)
            self._registrations[key] = updated
            return updated

    def create_payment_record(
        self, payment_input: PaymentTransaction | Mapping[str, Any]
    ) -> PaymentTransaction:
        payment = PaymentTransaction.from_input(payment_input)
        reference = payment.gateway_reference

        with self._mutex:
            if reference and reference in self._payments_by_gateway_reference:
                logger.info(
                    "ledger_store.duplicate_gateway_reference",
                    gateway_reference=reference,
                    registration_id=payment.registration_id,
                )
                raise DuplicateGatewayReference(reference)
            if payment.payment_id in self._payments_by_id:
                raise LedgerError(f"Duplicate payment id: {payment.payment_id}")

            self._payments_by_id[payment.payment_id] = payment
            if reference:
                self._payments_by_gateway_reference[reference] = payment.payment_id
            if payment.registration_id:
                self._payments_by_registration.setdefault(payment.registration_id, []).append(
                    payment.payment_id
                )

        return payment

    def update_payment_record(
        self, payment_id: str, updates: Mapping[str, Any]
    ) -> Optional[PaymentTransaction]:
        key = _clean_id(payment_id)
        with self._mutex:
            existing = self._payments_by_id.get(key)
            if existing is None:
                return None
            updated = existing.with_updates(updates or {})
            self._payments_by_id[key] = updated
            return updated

    def find_payment_by_gateway_reference(self, reference: str) -> Optional[PaymentTransaction]:
        key = _clean_id(reference)
        if not key:
            return None
        with self._mutex:
            payment_id = self._payments_by_gateway_reference.get(key)
            return self._payments_by_id.get(payment_id) if payment_id else None

    def list_payments_by_registration(self, registration_id: str) -> list[PaymentTransaction]:
        key = _clean_id(registration_id)
        if not key:
            return []
        with self._mutex:
            return [
                self._payments_by_id[payment_id]
                for payment_id in self._payments_by_registration.get(key, [])
                if payment_id in self._payments_by_id
            ]
