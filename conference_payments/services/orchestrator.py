"""
Payment Orchestrator - Registration Payment State Machine

Flow for one registration:
1. initiate_payment: unpaid → pending_confirmation (new transaction + gateway reference)
2. confirm_payment: gateway callback settles the transaction
   succeeded → paid_confirmed
   declined  → unpaid (reason "declined")
   failed    → unpaid (reason "invalid_details")
3. Lazy timeout: pending_confirmation older than 24h → unpaid (reason "pending_timeout")

Gateway callbacks are delivered at least once. For a fixed gateway
reference exactly one transaction ever exists, and once it is settled
every further confirmation is a recorded no-op for the payment. A
redelivery still repairs a registration whose write was lost after its
payment succeeded.

Locks are always taken gateway reference first, then registration.

The orchestrator holds no mutable state; everything lives in the ledger
store. Time comes from an injected clock so the 24h window can be tested
deterministically.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from conference_payments.domain.errors import DuplicateGatewayReference
from conference_payments.domain.models import (
    DEFAULT_CURRENCY,
    PaymentTransaction,
    Registration,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from conference_payments.domain.results import PaymentResult, ResultKind
from conference_payments.domain.status_codes import (
    REASON_PENDING_TIMEOUT,
    PaymentTransactionStatus,
    RegistrationStatus,
    normalize_payment_status,
    registration_status_for_payment,
)
from conference_payments.infrastructure.ledger_store import LedgerStore

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

PENDING_TIMEOUT = timedelta(hours=24)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, PaymentTransactionStatus):
        return value.value
    return str(value).strip()


class PaymentOrchestrator:
    """
    Drives registration payments through initiate, confirm and status reads.

    Audit trail and error logger are optional collaborators; a failure in
    either never changes an operation's result.
    """

    def __init__(
        self,
        store: LedgerStore,
        audit: Optional[Any] = None,
        error_logger: Optional[Any] = None,
        clock: Optional[Clock] = None,
        pending_timeout: timedelta = PENDING_TIMEOUT,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        if store is None:
            raise ValueError("store is required")
        self.store = store
        self.audit = audit
        self.error_logger = error_logger
        self.clock: Clock = clock or utc_now
        self.pending_timeout = pending_timeout
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _emit(self, method: str, **fields: Any) -> None:
        if self.audit is None:
            return
        handler = getattr(self.audit, method, None)
        if handler is None:
            return
        try:
            handler(**fields)
        except Exception as e:
            logger.warning("payment_orchestrator.audit_failed", audit_method=method, error=str(e))

    def _report_error(self, registration_id: str, reason: str, error: Exception) -> None:
        error_code = getattr(error, "code", None)
        logger.error(
            "payment_orchestrator.store_failure",
            registration_id=registration_id,
            reason=reason,
            error_code=error_code,
            error_type=type(error).__name__,
        )
        if self.error_logger is None:
            return
        try:
            self.error_logger.log_payment_error(
                registration_id=registration_id,
                reason=reason,
                error_code=error_code,
            )
        except Exception as e:
            logger.warning("payment_orchestrator.error_logger_failed", error=str(e))

    def _log_event(self, event: str, details: dict[str, Any]) -> None:
        if self.error_logger is None or not hasattr(self.error_logger, "log_payment_event"):
            return
        try:
            self.error_logger.log_payment_event(event, details)
        except Exception as e:
            logger.warning("payment_orchestrator.error_logger_failed", error=str(e))

    def _update_registration(
        self,
        registration_id: str,
        status: RegistrationStatus,
        reason_code: str,
        updated_at: str,
    ) -> Optional[Registration]:
        """
        Best-effort registration write after the payment record is settled.

        The payment is the source of truth; a lost write here is repaired
        on the next redelivery of the same callback.
        """
        try:
            return self.store.update_registration_status(
                registration_id, status, reason_code, updated_at
            )
        except Exception as e:
            logger.warning(
                "payment_orchestrator.registration_update_failed",
                registration_id=registration_id,
                registration_status=status.value,
                error=str(e) or type(e).__name__,
            )
            return None

    def _reconcile_settled(
        self, payment: PaymentTransaction, registration: Registration
    ) -> Registration:
        """
        Move a registration to paid_confirmed when its succeeded payment
        says so but the registration write was lost.
        """
        if (
            payment.status is not PaymentTransactionStatus.SUCCEEDED
            or registration.status is RegistrationStatus.PAID_CONFIRMED
        ):
            return registration

        updated = self._update_registration(
            registration.registration_id,
            RegistrationStatus.PAID_CONFIRMED,
            "",
            format_timestamp(self._now()),
        )
        if updated is None:
            return registration

        logger.info(
            "payment_orchestrator.registration_reconciled",
            registration_id=registration.registration_id,
            payment_id=payment.payment_id,
            previous_status=registration.status.value,
        )
        self._log_event(
            "registration_reconciled",
            {
                "registration_id": registration.registration_id,
                "payment_id": payment.payment_id,
                "gateway_reference": payment.gateway_reference,
                "previous_status": registration.status.value,
            },
        )
        return updated

    def _emit_settlement(
        self,
        new_status: RegistrationStatus,
        reason_code: str,
        registration_id: str,
        payment_id: str,
        gateway_reference: str,
        actor_id: str,
    ) -> None:
        if new_status is RegistrationStatus.PAID_CONFIRMED:
            self._emit(
                "log_payment_confirmed",
                registration_id=registration_id,
                payment_id=payment_id,
                gateway_reference=gateway_reference,
                actor_id=actor_id,
            )
        else:
            self._emit(
                "log_payment_failed",
                registration_id=registration_id,
                payment_id=payment_id,
                gateway_reference=gateway_reference,
                reason_code=reason_code,
                actor_id=actor_id,
            )

    # ------------------------------------------------------------------
    # Pending timeout
    # ------------------------------------------------------------------

    def is_pending_timeout(self, registration: Optional[Registration]) -> bool:
        """True when a pending registration has waited longer than the timeout."""
        if registration is None or registration.status is not RegistrationStatus.PENDING_CONFIRMATION:
            return False
        updated_at = parse_timestamp(registration.status_updated_at)
        if updated_at is None:
            # Unreadable timestamp: leave the state alone
            return False
        return self._now() - updated_at > self.pending_timeout

    def evaluate_pending_timeout(self, registration: Registration) -> Registration:
        """
        Revert a stalled pending registration to unpaid.

        Every read path goes through here before looking at status. The
        write happens under the registration lock against a fresh read, so
        a stale snapshot never reverts an attempt started after it was taken.
        """
        if not self.is_pending_timeout(registration):
            return registration

        registration_id = registration.registration_id
        with self.store.lock(f"registration:{registration_id}"):
            current = self.store.get_registration(registration_id)
            if current is None:
                return registration
            if not self.is_pending_timeout(current):
                return current

            updated = self.store.update_registration_status(
                registration_id,
                RegistrationStatus.UNPAID,
                REASON_PENDING_TIMEOUT,
                format_timestamp(self._now()),
            )
            latest = self.store.latest_payment(registration_id)

        logger.info(
            "payment_orchestrator.pending_timeout",
            registration_id=registration_id,
            stale_since=current.status_updated_at,
        )
        self._emit(
            "log_pending_timeout",
            registration_id=registration_id,
            payment_id=latest.payment_id if latest else "",
        )
        return updated or current

    def _load(self, registration_id: Any) -> Optional[Registration]:
        registration = self.store.get_registration(_text(registration_id))
        if registration is None:
            return None
        return self.evaluate_pending_timeout(registration)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_registration_summary(self, registration_id: str) -> PaymentResult:
        registration = self._load(registration_id)
        if registration is None:
            return PaymentResult(ResultKind.NOT_FOUND)
        return PaymentResult(ResultKind.SUCCESS, registration=registration)

    def get_payment_status(self, registration_id: str) -> PaymentResult:
        registration = self._load(registration_id)
        if registration is None:
            return PaymentResult(ResultKind.NOT_FOUND)
        return PaymentResult(
            ResultKind.SUCCESS,
            registration=registration,
            latest_record=self.store.latest_payment(registration.registration_id),
        )

    def get_payment_records(self, registration_id: str) -> PaymentResult:
        registration = self._load(registration_id)
        if registration is None:
            return PaymentResult(ResultKind.NOT_FOUND)
        return PaymentResult(
            ResultKind.SUCCESS,
            registration=registration,
            records=self.store.list_payments_by_registration(registration.registration_id),
        )

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    def initiate_payment(self, registration_id: str, actor_id: str = "") -> PaymentResult:
        """
        Start a payment attempt.

        Never creates a second in-flight transaction: a pending or paid
        registration returns its latest record instead.
        """
        registration_id = _text(registration_id)
        actor_id = _text(actor_id)

        with self.store.lock(f"registration:{registration_id}"):
            registration = self._load(registration_id)
            if registration is None:
                return PaymentResult(ResultKind.NOT_FOUND)

            if registration.status is RegistrationStatus.PAID_CONFIRMED:
                return PaymentResult(
                    ResultKind.ALREADY_PAID,
                    registration=registration,
                    latest_record=self.store.latest_payment(registration_id),
                )

            if registration.status is RegistrationStatus.PENDING_CONFIRMATION:
                return PaymentResult(
                    ResultKind.PENDING,
                    registration=registration,
                    latest_record=self.store.latest_payment(registration_id),
                )

            try:
                created_at = format_timestamp(self._now())
                payment_input = PaymentTransaction(
                    registration_id=registration_id,
                    amount=registration.fee_amount,
                    currency=self.default_currency,
                    status=PaymentTransactionStatus.PENDING_CONFIRMATION,
                    created_at=created_at,
                    gateway_reference=self.store.generate_gateway_reference(),
                )
                saved = self.store.save_payment_and_registration(
                    registration_id,
                    payment_input,
                    RegistrationStatus.PENDING_CONFIRMATION,
                    "",
                    created_at,
                )
            except Exception as e:
                self._report_error(registration_id, "initiation_failed", e)
                return PaymentResult(ResultKind.SERVICE_UNAVAILABLE, error="service_unavailable")

        logger.info(
            "payment_orchestrator.initiated",
            registration_id=registration_id,
            payment_id=saved.payment.payment_id,
            gateway_reference=saved.payment.gateway_reference,
        )
        self._emit(
            "log_payment_initiated",
            registration_id=registration_id,
            payment_id=saved.payment.payment_id,
            amount=saved.payment.amount,
            gateway_reference=saved.payment.gateway_reference,
            actor_id=actor_id,
        )
        return PaymentResult(
            ResultKind.INITIATED,
            registration=saved.registration or registration,
            payment=saved.payment,
        )

    # ------------------------------------------------------------------
    # Confirm (gateway callback)
    # ------------------------------------------------------------------

    def confirm_payment(
        self,
        registration_id: str,
        gateway_reference: str,
        status: Optional[str] = None,
        actor_id: str = "",
    ) -> PaymentResult:
        """
        Apply a gateway callback. Safe to call any number of times.

        Outcomes: processed, duplicate (already settled, payment untouched),
        validation_error, not_found, service_unavailable.
        """
        reference = _text(gateway_reference)
        registration_id = _text(registration_id)
        actor_id = _text(actor_id)

        if not reference or not registration_id:
            return PaymentResult(ResultKind.VALIDATION_ERROR, error="missing_parameters")

        with self.store.lock(f"gateway:{reference}"):
            try:
                existing = self.store.find_payment_by_gateway_reference(reference)
                if existing is not None:
                    return self._confirm_existing(existing, status, actor_id)
                return self._confirm_new(registration_id, reference, status, actor_id)
            except Exception as e:
                self._report_error(registration_id, "confirmation_failed", e)
                return PaymentResult(ResultKind.SERVICE_UNAVAILABLE, error="service_unavailable")

    def _confirm_existing(
        self,
        existing: PaymentTransaction,
        status: Optional[str],
        actor_id: str,
    ) -> PaymentResult:
        registration_id = existing.registration_id
        with self.store.lock(f"registration:{registration_id}"):
            registration = self.store.get_registration(registration_id)
            if registration is None:
                return PaymentResult(ResultKind.NOT_FOUND)

            if existing.status.is_settled:
                logger.info(
                    "payment_orchestrator.duplicate_confirmation",
                    registration_id=registration_id,
                    payment_id=existing.payment_id,
                    gateway_reference=existing.gateway_reference,
                )
                self._emit(
                    "log_duplicate_confirmation",
                    registration_id=registration_id,
                    payment_id=existing.payment_id,
                    gateway_reference=existing.gateway_reference,
                )
                registration = self._reconcile_settled(existing, registration)
                return PaymentResult(
                    ResultKind.DUPLICATE,
                    registration=self.evaluate_pending_timeout(registration),
                    payment=existing,
                )

            payment_status = normalize_payment_status(
                _text(status) or _text(existing.status) or PaymentTransactionStatus.SUCCEEDED.value
            )
            new_status, reason_code = registration_status_for_payment(payment_status)
            confirmed_at = format_timestamp(self._now())

            # Payment first; its failure propagates and nothing else is written
            payment = self.store.update_payment_record(
                existing.payment_id,
                {"status": payment_status, "confirmed_at": confirmed_at},
            )
            updated = self._update_registration(
                registration_id, new_status, reason_code, confirmed_at
            )

        logger.info(
            "payment_orchestrator.confirmation_processed",
            registration_id=registration_id,
            payment_id=existing.payment_id,
            payment_status=payment_status.value,
            registration_status=new_status.value,
        )
        self._emit_settlement(
            new_status,
            reason_code,
            registration_id,
            existing.payment_id,
            existing.gateway_reference,
            actor_id,
        )
        return PaymentResult(
            ResultKind.PROCESSED,
            registration=updated or registration,
            payment=payment or existing,
        )

    def _confirm_new(
        self,
        registration_id: str,
        reference: str,
        status: Optional[str],
        actor_id: str,
    ) -> PaymentResult:
        try:
            with self.store.lock(f"registration:{registration_id}"):
                return self._record_first_sighting(registration_id, reference, status, actor_id)
        except DuplicateGatewayReference:
            # Another writer created this reference first; treat as redelivery
            existing = self.store.find_payment_by_gateway_reference(reference)
            if existing is None:
                raise
            return self._confirm_existing(existing, status, actor_id)

    def _record_first_sighting(
        self,
        registration_id: str,
        reference: str,
        status: Optional[str],
        actor_id: str,
    ) -> PaymentResult:
        registration = self.store.get_registration(registration_id)
        if registration is None:
            return PaymentResult(ResultKind.NOT_FOUND)

        # No status on a first sighting is read as success
        payment_status = normalize_payment_status(
            _text(status) or PaymentTransactionStatus.SUCCEEDED.value
        )
        new_status, reason_code = registration_status_for_payment(payment_status)
        confirmed_at = format_timestamp(self._now())

        payment_input = PaymentTransaction(
            registration_id=registration_id,
            amount=registration.fee_amount,
            currency=self.default_currency,
            status=payment_status,
            created_at=confirmed_at,
            confirmed_at=confirmed_at,
            gateway_reference=reference,
        )
        saved = self.store.save_payment_and_registration(
            registration_id, payment_input, new_status, reason_code, confirmed_at
        )

        logger.info(
            "payment_orchestrator.confirmation_recorded",
            registration_id=registration_id,
            payment_id=saved.payment.payment_id,
            payment_status=payment_status.value,
            registration_status=new_status.value,
        )
        self._emit_settlement(
            new_status,
            reason_code,
            registration_id,
            saved.payment.payment_id,
            reference,
            actor_id,
        )
        return PaymentResult(
            ResultKind.PROCESSED,
            registration=saved.registration or registration,
            payment=saved.payment,
        )
