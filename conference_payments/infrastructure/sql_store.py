"""
SQL Ledger Store - SQLAlchemy-backed implementation of the ledger.

Each operation runs in its own short transaction. Gateway-reference
uniqueness is enforced twice: a lookup inside the insert transaction, and
the unique index, which catches a concurrent writer that slipped between
lookup and commit.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from conference_payments.domain.errors import (
    DuplicateGatewayReference,
    InvalidRecord,
    LedgerError,
)
from conference_payments.domain.models import PaymentTransaction, Registration
from conference_payments.domain.status_codes import RegistrationStatus
from conference_payments.infrastructure.database import PaymentTransactionRow, RegistrationRow
from conference_payments.infrastructure.ledger_store import LedgerStoreBase

logger = structlog.get_logger(__name__)


def _registration_from_row(row: RegistrationRow) -> Registration:
    return Registration.model_validate(
        {
            "registration_id": row.registration_id,
            "attendee_id": row.attendee_id,
            "category": row.category,
            "fee_amount": row.fee_amount,
            "status": row.status,
            "status_reason": row.status_reason,
            "status_updated_at": row.status_updated_at,
        }
    )


def _apply_registration(row: RegistrationRow, registration: Registration) -> None:
    row.attendee_id = registration.attendee_id
    row.category = registration.category
    row.fee_amount = registration.fee_amount
    row.status = registration.status.value
    row.status_reason = registration.status_reason
    row.status_updated_at = registration.status_updated_at


def _payment_from_row(row: PaymentTransactionRow) -> PaymentTransaction:
    return PaymentTransaction.model_validate(
        {
            "payment_id": row.payment_id,
            "registration_id": row.registration_id,
            "amount": row.amount,
            "currency": row.currency,
            "status": row.status,
            "created_at": row.created_at,
            "confirmed_at": row.confirmed_at,
            "gateway_reference": row.gateway_reference or "",
        }
    )


def _payment_row(payment: PaymentTransaction) -> PaymentTransactionRow:
    return PaymentTransactionRow(
        payment_id=payment.payment_id,
        registration_id=payment.registration_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        created_at=payment.created_at,
        confirmed_at=payment.confirmed_at,
        gateway_reference=payment.gateway_reference or None,
    )


class SqlLedgerStore(LedgerStoreBase):
    """Ledger store on any SQLAlchemy-supported database."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway_reference_prefix: str = "gw_",
    ):
        super().__init__(gateway_reference_prefix)
        self._session_factory = session_factory

    def get_registration(self, registration_id: str) -> Optional[Registration]:
        key = str(registration_id or "").strip()
        if not key:
            return None
        with self._session_factory() as session:
            row = session.get(RegistrationRow, key)
            return _registration_from_row(row) if row is not None else None

    def save_registration(self, registration: Registration) -> Registration:
        if registration is None or not registration.registration_id:
            raise InvalidRecord("Registration id is required")
        with self._session_factory() as session, session.begin():
            row = session.get(RegistrationRow, registration.registration_id)
            if row is None:
                row = RegistrationRow(registration_id=registration.registration_id)
                session.add(row)
            _apply_registration(row, registration)
        return registration

    def update_registration_status(
        self,
        registration_id: str,
        status: RegistrationStatus | str,
        reason_code: str = "",
        updated_at: Any = None,
    ) -> Optional[Registration]:
        key = str(registration_id or "").strip()
        if not key:
            return None
        with self._session_factory() as session, session.begin():
            row = session.get(RegistrationRow, key)
            if row is None:
                return None
            updated = _registration_from_row(row).with_status(status, reason_code, updated_at)
            _apply_registration(row, updated)
        return updated

    def _reference_exists(self, session: Session, reference: str) -> bool:
        stmt = select(PaymentTransactionRow.id).where(
            PaymentTransactionRow.gateway_reference == reference
        )
        return session.scalar(stmt) is not None

    def create_payment_record(
        self, payment_input: PaymentTransaction | Mapping[str, Any]
    ) -> PaymentTransaction:
        payment = PaymentTransaction.from_input(payment_input)
        reference = payment.gateway_reference

        try:
            with self._session_factory() as session, session.begin():
                if reference and self._reference_exists(session, reference):
                    raise DuplicateGatewayReference(reference)
                session.add(_payment_row(payment))
        except IntegrityError as e:
            with self._session_factory() as session:
                if reference and self._reference_exists(session, reference):
                    raise DuplicateGatewayReference(reference) from e
            logger.error(
                "ledger_store.payment_insert_failed",
                payment_id=payment.payment_id,
                error=str(e.orig),
            )
            raise LedgerError(f"Failed to create payment record {payment.payment_id}") from e

        return payment

    def update_payment_record(
        self, payment_id: str, updates: Mapping[str, Any]
    ) -> Optional[PaymentTransaction]:
        key = str(payment_id or "").strip()
        with self._session_factory() as session, session.begin():
            row = session.scalar(
                select(PaymentTransactionRow).where(PaymentTransactionRow.payment_id == key)
            )
            if row is None:
                return None
            updated = _payment_from_row(row).with_updates(updates or {})
            row.amount = updated.amount
            row.currency = updated.currency
            row.status = updated.status.value
            row.confirmed_at = updated.confirmed_at
        return updated

    def find_payment_by_gateway_reference(self, reference: str) -> Optional[PaymentTransaction]:
        key = str(reference or "").strip()
        if not key:
            return None
        with self._session_factory() as session:
            row = session.scalar(
                select(PaymentTransactionRow).where(PaymentTransactionRow.gateway_reference == key)
            )
            return _payment_from_row(row) if row is not None else None

    def list_payments_by_registration(self, registration_id: str) -> list[PaymentTransaction]:
        key = str(registration_id or "").strip()
        if not key:
            return []
        with self._session_factory() as session:
            rows = session.scalars(
                select(PaymentTransactionRow)
                .where(PaymentTransactionRow.registration_id == key)
                .order_by(PaymentTransactionRow.id)
            ).all()
            return [_payment_from_row(row) for row in rows]
