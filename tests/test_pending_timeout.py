"""
Tests for the lazy 24h pending timeout.

No background job exists: a stale pending registration is reverted the
next time anything reads it.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from conference_payments.domain.results import ResultKind
from conference_payments.domain.status_codes import (
    PaymentTransactionStatus,
    RegistrationStatus,
)
from conference_payments.services.audit_trail import AuditEventType
from conference_payments.services.orchestrator import PaymentOrchestrator
from tests.conftest import create_registration


@pytest.fixture
def pending(orchestrator, store):
    """R1 with one in-flight attempt created at the clock's start time."""
    store.save_registration(create_registration())
    return orchestrator.initiate_payment("R1").payment


class TestPendingTimeout:
    @pytest.mark.unit
    def test_stale_pending_reverts_on_read(
        self, orchestrator, store, audit_sink, clock, pending
    ) -> None:
        clock.advance(hours=30)

        result = orchestrator.get_payment_status("R1")

        assert result.registration.status is RegistrationStatus.UNPAID
        assert result.registration.status_reason == "pending_timeout"
        assert result.registration.status_updated_at == "2026-03-02T15:00:00+00:00"
        # The attempt itself is untouched
        assert result.latest_record.status is PaymentTransactionStatus.PENDING_CONFIRMATION
        assert store.get_registration("R1").status_reason == "pending_timeout"

        events = audit_sink.events(AuditEventType.PENDING_TIMEOUT)
        assert len(events) == 1
        assert events[0]["registration_id"] == "R1"
        assert events[0]["payment_id"] == pending.payment_id

    @pytest.mark.unit
    def test_timeout_is_applied_once(self, orchestrator, audit_sink, clock, pending) -> None:
        clock.advance(hours=30)

        orchestrator.get_payment_status("R1")
        orchestrator.get_payment_status("R1")
        orchestrator.get_registration_summary("R1")

        assert len(audit_sink.events(AuditEventType.PENDING_TIMEOUT)) == 1

    @pytest.mark.unit
    def test_exactly_24_hours_is_still_pending(self, orchestrator, clock, pending) -> None:
        clock.advance(hours=24)

        result = orchestrator.get_registration_summary("R1")

        assert result.registration.status is RegistrationStatus.PENDING_CONFIRMATION

    @pytest.mark.unit
    def test_just_past_24_hours_times_out(self, orchestrator, clock, pending) -> None:
        clock.advance(hours=24, seconds=1)

        result = orchestrator.get_registration_summary("R1")

        assert result.registration.status is RegistrationStatus.UNPAID
        assert result.registration.status_reason == "pending_timeout"

    @pytest.mark.unit
    def test_unparsable_timestamp_never_times_out(self, orchestrator, store, audit_sink, clock) -> None:
        store.save_registration(
            create_registration(status="pending_confirmation", status_updated_at="last tuesday")
        )
        clock.advance(days=365)

        result = orchestrator.get_registration_summary("R1")

        assert result.registration.status is RegistrationStatus.PENDING_CONFIRMATION
        assert audit_sink.events(AuditEventType.PENDING_TIMEOUT) == []

    @pytest.mark.unit
    def test_initiate_after_timeout_starts_new_attempt(
        self, orchestrator, store, audit_sink, clock, pending
    ) -> None:
        clock.advance(hours=30)

        result = orchestrator.initiate_payment("R1")

        assert result.kind is ResultKind.INITIATED
        assert result.payment.gateway_reference != pending.gateway_reference
        assert result.registration.status is RegistrationStatus.PENDING_CONFIRMATION
        assert len(store.list_payments_by_registration("R1")) == 2
        assert len(audit_sink.events(AuditEventType.PENDING_TIMEOUT)) == 1

    @pytest.mark.unit
    def test_records_read_reverts(self, orchestrator, clock, pending) -> None:
        clock.advance(hours=48)

        result = orchestrator.get_payment_records("R1")

        assert result.registration.status is RegistrationStatus.UNPAID
        assert [r.payment_id for r in result.records] == [pending.payment_id]

    @pytest.mark.unit
    def test_duplicate_confirmation_reverts_stale_registration(
        self, orchestrator, store, clock
    ) -> None:
        store.save_registration(
            create_registration(
                status="pending_confirmation",
                status_updated_at=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc),
            )
        )
        store.create_payment_record(
            {"registration_id": "R1", "gateway_reference": "gw_settled", "status": "declined"}
        )

        result = orchestrator.confirm_payment("R1", "gw_settled", "succeeded")

        assert result.kind is ResultKind.DUPLICATE
        assert result.registration.status is RegistrationStatus.UNPAID
        assert result.registration.status_reason == "pending_timeout"

    @pytest.mark.unit
    def test_late_confirmation_after_timeout_still_settles(
        self, orchestrator, store, clock, pending
    ) -> None:
        clock.advance(hours=30)
        orchestrator.get_registration_summary("R1")

        result = orchestrator.confirm_payment("R1", pending.gateway_reference, "succeeded")

        assert result.kind is ResultKind.PROCESSED
        assert result.registration.status is RegistrationStatus.PAID_CONFIRMED
        assert store.get_registration("R1").status_reason == ""

    @pytest.mark.unit
    def test_timeout_without_payments_reports_empty_payment_id(
        self, orchestrator, store, audit_sink, clock
    ) -> None:
        store.save_registration(create_registration(status="pending_confirmation"))
        clock.advance(hours=25)

        orchestrator.get_registration_summary("R1")

        assert audit_sink.events(AuditEventType.PENDING_TIMEOUT)[0]["payment_id"] == ""

    @pytest.mark.unit
    def test_failed_update_returns_original_registration(
        self, orchestrator, store, clock, pending, monkeypatch
    ) -> None:
        clock.advance(hours=30)
        monkeypatch.setattr(store, "update_registration_status", lambda *args, **kwargs: None)

        result = orchestrator.get_registration_summary("R1")

        assert result.kind is ResultKind.SUCCESS
        assert result.registration.status is RegistrationStatus.PENDING_CONFIRMATION

    @pytest.mark.unit
    def test_stale_snapshot_does_not_revert_newer_attempt(
        self, orchestrator, store, audit_sink, clock, pending
    ) -> None:
        clock.advance(hours=30)
        stale = store.get_registration("R1")
        retry = orchestrator.initiate_payment("R1")

        result = orchestrator.evaluate_pending_timeout(stale)

        assert retry.kind is ResultKind.INITIATED
        assert result.status is RegistrationStatus.PENDING_CONFIRMATION
        assert store.get_registration("R1").status is RegistrationStatus.PENDING_CONFIRMATION
        assert orchestrator.initiate_payment("R1").kind is ResultKind.PENDING
        assert len(store.list_payments_by_registration("R1")) == 2
        assert len(audit_sink.events(AuditEventType.PENDING_TIMEOUT)) == 1

    @pytest.mark.race
    def test_concurrent_reads_evict_once(self, orchestrator, store, audit_sink, clock, pending) -> None:
        clock.advance(hours=30)
        barrier = threading.Barrier(8)

        def read():
            barrier.wait()
            return orchestrator.get_payment_status("R1")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: read(), range(8)))

        assert all(r.registration.status is RegistrationStatus.UNPAID for r in results)
        assert len(audit_sink.events(AuditEventType.PENDING_TIMEOUT)) == 1

    @pytest.mark.unit
    def test_configurable_window(self, store, clock) -> None:
        orchestrator = PaymentOrchestrator(
            store=store, clock=clock, pending_timeout=timedelta(hours=1)
        )
        store.save_registration(create_registration(status="pending_confirmation"))
        clock.advance(minutes=61)

        assert orchestrator.get_registration_summary("R1").registration.status is (
            RegistrationStatus.UNPAID
        )

    @pytest.mark.unit
    def test_naive_clock_is_treated_as_utc(self, store) -> None:
        orchestrator = PaymentOrchestrator(
            store=store, clock=lambda: datetime(2026, 3, 3, 9, 0)
        )
        registration = create_registration(status="pending_confirmation")

        assert orchestrator.is_pending_timeout(registration)
        assert not orchestrator.is_pending_timeout(create_registration(status="unpaid"))
        assert not orchestrator.is_pending_timeout(None)
