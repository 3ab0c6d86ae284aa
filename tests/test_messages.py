"""
Tests for the status translator.
"""

from decimal import Decimal

import pytest

from conference_payments.domain.models import PaymentTransaction
from conference_payments.domain.status_codes import RegistrationStatus
from conference_payments.services.messages import StatusTranslator
from tests.conftest import create_registration


@pytest.fixture
def translator():
    return StatusTranslator()


class TestLabels:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "code, label",
        [
            ("unpaid", "Unpaid"),
            ("pending_confirmation", "Pending Confirmation"),
            (RegistrationStatus.PAID_CONFIRMED, "Paid/Confirmed"),
            (None, "Unpaid"),
            ("refunded", "Unknown"),
        ],
    )
    def test_registration_labels(self, translator, code, label) -> None:
        assert translator.status_label_for_registration(code) == label

    @pytest.mark.unit
    def test_payment_labels(self, translator) -> None:
        assert translator.status_label_for_payment("declined") == "Declined"
        assert translator.status_label_for_payment("chargeback") == "Unknown"

    @pytest.mark.unit
    def test_label_overrides(self) -> None:
        translator = StatusTranslator(labels={"registration": {"paid_confirmed": "Paid"}})

        assert translator.status_label_for_registration("paid_confirmed") == "Paid"
        assert translator.status_label_for_registration("unpaid") == "Unpaid"


class TestMessages:
    @pytest.mark.unit
    def test_reason_message_wins_over_status_message(self, translator) -> None:
        assert translator.status_message_for_registration("unpaid", "pending_timeout") == (
            "Payment confirmation timed out. Please retry your payment."
        )
        assert translator.status_message_for_registration("unpaid") == (
            "Payment has not been completed."
        )

    @pytest.mark.unit
    def test_known_error_codes(self, translator) -> None:
        declined = translator.error_for_code("declined")
        already_paid = translator.error_for_code("not_eligible_already_paid")

        assert declined.can_retry is True
        assert declined.code == "declined"
        assert already_paid.can_retry is False

    @pytest.mark.unit
    def test_unknown_error_code_falls_back(self, translator) -> None:
        error = translator.error_for_code("teapot")

        assert error.message == "Something went wrong. Please try again."
        assert error.can_retry is True
        assert error.code == "teapot"
        assert translator.error_for_code(None).code is None


class TestResponses:
    @pytest.mark.unit
    def test_status_response_for_timed_out_registration(self, translator) -> None:
        registration = create_registration(
            status="unpaid",
            status_reason="pending_timeout",
            status_updated_at="2026-03-02T15:00:00+00:00",
        )

        response = translator.build_status_response(registration)

        assert response.registration_id == "R1"
        assert response.status_code == "unpaid"
        assert response.status_label == "Unpaid"
        assert response.last_updated_at == "2026-03-02T15:00:00+00:00"
        assert response.reason_code == "pending_timeout"
        assert response.message == "Payment confirmation timed out. Please retry your payment."

    @pytest.mark.unit
    def test_status_response_without_registration(self, translator) -> None:
        assert translator.build_status_response(None) is None

    @pytest.mark.unit
    def test_explicit_message_is_kept(self, translator) -> None:
        response = translator.build_status_response(
            create_registration(status="paid_confirmed"), message="See you there!"
        )

        assert response.reason_code is None
        assert response.message == "See you there!"

    @pytest.mark.unit
    def test_record_view_hides_internal_ids(self, translator) -> None:
        record = PaymentTransaction(
            registration_id="R1",
            amount="200",
            status="succeeded",
            created_at="2026-03-01T09:00:00+00:00",
            confirmed_at="2026-03-01T09:05:00+00:00",
            gateway_reference="gw_1",
        )

        view = translator.record_view(record).model_dump()

        assert view == {
            "amount": Decimal("200"),
            "currency": "USD",
            "status": "succeeded",
            "created_at": "2026-03-01T09:00:00+00:00",
            "confirmed_at": "2026-03-01T09:05:00+00:00",
            "gateway_reference": "gw_1",
        }
