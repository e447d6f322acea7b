"""
Tests for webhook handlers.

Tests cover:
- Handler registry and dispatch
- charge.success / charge.failed
- transfer.success / transfer.failed / transfer.reversed
- refund.processed
"""

import pytest

from core.services import ServiceResult
from escrow.exceptions import ReferenceNotFoundError, StateTransitionError
from escrow.models import Payment, Payout, ReconciliationDiscrepancy
from escrow.services import WebhookPipeline
from escrow.state_machines import DiscrepancyKind, PaymentStatus, PayoutStatus
from escrow.tests.factories import PaymentFactory, WebhookEventFactory
from escrow.tests.paystack import verify_result
from escrow.webhooks.handlers import (
    IGNORED_EVENT_NOTE,
    WEBHOOK_HANDLERS,
    dispatch_webhook,
    register_handler,
    verify_result_from_payload,
)


@pytest.fixture
def context(gateway):
    """Handler context built the way the pipeline builds it."""
    return WebhookPipeline(gateway).context


def make_event(event_type, reference, **data):
    return WebhookEventFactory(
        event_type=event_type,
        gateway_reference=reference,
        payload={"event": event_type, "data": {"reference": reference, **data}},
    )


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_known_events_registered(self):
        for event_type in (
            "charge.success",
            "charge.failed",
            "transfer.success",
            "transfer.failed",
            "transfer.reversed",
            "refund.processed",
        ):
            assert event_type in WEBHOOK_HANDLERS

    def test_unknown_event_is_ignored(self, db, context):
        result = dispatch_webhook(make_event("subscription.create", "SUB_1"), context)

        assert result.success is True
        assert result.data == IGNORED_EVENT_NOTE

    def test_register_handler(self, db, context):
        calls = []

        @register_handler("test.custom")
        def handle_custom(webhook_event, context):
            calls.append(webhook_event.gateway_reference)
            return ServiceResult.success(None)

        try:
            dispatch_webhook(make_event("test.custom", "REF_1"), context)
        finally:
            WEBHOOK_HANDLERS.pop("test.custom")

        assert calls == ["REF_1"]

    def test_verify_result_from_payload(self):
        result = verify_result_from_payload(
            {"reference": "ESC_1", "amount": "100000", "id": 9, "metadata": None},
            status="success",
        )

        assert result.amount_cents == 100000
        assert result.transaction_id == "9"
        assert result.metadata == {}
        assert result.is_successful


# =============================================================================
# Charges
# =============================================================================


class TestChargeHandlers:
    def test_charge_success_verifies_with_gateway(self, pending_payment, context, gateway):
        gateway.verify.return_value = verify_result(pending_payment)
        event = make_event("charge.success", pending_payment.gateway_reference, status="success", amount=100000)

        result = dispatch_webhook(event, context)

        assert result.success is True
        gateway.verify.assert_called_once_with(pending_payment.gateway_reference)
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.ESCROW

    def test_charge_success_from_payload(self, pending_payment, context, gateway, settings):
        settings.ESCROW_VERIFY_CHARGES_ON_WEBHOOK = False
        event = make_event("charge.success", pending_payment.gateway_reference, status="success", amount=100000)

        result = dispatch_webhook(event, context)

        assert result.success is True
        gateway.verify.assert_not_called()
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.ESCROW

    def test_charge_success_wrong_amount(self, pending_payment, context, settings):
        settings.ESCROW_VERIFY_CHARGES_ON_WEBHOOK = False
        event = make_event("charge.success", pending_payment.gateway_reference, status="success", amount=100)

        result = dispatch_webhook(event, context)

        assert result.success is False
        assert result.error_code == "AMOUNT_MISMATCH"
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING

    def test_charge_success_unknown_reference(self, db, context):
        with pytest.raises(ReferenceNotFoundError):
            dispatch_webhook(make_event("charge.success", "ESC_nope"), context)

    def test_charge_failed(self, pending_payment, context):
        event = make_event(
            "charge.failed",
            pending_payment.gateway_reference,
            status="failed",
            gateway_response="Insufficient funds",
        )

        dispatch_webhook(event, context)

        payment = Payment.objects.get(pk=pending_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.error_message == "Insufficient funds"

    def test_charge_failed_after_escrow_is_rejected(self, escrowed_payment, context):
        """An escrowed charge cannot be failed by a late notification."""
        event = make_event("charge.failed", escrowed_payment.gateway_reference, status="failed")

        with pytest.raises(StateTransitionError):
            dispatch_webhook(event, context)

        assert Payment.objects.get(pk=escrowed_payment.pk).status == PaymentStatus.ESCROW


# =============================================================================
# Transfers
# =============================================================================


class TestTransferHandlers:
    def test_transfer_success_releases(self, releasing_payout, context):
        event = make_event(
            "transfer.success",
            releasing_payout.transfer_reference,
            status="success",
            transfer_code="TRF_existing",
        )

        result = dispatch_webhook(event, context)

        assert result.success is True
        assert result.data.status == PayoutStatus.COMPLETED
        assert Payment.objects.get(pk=releasing_payout.payment_id).status == PaymentStatus.RELEASED

    def test_transfer_success_unknown_payout(self, db, context):
        with pytest.raises(ReferenceNotFoundError):
            dispatch_webhook(make_event("transfer.success", "PAYOUT_nope"), context)

    @pytest.mark.parametrize("event_type", ["transfer.failed", "transfer.reversed"])
    def test_transfer_failure_needs_manual_review(self, releasing_payout, context, event_type):
        """Under the default policy the payment stays PROCESSING_RELEASE."""
        event = make_event(
            event_type,
            releasing_payout.transfer_reference,
            status=event_type.split(".")[1],
            reason="Account closed",
        )

        result = dispatch_webhook(event, context)

        payout = Payout.objects.get(pk=releasing_payout.pk)
        assert result.success is True
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "Account closed"
        assert Payment.objects.get(pk=releasing_payout.payment_id).status == PaymentStatus.PROCESSING_RELEASE
        assert ReconciliationDiscrepancy.objects.filter(payment_id=releasing_payout.payment_id).exists()

    def test_transfer_failure_without_reason(self, releasing_payout, context):
        event = make_event("transfer.failed", releasing_payout.transfer_reference)

        dispatch_webhook(event, context)

        assert Payout.objects.get(pk=releasing_payout.pk).failure_reason == "Transfer failed"

    def test_reversal_after_completion_is_flagged(self, releasing_payout, context):
        """Should keep the payment RELEASED and leave the reversal for review."""
        reference = releasing_payout.transfer_reference
        dispatch_webhook(make_event("transfer.success", reference, status="success"), context)
        reversal = make_event("transfer.reversed", reference, status="reversed")

        with pytest.raises(StateTransitionError):
            dispatch_webhook(reversal, context)

        assert Payout.objects.get(pk=releasing_payout.pk).status == PayoutStatus.COMPLETED
        assert Payment.objects.get(pk=releasing_payout.payment_id).status == PaymentStatus.RELEASED
        discrepancy = ReconciliationDiscrepancy.objects.get(payment_id=releasing_payout.payment_id)
        assert discrepancy.kind == DiscrepancyKind.TRANSFER_REVERSED
        assert discrepancy.gateway_status == "reversed"


# =============================================================================
# Refunds
# =============================================================================


class TestRefundHandler:
    def test_refund_processed(self, escrowed_payment, context):
        event = WebhookEventFactory(
            event_type="refund.processed",
            gateway_reference=escrowed_payment.gateway_reference,
            payload={
                "event": "refund.processed",
                "data": {"transaction_reference": escrowed_payment.gateway_reference, "status": "processed"},
            },
        )

        dispatch_webhook(event, context)

        payment = Payment.objects.get(pk=escrowed_payment.pk)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_at is not None

    def test_refund_for_released_payment_is_rejected(self, db, context):
        payment = PaymentFactory(status=PaymentStatus.RELEASED)

        with pytest.raises(StateTransitionError):
            dispatch_webhook(make_event("refund.processed", payment.gateway_reference), context)
