"""
End-to-end tests for the escrow flow.

Each test drives the system the way production does: API calls from the
client, signed Paystack webhooks through the HTTP endpoint, and the
reconciliation task. Only the Paystack API itself is faked.

Scenarios:
    - Booking paid, charge.success webhook, payment held in escrow
    - Duplicate charge.success delivery is a no-op
    - Release, transfer.success webhook, payment released
    - Payment stuck PENDING healed by reconciliation exactly once
    - Webhook and reconciliation racing for the same transition
    - Transfer failure waiting for an administrator
"""

from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking, BookingStatus
from bookings.services import submit_completion_proof
from escrow.gateway import GatewayConfig, PaystackClient
from escrow.models import Payment, Payout, ReconciliationDiscrepancy, WebhookEvent
from escrow.state_machines import PaymentStatus, PayoutStatus, WebhookEventStatus
from escrow.tasks import reconcile_stale_payments
from escrow.tests.paystack import WEBHOOK_SECRET, sign, transfer_result, verify_result, webhook_body


@pytest.fixture(autouse=True)
def wired_gateway(gateway, mocker):
    """One gateway double for views, webhooks and tasks, with real signature checks."""
    real = PaystackClient(GatewayConfig(secret_key=WEBHOOK_SECRET))
    gateway.verify_webhook_signature.side_effect = real.verify_webhook_signature
    for target in (
        "escrow.views.get_gateway_client",
        "escrow.webhooks.views.get_gateway_client",
        "escrow.tasks.get_gateway_client",
    ):
        mocker.patch(target, return_value=gateway)
    return gateway


def api_as(user):
    api = APIClient()
    api.force_authenticate(user=user)
    return api


def deliver(event, **data):
    """POST a signed Paystack notification to the webhook endpoint."""
    body = webhook_body(event, **data)
    return APIClient().post(
        reverse("escrow:payment-webhook"),
        data=body,
        content_type="application/json",
        HTTP_X_PAYSTACK_SIGNATURE=sign(body),
    )


def pay_for(booking):
    response = api_as(booking.client).post(
        reverse("escrow:initiate-payment", kwargs={"booking_id": booking.pk}),
        {"callback_url": "https://app.example.com/paid"},
        format="json",
    )
    assert response.status_code == 201
    return Payment.objects.get(pk=response.data["payment_id"])


class TestEscrowLifecycle:
    def test_payment_reaches_escrow(self, booking, wired_gateway):
        """Booking paid for R1000 with a 10% fee; charge.success holds R900 in escrow."""
        payment = pay_for(booking)

        assert payment.status == PaymentStatus.PENDING
        assert payment.escrow_amount_cents == 90000
        assert payment.platform_fee_cents == 10000

        wired_gateway.verify.return_value = verify_result(payment)
        response = deliver("charge.success", reference=payment.gateway_reference, status="success", amount=100000)

        assert response.status_code == 200
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.ESCROW
        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.PENDING_EXECUTION

    def test_duplicate_charge_success_is_noop(self, booking, wired_gateway):
        """A second delivery changes nothing and creates no payout."""
        payment = pay_for(booking)
        wired_gateway.verify.return_value = verify_result(payment)

        first = deliver("charge.success", reference=payment.gateway_reference, status="success")
        escrowed = Payment.objects.get(pk=payment.pk)
        second = deliver("charge.success", reference=payment.gateway_reference, status="success")

        assert first.status_code == second.status_code == 200
        assert second.content == b"Already processed"
        stored = Payment.objects.get(pk=payment.pk)
        assert stored.status == PaymentStatus.ESCROW
        assert stored.paid_at == escrowed.paid_at
        assert not Payout.objects.filter(payment=payment).exists()
        assert WebhookEvent.objects.filter(gateway_reference=payment.gateway_reference).count() == 1

    def test_release_and_transfer_success(self, booking, recipient, wired_gateway):
        """Release starts the payout; transfer.success completes it and releases the payment."""
        payment = pay_for(booking)
        wired_gateway.verify.return_value = verify_result(payment)
        deliver("charge.success", reference=payment.gateway_reference, status="success")
        submit_completion_proof(Booking.objects.get(pk=booking.pk), booking.provider, notes="Done")

        response = api_as(booking.client).post(
            reverse("escrow:release-escrow", kwargs={"payment_id": payment.pk})
        )

        assert response.status_code == 200
        payout = Payout.objects.get(payment=payment)
        assert payout.status in (PayoutStatus.PENDING, PayoutStatus.PROCESSING)
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.PROCESSING_RELEASE
        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.PAID

        deliver(
            "transfer.success",
            reference=payout.transfer_reference,
            status="success",
            transfer_code=payout.transfer_code,
        )

        assert Payout.objects.get(pk=payout.pk).status == PayoutStatus.COMPLETED
        released = Payment.objects.get(pk=payment.pk)
        assert released.status == PaymentStatus.RELEASED
        assert released.released_at is not None
        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.COMPLETED

    def test_refund_flow(self, escrowed_payment, admin_user, wired_gateway):
        from escrow.gateway import RefundResult

        wired_gateway.refund.return_value = RefundResult(status="pending")

        response = api_as(admin_user).post(
            reverse("escrow:refund-payment", kwargs={"payment_id": escrowed_payment.pk}),
            {"reason": "Provider cancelled"},
            format="json",
        )
        deliver("refund.processed", transaction_reference=escrowed_payment.gateway_reference, status="processed")

        assert response.status_code == 202
        assert Payment.objects.get(pk=escrowed_payment.pk).status == PaymentStatus.REFUNDED


class TestReconciliationHealing:
    def test_stuck_pending_payment_heals_once(self, pending_payment, wired_gateway):
        """A payment stuck PENDING for 10 minutes whose charge succeeded moves to ESCROW once."""
        Payment.objects.filter(pk=pending_payment.pk).update(updated_at=timezone.now() - timedelta(minutes=10))
        wired_gateway.verify.return_value = verify_result(pending_payment)

        first = reconcile_stale_payments(stale_minutes=5)
        second = reconcile_stale_payments(stale_minutes=5)

        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.ESCROW
        assert first["transitions_applied"] == 1
        assert second["transitions_applied"] == 0

    def test_late_webhook_after_reconciliation(self, pending_payment, wired_gateway):
        """The webhook that lost the race is acknowledged and changes nothing."""
        Payment.objects.filter(pk=pending_payment.pk).update(updated_at=timezone.now() - timedelta(minutes=10))
        wired_gateway.verify.return_value = verify_result(pending_payment)
        reconcile_stale_payments(stale_minutes=5)
        escrowed = Payment.objects.get(pk=pending_payment.pk)

        response = deliver("charge.success", reference=pending_payment.gateway_reference, status="success")

        assert response.status_code == 200
        stored = Payment.objects.get(pk=pending_payment.pk)
        assert stored.status == PaymentStatus.ESCROW
        assert stored.paid_at == escrowed.paid_at
        assert WebhookEvent.objects.get().status == WebhookEventStatus.PROCESSED

    def test_lost_transfer_webhook_healed(self, releasing_payout, wired_gateway):
        Payment.objects.filter(pk=releasing_payout.payment_id).update(
            updated_at=timezone.now() - timedelta(minutes=30)
        )
        wired_gateway.verify_transfer.return_value = transfer_result(releasing_payout)

        result = reconcile_stale_payments(stale_minutes=10)

        assert result["transitions_applied"] == 1
        assert Payment.objects.get(pk=releasing_payout.payment_id).status == PaymentStatus.RELEASED


class TestTransferFailure:
    def test_failed_transfer_waits_for_administrator(self, releasing_payout, admin_user, wired_gateway):
        """transfer.failed leaves the payment PROCESSING_RELEASE until an admin resolves it."""
        deliver(
            "transfer.failed",
            reference=releasing_payout.transfer_reference,
            status="failed",
            reason="Account closed",
        )

        payment = Payment.objects.get(pk=releasing_payout.payment_id)
        assert payment.status == PaymentStatus.PROCESSING_RELEASE
        assert ReconciliationDiscrepancy.objects.filter(payment=payment, resolved=False).exists()

        response = api_as(admin_user).post(
            reverse("escrow:resolve-release", kwargs={"payment_id": payment.pk}),
            {"resolution": "retry_transfer", "notes": "New account verified"},
            format="json",
        )
        payout = Payout.objects.get(pk=releasing_payout.pk)
        deliver("transfer.success", reference=payout.transfer_reference, status="success")

        assert response.status_code == 200
        assert not ReconciliationDiscrepancy.objects.filter(payment=payment, resolved=False).exists()
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.RELEASED
