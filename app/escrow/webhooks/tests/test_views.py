"""
Tests for the Paystack webhook endpoint.

Tests cover:
- Real HMAC-SHA512 signature checks through the HTTP layer
- Status codes returned to Paystack
- Method and CSRF handling
"""

import pytest
from django.urls import reverse

from escrow.gateway import GatewayConfig, PaystackClient
from escrow.models import Payment, WebhookEvent
from escrow.state_machines import PaymentStatus
from escrow.tests.paystack import WEBHOOK_SECRET, sign, verify_result, webhook_body


# =============================================================================
# Setup
# =============================================================================


@pytest.fixture
def webhook_url():
    return reverse("escrow:payment-webhook")


@pytest.fixture
def signing_gateway(gateway, mocker):
    """
    Gateway double whose signature check is the real one.

    Only verify_webhook_signature runs real code; API calls stay mocked.
    """
    real = PaystackClient(GatewayConfig(secret_key=WEBHOOK_SECRET))
    gateway.verify_webhook_signature.side_effect = real.verify_webhook_signature
    mocker.patch("escrow.webhooks.views.get_gateway_client", return_value=gateway)
    return gateway


def post_webhook(client, url, body, signature=None):
    headers = {}
    if signature is not None:
        headers["HTTP_X_PAYSTACK_SIGNATURE"] = signature
    return client.post(url, data=body, content_type="application/json", **headers)


# =============================================================================
# Tests
# =============================================================================


class TestPaymentWebhookView:
    """Tests for payment_webhook."""

    def test_signed_charge_success(self, client, webhook_url, signing_gateway, pending_payment):
        """Should verify the signature, process the event and answer 200."""
        signing_gateway.verify.return_value = verify_result(pending_payment)
        body = webhook_body("charge.success", reference=pending_payment.gateway_reference, status="success")

        response = post_webhook(client, webhook_url, body, sign(body))

        assert response.status_code == 200
        assert response.content == b"Processed"
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.ESCROW

    def test_missing_signature(self, client, webhook_url, signing_gateway, pending_payment):
        body = webhook_body("charge.success", reference=pending_payment.gateway_reference)

        response = post_webhook(client, webhook_url, body)

        assert response.status_code == 401
        assert not WebhookEvent.objects.exists()

    def test_forged_signature(self, client, webhook_url, signing_gateway, pending_payment):
        body = webhook_body("charge.success", reference=pending_payment.gateway_reference)

        response = post_webhook(client, webhook_url, body, sign(body, secret="attacker"))

        assert response.status_code == 401
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING

    def test_signed_garbage(self, client, webhook_url, signing_gateway, db):
        body = b"{not json"

        response = post_webhook(client, webhook_url, body, sign(body))

        assert response.status_code == 400

    def test_redelivery_answers_200(self, client, webhook_url, signing_gateway, pending_payment):
        signing_gateway.verify.return_value = verify_result(pending_payment)
        body = webhook_body("charge.success", reference=pending_payment.gateway_reference, status="success")

        post_webhook(client, webhook_url, body, sign(body))
        response = post_webhook(client, webhook_url, body, sign(body))

        assert response.status_code == 200
        assert response.content == b"Already processed"

    def test_get_not_allowed(self, client, webhook_url, db):
        response = client.get(webhook_url)

        assert response.status_code == 405

    def test_csrf_exempt(self, webhook_url, signing_gateway, db):
        from django.test import Client

        csrf_client = Client(enforce_csrf_checks=True)
        body = webhook_body("customeridentification.failed", reference="CUS_1")

        response = post_webhook(csrf_client, webhook_url, body, sign(body))

        assert response.status_code == 200
