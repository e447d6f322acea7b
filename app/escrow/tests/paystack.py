"""
Paystack test doubles: canned gateway answers and signed webhook bodies.

Usage:
    from escrow.tests.paystack import sign, verify_result, webhook_body

    body = webhook_body("charge.success", reference=payment.gateway_reference)
    pipeline.handle(body, sign(body))
"""

import hashlib
import hmac
import json

from escrow.gateway import InitializeResult, TransferResult, VerifyResult

WEBHOOK_SECRET = "sk_test_webhook_secret"


def fake_initialize(amount_cents, reference, callback_url, email, metadata=None):
    return InitializeResult(
        authorization_url=f"https://checkout.paystack.com/{reference}",
        access_code=f"acc_{reference[-8:]}",
        reference=reference,
        raw_response={"reference": reference, "access_code": f"acc_{reference[-8:]}"},
    )


def fake_transfer(recipient, amount_cents, reference, reason=""):
    return TransferResult(
        reference=reference,
        status="pending",
        transfer_code=f"TRF_{reference[-8:]}",
        amount_cents=amount_cents,
        raw_response={"reference": reference, "status": "pending"},
    )


def verify_result(payment, status="success", amount_cents=None, gateway_response="Approved") -> VerifyResult:
    """Build what Paystack's verify endpoint would report for a payment."""
    return VerifyResult(
        reference=payment.gateway_reference,
        status=status,
        amount_cents=payment.amount_cents if amount_cents is None else amount_cents,
        currency=payment.currency,
        transaction_id="4099260516",
        gateway_response=gateway_response,
        raw_response={"reference": payment.gateway_reference, "status": status},
    )


def transfer_result(payout, status="success") -> TransferResult:
    """Build what Paystack's transfer verify endpoint would report for a payout."""
    return TransferResult(
        reference=payout.transfer_reference,
        status=status,
        transfer_code=payout.transfer_code or "TRF_verified",
        amount_cents=payout.amount_cents,
        raw_response={"reference": payout.transfer_reference, "status": status},
    )


def sign(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Compute the x-paystack-signature header for a body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def webhook_body(event: str, **data) -> bytes:
    """Serialize a Paystack notification body."""
    return json.dumps({"event": event, "data": data}).encode("utf-8")
