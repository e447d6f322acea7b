"""
Serializers for escrow API requests and responses.

Provides:
- InitiatePaymentSerializer: Request body for paying a booking
- PaymentInitiationResponseSerializer: Checkout details returned to the client
- PaymentSerializer / PayoutSerializer: Read-only representations
- ReleaseResponseSerializer: Result of a release request
- RefundRequestSerializer / ResolveReleaseSerializer: Administrator actions
"""

from __future__ import annotations

from rest_framework import serializers

from escrow.models import Payment, Payout
from escrow.state_machines import ReleaseResolution


# =============================================================================
# Requests
# =============================================================================


class InitiatePaymentSerializer(serializers.Serializer):
    """Request body for POST bookings/<booking_id>/pay/."""

    callback_url = serializers.URLField(
        required=False,
        allow_blank=True,
        default="",
        help_text="Where Paystack redirects the client after checkout",
    )


class RefundRequestSerializer(serializers.Serializer):
    """Request body for POST payments/<payment_id>/refund/."""

    reason = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=500,
        help_text="Why the payment is refunded",
    )


class ResolveReleaseSerializer(serializers.Serializer):
    """Request body for POST payments/<payment_id>/resolve/."""

    resolution = serializers.ChoiceField(
        choices=ReleaseResolution.choices,
        help_text="retry_transfer or mark_failed",
    )
    notes = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=2000,
        help_text="What was decided and why",
    )


# =============================================================================
# Responses
# =============================================================================


class PaymentInitiationResponseSerializer(serializers.Serializer):
    """Checkout details for a newly initiated payment."""

    payment_id = serializers.UUIDField(source="payment.id")
    reference = serializers.CharField(source="payment.gateway_reference")
    authorization_url = serializers.URLField()
    access_code = serializers.CharField()
    amount_cents = serializers.IntegerField(source="payment.amount_cents")
    escrow_amount_cents = serializers.IntegerField(source="payment.escrow_amount_cents")
    platform_fee_cents = serializers.IntegerField(source="payment.platform_fee_cents")


class PayoutSerializer(serializers.ModelSerializer):
    """Read-only payout representation."""

    class Meta:
        model = Payout
        fields = [
            "id",
            "status",
            "amount_cents",
            "currency",
            "transfer_reference",
            "transfer_code",
            "attempts",
            "failure_reason",
            "completed_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    """Read-only payment representation, including its payout if any."""

    booking_id = serializers.UUIDField(read_only=True)
    payout = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            "id",
            "booking_id",
            "status",
            "gateway_reference",
            "amount_cents",
            "escrow_amount_cents",
            "platform_fee_cents",
            "currency",
            "error_message",
            "paid_at",
            "released_at",
            "refund_requested_at",
            "refunded_at",
            "failed_at",
            "created_at",
            "updated_at",
            "payout",
        ]
        read_only_fields = fields

    def get_payout(self, obj: Payment) -> dict | None:
        payout = Payout.objects.filter(payment_id=obj.pk).first()
        return PayoutSerializer(payout).data if payout else None


class ReleaseResponseSerializer(serializers.Serializer):
    """Result of a release or a resolution."""

    payment = PaymentSerializer()
    payout = PayoutSerializer()
    transfer_pending = serializers.BooleanField()


class VerifyResponseSerializer(serializers.Serializer):
    """Result of verifying one payment against Paystack."""

    payment = PaymentSerializer()
    applied = serializers.BooleanField()
