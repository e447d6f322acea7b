"""
Payment model: one charge attempt for exactly one booking.

A Payment is created PENDING by the payment orchestrator after Paystack
accepted the initialize call, and from then on moves only through
escrow.state_machines.machine.PaymentStateMachine, which applies each
transition as a guarded conditional UPDATE. The django-fsm @transition
methods below declare the legal graph; the machine reads it from them.

Usage:
    from escrow.models import Payment
    from escrow.state_machines import PaymentStatus
    from escrow.state_machines.machine import PaymentStateMachine

    payment = Payment.objects.get(gateway_reference=reference)
    outcome = PaymentStateMachine().transition(
        payment.id,
        PaymentStatus.ESCROW,
        fields={"paid_at": timezone.now()},
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import PaymentStatus


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Escrowed payment for a booking.

    State Flow:
        PENDING -> ESCROW -> PROCESSING_RELEASE -> RELEASED

    Side Branches:
        PENDING -> FAILED (charge failed or abandoned)
        ESCROW -> REFUNDED (refund processed)
        PROCESSING_RELEASE -> FAILED (administrator gave up on the transfer)

    Fields:
        booking: The booking paid for (one payment per booking)
        payer: Client who pays
        gateway_reference: Our Paystack transaction reference (ESC_...)
        amount_cents: Total charged; always escrow + platform fee
        escrow_amount_cents: Portion held for the provider
        platform_fee_cents: Portion kept by the platform
        status: Current FSM state (protected; never assigned directly)
        gateway_response: Last Paystack payload, for audit
        error_message: Why the payment failed, if it did
        *_at timestamps: When each terminal or escrow state was reached
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payment",
        help_text="Booking this payment is for (unique: one payment per booking)",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_payments",
        help_text="Client making the payment",
    )

    # ==========================================================================
    # Gateway Identification
    # ==========================================================================

    gateway_reference = models.CharField(
        max_length=100,
        unique=True,
        help_text="Paystack transaction reference (ESC_...)",
    )

    gateway_transaction_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Paystack transaction id, set once the charge succeeds",
    )

    authorization_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Hosted checkout URL returned by Paystack",
    )

    access_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Paystack access code for inline checkout",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Total charged in smallest currency unit (escrow + fee)",
    )

    escrow_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount held for the provider in smallest currency unit",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        help_text="Platform fee in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="ZAR",
        help_text="ISO 4217 currency code",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current payment status (changed only by PaymentStateMachine)",
    )

    # ==========================================================================
    # Audit & Error Info
    # ==========================================================================

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Most recent Paystack payload for this payment",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Reason the payment failed",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    paid_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge succeeded and funds entered escrow",
    )

    released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the provider transfer was confirmed",
    )

    refund_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When an administrator asked Paystack to refund the charge",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Paystack confirmed the refund",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["status", "updated_at"], name="payment_status_updated_idx"),
            models.Index(fields=["payer", "created_at"], name="payment_payer_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                check=models.Q(
                    amount_cents=models.F("escrow_amount_cents") + models.F("platform_fee_cents")
                ),
                name="payment_amount_split_consistent",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payment({self.id}, {self.status}, {amount_display})"

    @property
    def provider_id(self):
        """Provider who will receive the escrowed amount."""
        return self.booking.provider_id

    # ==========================================================================
    # Transition Graph (django-fsm)
    # ==========================================================================
    # Declarations only: PaymentStateMachine reads these edges and applies
    # them with conditional updates so concurrent writers cannot both win.

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.ESCROW,
    )
    def mark_escrowed(self):
        """
        Charge confirmed; funds are held by the platform.

        Transition: PENDING -> ESCROW
        """
        pass

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING_RELEASE],
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self):
        """
        Charge failed, or an administrator abandoned a failed release.

        Transitions: PENDING -> FAILED, PROCESSING_RELEASE -> FAILED
        """
        pass

    @transition(
        field=status,
        source=PaymentStatus.ESCROW,
        target=PaymentStatus.PROCESSING_RELEASE,
    )
    def start_release(self):
        """
        Release requested; a Payout exists and the transfer is in flight.

        Transition: ESCROW -> PROCESSING_RELEASE
        """
        pass

    @transition(
        field=status,
        source=PaymentStatus.PROCESSING_RELEASE,
        target=PaymentStatus.RELEASED,
    )
    def mark_released(self):
        """
        Transfer confirmed by Paystack.

        Transition: PROCESSING_RELEASE -> RELEASED
        """
        pass

    @transition(
        field=status,
        source=PaymentStatus.ESCROW,
        target=PaymentStatus.REFUNDED,
    )
    def mark_refunded(self):
        """
        Refund confirmed by Paystack.

        Transition: ESCROW -> REFUNDED
        """
        pass
