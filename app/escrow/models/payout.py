"""
Payout model for transfers of escrowed funds to providers.

Exactly one Payout can exist per Payment. It is created PENDING in the same
transaction that moves the payment to PROCESSING_RELEASE, updated
optimistically to PROCESSING when Paystack accepts the transfer, and
finalized by the transfer webhook (or by reconciliation).

Usage:
    from escrow.models import Payout
    from escrow.state_machines import PayoutStatus

    payout = Payout.objects.get(transfer_reference=reference)
    if payout.status == PayoutStatus.COMPLETED:
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import PayoutStatus


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Transfer of a payment's escrow amount to the booking's provider.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING -> COMPLETED (webhook arrived before the optimistic update)
        PENDING/PROCESSING -> FAILED
        FAILED -> PENDING (administrator retry only)

    Fields:
        payment: Source payment (unique)
        provider: Recipient user
        recipient: Paystack transfer recipient used for the transfer
        amount_cents: Amount transferred (the payment's escrow amount)
        status: Current FSM state (protected)
        transfer_reference: Our unique transfer reference (PAYOUT_...)
        transfer_code: Paystack transfer code (TRF_...)
        attempts: Number of transfer calls made
        failure_reason: Why the transfer failed, if it did
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.OneToOneField(
        "escrow.Payment",
        on_delete=models.PROTECT,
        related_name="payout",
        help_text="Payment whose escrow this payout releases (unique)",
    )

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_payouts",
        help_text="Provider receiving the funds",
    )

    recipient = models.ForeignKey(
        "escrow.TransferRecipient",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payouts",
        help_text="Paystack transfer recipient the money was sent to",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Payout amount in smallest currency unit",
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
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current payout status (changed only by PayoutStateMachine)",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    transfer_reference = models.CharField(
        max_length=100,
        unique=True,
        help_text="Our Paystack transfer reference (PAYOUT_...)",
    )

    transfer_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Paystack transfer code (TRF_...)",
    )

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of transfer calls made to Paystack",
    )

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Most recent Paystack transfer payload",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Reason the transfer failed",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Paystack confirmed the transfer",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the transfer failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "payouts"
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"
        indexes = [
            models.Index(fields=["status", "updated_at"], name="payout_status_updated_idx"),
            models.Index(fields=["provider", "status"], name="payout_provider_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(amount_cents__gt=0),
                name="payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payout({self.id}, {self.status}, {amount_display})"

    @property
    def is_final(self) -> bool:
        """COMPLETED and FAILED payouts change only through manual resolution."""
        return self.status in (PayoutStatus.COMPLETED, PayoutStatus.FAILED)

    # ==========================================================================
    # Transition Graph (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PayoutStatus.PENDING,
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self):
        """Paystack accepted the transfer request."""
        pass

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.PROCESSING],
        target=PayoutStatus.COMPLETED,
    )
    def complete(self):
        """Paystack confirmed the transfer."""
        pass

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.PROCESSING],
        target=PayoutStatus.FAILED,
    )
    def fail(self):
        """Paystack rejected or failed the transfer."""
        pass

    @transition(
        field=status,
        source=PayoutStatus.FAILED,
        target=PayoutStatus.PENDING,
    )
    def reset_for_retry(self):
        """
        Administrator override: try the transfer again.

        Transition: FAILED -> PENDING
        """
        pass
