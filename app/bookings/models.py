"""
Booking and CompletionProof models.

Booking is the unit a client pays for. The escrow subsystem reads
``status`` to decide whether a booking is payable, and writes it only as
part of a payment transition:

    Payment PENDING -> ESCROW               => Booking PENDING_EXECUTION
    Payment ESCROW -> PROCESSING_RELEASE    => Booking PAID
    Payment PROCESSING_RELEASE -> RELEASED  => Booking COMPLETED

CompletionProof is the provider's evidence that the job was done. A client
may only release escrow once it exists; administrators may override.

Usage:
    from bookings.models import Booking, BookingStatus

    booking = Booking.objects.create(
        client=client,
        provider=provider,
        title="Deep clean, 3 bedroom house",
        service_amount_cents=100000,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class BookingStatus(models.TextChoices):
    """
    Lifecycle of a booking as seen by the escrow subsystem.

    PENDING/CONFIRMED bookings may be paid for. The remaining states are
    written by escrow transitions or by the booking workflow itself.
    """

    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    PENDING_EXECUTION = "PENDING_EXECUTION", "Pending Execution"
    IN_PROGRESS = "IN_PROGRESS", "In Progress"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION", "Awaiting Confirmation"
    PAID = "PAID", "Paid"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"
    DISPUTED = "DISPUTED", "Disputed"


PAYABLE_BOOKING_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    }
)


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """
    A client's booking of a provider's service.

    Fields:
        client: User paying for the service
        provider: User performing the service and receiving the payout
        title: Short description of the booked service
        service_amount_cents: Price in the smallest currency unit
        currency: ISO 4217 currency code
        status: Booking lifecycle status
        scheduled_for: When the service is due to be performed
    """

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="client_bookings",
        help_text="User who booked and pays for the service",
    )

    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provider_bookings",
        help_text="User who performs the service and receives the payout",
    )

    title = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Short description of the booked service",
    )

    service_amount_cents = models.PositiveBigIntegerField(
        help_text="Service price in smallest currency unit (e.g., cents/kobo)",
    )

    currency = models.CharField(
        max_length=3,
        default="ZAR",
        help_text="ISO 4217 currency code",
    )

    status = models.CharField(
        max_length=30,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
        db_index=True,
        help_text="Current booking status",
    )

    scheduled_for = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the service is scheduled to take place",
    )

    class Meta:
        db_table = "bookings"
        ordering = ["-created_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(fields=["client", "status"], name="booking_client_status_idx"),
            models.Index(fields=["provider", "status"], name="booking_provider_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(service_amount_cents__gt=0),
                name="booking_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status})"

    @property
    def is_payable(self) -> bool:
        """Whether a payment may be initiated for this booking."""
        return self.status in PAYABLE_BOOKING_STATUSES


class CompletionProof(UUIDPrimaryKeyMixin, BaseModel):
    """
    Provider's proof that the booked job was completed.

    One proof per booking. Its existence unlocks client-initiated escrow
    release.
    """

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="completion_proof",
        help_text="Booking this proof belongs to",
    )

    submitted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="completion_proofs",
        help_text="Provider who submitted the proof",
    )

    notes = models.TextField(
        blank=True,
        default="",
        help_text="Provider's description of the completed work",
    )

    attachment_url = models.URLField(
        blank=True,
        default="",
        help_text="Optional link to photos or documents",
    )

    class Meta:
        db_table = "completion_proofs"
        ordering = ["-created_at"]
        verbose_name = "Completion Proof"
        verbose_name_plural = "Completion Proofs"

    def __str__(self) -> str:
        return f"CompletionProof({self.booking_id})"
