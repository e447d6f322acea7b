"""
WebhookEvent model: the event store for Paystack notifications.

Every signed notification is stored before any business logic runs, keyed
by (event_type, gateway_reference). The unique constraint is what makes
duplicate deliveries detectable; the stored payload allows replay.

Usage:
    from escrow.models import WebhookEvent
    from escrow.state_machines import WebhookEventStatus

    event, created = WebhookEvent.objects.get_or_create(
        event_type="charge.success",
        gateway_reference="ESC_1a2b3c4d_...",
        defaults={"payload": payload},
    )
    if event.processed:
        return  # duplicate delivery

    event.mark_processed()
    event.save(update_fields=["status", "error", "processed_at", "updated_at"])
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Stored Paystack notification with its processing status.

    Processing Flow:
        1. Verify the x-paystack-signature header
        2. get_or_create on (event_type, gateway_reference)
        3. PROCESSED -> acknowledge as duplicate
        4. PROCESSING and recent -> acknowledge as in progress
        5. Claim (conditional update to PROCESSING), dispatch to handler
        6. mark_processed(), mark_failed() or mark_deferred()

    There is no foreign key to Payment or Payout; events are linked by
    reference so that an event can be stored before its row exists.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Paystack event type (e.g., 'charge.success')",
    )

    gateway_reference = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Transaction (ESC_...) or transfer (PAYOUT_...) reference from data.reference",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full notification body as received (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    received_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the notification first arrived",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error = models.TextField(
        null=True,
        blank=True,
        help_text="Error (or note) from the last processing attempt",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "webhook_events"
        ordering = ["-received_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
            models.Index(fields=["status", "updated_at"], name="webhook_status_updated_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["event_type", "gateway_reference"],
                name="unique_webhook_event_per_reference",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_type}, {self.gateway_reference})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def processed(self) -> bool:
        """Check if event has been successfully processed."""
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def data(self) -> dict:
        """The ``data`` object of the notification, or an empty dict."""
        data = (self.payload or {}).get("data")
        return data if isinstance(data, dict) else {}

    def can_retry(self, max_retries: int) -> bool:
        """Failed or deferred, with attempts left."""
        return (
            self.status in (WebhookEventStatus.FAILED, WebhookEventStatus.DEFERRED)
            and self.retry_count < max_retries
        )

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processed(self, note: str | None = None) -> None:
        """
        Mark event as successfully processed.

        Args:
            note: Optional remark kept in ``error`` (e.g. ignored event types)

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error = note

    def mark_failed(self, error: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error = error

    def mark_deferred(self, error: str) -> None:
        """
        Mark event as waiting for its payment or payout row to appear.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.DEFERRED
        self.error = error
