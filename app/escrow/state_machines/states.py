"""
State enums for escrow models.

These are Django TextChoices for database storage and admin integration.
The legal transitions themselves are declared with django-fsm @transition
methods on the models and enforced by escrow.state_machines.machine.

State Machines Overview:

Payment Status:
    PENDING → ESCROW → PROCESSING_RELEASE → RELEASED
    PENDING → FAILED
    ESCROW → REFUNDED
    PROCESSING_RELEASE → FAILED (manual resolution only)

Payout Status:
    PENDING → PROCESSING → COMPLETED
    PENDING/PROCESSING → COMPLETED (webhook may outrun the optimistic update)
    PENDING/PROCESSING → FAILED
    FAILED → PENDING (manual retry by an administrator)

WebhookEvent Status:
    PENDING → PROCESSING → PROCESSED
    PROCESSING → FAILED / DEFERRED → PROCESSING (retry)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment lifecycle.

    Terminal states: RELEASED, REFUNDED, FAILED
    """

    PENDING = "PENDING", "Pending"
    ESCROW = "ESCROW", "In Escrow"
    PROCESSING_RELEASE = "PROCESSING_RELEASE", "Processing Release"
    RELEASED = "RELEASED", "Released"
    REFUNDED = "REFUNDED", "Refunded"
    FAILED = "FAILED", "Failed"


class PayoutStatus(models.TextChoices):
    """
    States for the Payout lifecycle.

    COMPLETED is terminal. FAILED is terminal unless an administrator
    retries the transfer.
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for inbound gateway notifications.

    DEFERRED means the referenced payment or payout did not exist yet
    when the event arrived; the retry task picks it up later.
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    PROCESSED = "PROCESSED", "Processed"
    FAILED = "FAILED", "Failed"
    DEFERRED = "DEFERRED", "Deferred"


class ReconciliationRunStatus(models.TextChoices):
    """Status of a reconciliation pass."""

    RUNNING = "RUNNING", "Running"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


class DiscrepancyKind(models.TextChoices):
    """Why a payment was flagged for administrator review."""

    TRANSFER_FAILED = "TRANSFER_FAILED", "Transfer failed during release"
    TRANSFER_REJECTED = "TRANSFER_REJECTED", "Transfer rejected by gateway"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH", "Charged amount differs from expected"
    CHARGE_AFTER_FAILURE = "CHARGE_AFTER_FAILURE", "Charge confirmed after payment failed"
    TRANSFER_REVERSED = "TRANSFER_REVERSED", "Transfer reversed after release"


class ReleaseResolution(models.TextChoices):
    """Administrator decisions for a payment stuck after a failed transfer."""

    RETRY_TRANSFER = "retry_transfer", "Retry transfer"
    MARK_FAILED = "mark_failed", "Mark payment failed"
