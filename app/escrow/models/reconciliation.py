"""
Reconciliation models: run history and discrepancies for manual review.

ReconciliationRun records one pass of the stale-payment scan.
ReconciliationDiscrepancy records a payment that automation will not
resolve on its own: a failed or rejected transfer for a payment in
PROCESSING_RELEASE, or a charge whose verified amount does not match.

Usage:
    from escrow.models import ReconciliationDiscrepancy
    from escrow.state_machines import DiscrepancyKind

    open_items = ReconciliationDiscrepancy.objects.filter(resolved=False)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import DiscrepancyKind, ReconciliationRunStatus


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    One reconciliation pass over stale payments.

    Counters:
        payments_checked: Payments verified against Paystack
        transitions_applied: Payments moved by this run
        flagged_for_review: Discrepancies recorded by this run
        errors: Payments skipped because Paystack could not be queried
    """

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
        help_text="Run status",
    )

    stale_after_minutes = models.PositiveIntegerField(
        help_text="Only payments untouched for longer than this were scanned",
    )

    started_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the run started",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the run finished",
    )

    payments_checked = models.PositiveIntegerField(
        default=0,
        help_text="Number of payments verified",
    )

    transitions_applied = models.PositiveIntegerField(
        default=0,
        help_text="Number of payments whose status changed",
    )

    flagged_for_review = models.PositiveIntegerField(
        default=0,
        help_text="Number of discrepancies recorded",
    )

    errors = models.PositiveIntegerField(
        default=0,
        help_text="Number of payments that could not be verified",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Why the run failed, if it did",
    )

    class Meta:
        db_table = "reconciliation_runs"
        ordering = ["-started_at"]
        verbose_name = "Reconciliation Run"
        verbose_name_plural = "Reconciliation Runs"

    def __str__(self) -> str:
        return f"ReconciliationRun({self.started_at:%Y-%m-%d %H:%M}, {self.status})"


class ReconciliationDiscrepancy(UUIDPrimaryKeyMixin, BaseModel):
    """
    A payment needing administrator attention.

    Resolved through PayoutOrchestrator.resolve_failed_release() for
    transfer problems, or manually in the admin for amount mismatches.
    """

    # ==========================================================================
    # Subject
    # ==========================================================================

    run = models.ForeignKey(
        ReconciliationRun,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="discrepancies",
        help_text="Run that found it (empty when raised by a webhook or release)",
    )

    payment = models.ForeignKey(
        "escrow.Payment",
        on_delete=models.PROTECT,
        related_name="discrepancies",
        help_text="Payment under review",
    )

    payout = models.ForeignKey(
        "escrow.Payout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="discrepancies",
        help_text="Payout involved, for transfer problems",
    )

    kind = models.CharField(
        max_length=30,
        choices=DiscrepancyKind.choices,
        db_index=True,
        help_text="What went wrong",
    )

    local_status = models.CharField(
        max_length=30,
        help_text="Payment status when the discrepancy was recorded",
    )

    gateway_status = models.CharField(
        max_length=30,
        blank=True,
        default="",
        help_text="Status reported by Paystack",
    )

    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Supporting data (amounts, failure reason, raw gateway data)",
    )

    # ==========================================================================
    # Resolution
    # ==========================================================================

    resolved = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether an administrator has resolved it",
    )

    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When it was resolved",
    )

    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_discrepancies",
        help_text="Administrator who resolved it",
    )

    resolution_notes = models.TextField(
        blank=True,
        default="",
        help_text="What was decided and why",
    )

    class Meta:
        db_table = "reconciliation_discrepancies"
        ordering = ["-created_at"]
        verbose_name = "Reconciliation Discrepancy"
        verbose_name_plural = "Reconciliation Discrepancies"
        indexes = [
            models.Index(fields=["payment", "resolved"], name="discrepancy_payment_open_idx"),
        ]

    def __str__(self) -> str:
        return f"ReconciliationDiscrepancy({self.kind}, payment={self.payment_id})"

    def resolve(self, resolved_by, notes: str = "") -> None:
        """
        Mark as resolved.

        Note: Does not save - caller must save after calling.
        """
        self.resolved = True
        self.resolved_at = timezone.now()
        self.resolved_by = resolved_by
        self.resolution_notes = notes
