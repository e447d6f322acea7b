"""
Escrow admin configuration.

Statuses are read-only everywhere: payments and payouts move only through
the state machines, and failed releases are resolved through the
resolve endpoint (PayoutOrchestrator.resolve_failed_release).
"""

from django.contrib import admin

from escrow.models import (
    Payment,
    Payout,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    TransferRecipient,
    WebhookEvent,
)

__all__ = [
    "PaymentAdmin",
    "PayoutAdmin",
    "TransferRecipientAdmin",
    "WebhookEventAdmin",
    "ReconciliationRunAdmin",
    "ReconciliationDiscrepancyAdmin",
]


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


# =============================================================================
# Payments & Payouts
# =============================================================================


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Provides visibility into escrowed payments and their states.
    """

    list_display = [
        "id",
        "booking",
        "payer",
        "amount_display",
        "status",
        "paid_at",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "gateway_reference", "payer__email", "booking__id"]
    readonly_fields = [
        "id",
        "booking",
        "payer",
        "status",
        "gateway_reference",
        "gateway_transaction_id",
        "authorization_url",
        "access_code",
        "amount_cents",
        "escrow_amount_cents",
        "platform_fee_cents",
        "currency",
        "gateway_response",
        "error_message",
        "paid_at",
        "released_at",
        "refund_requested_at",
        "refunded_at",
        "failed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "booking", "payer", "status")}),
        (
            "Gateway",
            {"fields": ("gateway_reference", "gateway_transaction_id", "authorization_url", "access_code")},
        ),
        (
            "Amounts",
            {"fields": ("amount_cents", "escrow_amount_cents", "platform_fee_cents", "currency")},
        ),
        (
            "Error Info",
            {"fields": ("error_message", "gateway_response"), "classes": ("collapse",)},
        ),
        (
            "Timestamps",
            {
                "fields": (
                    "paid_at",
                    "released_at",
                    "refund_requested_at",
                    "refunded_at",
                    "failed_at",
                    "created_at",
                    "updated_at",
                )
            },
        ),
    )

    def amount_display(self, obj: Payment) -> str:
        """Display the amount formatted as currency."""
        return format_amount(obj.amount_cents, obj.currency)

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        """Payments are created by the payment orchestrator only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    """Admin configuration for Payout."""

    list_display = [
        "id",
        "payment",
        "provider",
        "amount_display",
        "status",
        "attempts",
        "completed_at",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "transfer_reference", "transfer_code", "provider__email"]
    readonly_fields = [
        "id",
        "payment",
        "provider",
        "recipient",
        "status",
        "amount_cents",
        "currency",
        "transfer_reference",
        "transfer_code",
        "attempts",
        "gateway_response",
        "failure_reason",
        "completed_at",
        "failed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def amount_display(self, obj: Payout) -> str:
        """Display the amount formatted as currency."""
        return format_amount(obj.amount_cents, obj.currency)

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payouts (audit trail)."""
        return False


@admin.register(TransferRecipient)
class TransferRecipientAdmin(admin.ModelAdmin):
    list_display = ["provider", "recipient_code", "bank_name", "account_last4", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["recipient_code", "provider__email", "account_name"]
    readonly_fields = ["id", "created_at", "updated_at"]


# =============================================================================
# Webhook Admin
# =============================================================================


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received; the retry tasks own the
    status column.
    """

    list_display = [
        "id",
        "event_type",
        "gateway_reference",
        "status",
        "retry_count",
        "received_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type", "received_at"]
    search_fields = ["id", "gateway_reference", "event_type"]
    readonly_fields = [
        "id",
        "event_type",
        "gateway_reference",
        "payload",
        "status",
        "received_at",
        "processed_at",
        "error",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False


# =============================================================================
# Reconciliation Admin
# =============================================================================


class ReconciliationDiscrepancyInline(admin.TabularInline):
    """Inline display of discrepancies for a reconciliation run."""

    model = ReconciliationDiscrepancy
    extra = 0
    fields = ["payment", "kind", "local_status", "gateway_status", "resolved"]
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Runs are created by the reconciliation task and are read-only.
    """

    list_display = [
        "id",
        "started_at",
        "status",
        "payments_checked",
        "transitions_applied",
        "flagged_for_review",
        "errors",
    ]
    list_filter = ["status", "started_at"]
    readonly_fields = [
        "id",
        "status",
        "stale_after_minutes",
        "started_at",
        "completed_at",
        "payments_checked",
        "transitions_applied",
        "flagged_for_review",
        "errors",
        "error_message",
        "created_at",
        "updated_at",
    ]
    inlines = [ReconciliationDiscrepancyInline]
    ordering = ["-started_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ReconciliationDiscrepancy)
class ReconciliationDiscrepancyAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationDiscrepancy.

    Amount mismatches are resolved here by filling in the resolution
    fields; transfer failures go through the resolve endpoint.
    """

    list_display = [
        "id",
        "payment",
        "kind",
        "local_status",
        "gateway_status",
        "resolved",
        "created_at",
    ]
    list_filter = ["kind", "resolved", "created_at"]
    search_fields = ["id", "payment__id", "payment__gateway_reference"]
    readonly_fields = [
        "id",
        "run",
        "payment",
        "payout",
        "kind",
        "local_status",
        "gateway_status",
        "details",
        "resolved_at",
        "resolved_by",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def save_model(self, request, obj, form, change):
        if obj.resolved and obj.resolved_at is None:
            obj.resolve(request.user, obj.resolution_notes)
        super().save_model(request, obj, form, change)

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
