"""
Django admin configuration for bookings.
"""

from django.contrib import admin

from bookings.models import Booking, CompletionProof


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "client",
        "provider",
        "service_amount_cents",
        "currency",
        "status",
        "created_at",
    )
    list_filter = ("status", "currency")
    search_fields = ("id", "client__email", "provider__email", "title")
    readonly_fields = ("created_at", "updated_at")


@admin.register(CompletionProof)
class CompletionProofAdmin(admin.ModelAdmin):
    list_display = ("booking", "submitted_by", "created_at")
    search_fields = ("booking__id", "submitted_by__email")
    readonly_fields = ("created_at", "updated_at")
