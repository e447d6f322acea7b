"""
URL configuration for the escrow app.

All routes are prefixed with /api/v1/escrow/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("escrow/", include("escrow.urls")),
    ]
"""

from django.urls import path

from escrow import views
from escrow.webhooks.views import payment_webhook

app_name = "escrow"

urlpatterns = [
    # Client actions
    path("bookings/<uuid:booking_id>/pay/", views.InitiatePaymentView.as_view(), name="initiate-payment"),
    path("payments/<uuid:payment_id>/", views.PaymentDetailView.as_view(), name="payment-detail"),
    path("payments/<uuid:payment_id>/release/", views.ReleaseEscrowView.as_view(), name="release-escrow"),
    path("payments/<uuid:payment_id>/verify/", views.VerifyPaymentView.as_view(), name="verify-payment"),
    # Administrator actions
    path("payments/<uuid:payment_id>/refund/", views.RefundPaymentView.as_view(), name="refund-payment"),
    path("payments/<uuid:payment_id>/resolve/", views.ResolveReleaseView.as_view(), name="resolve-release"),
    # Webhook endpoints
    path("webhooks/payment/", payment_webhook, name="payment-webhook"),
]
