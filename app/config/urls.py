"""
URL configuration for the escrow payments backend.

URL Structure:
    /                                   - ReDoc API documentation
    /schema/                            - OpenAPI schema
    /admin/                             - Django admin (payments, payouts, discrepancies)
    /health/                            - Health check endpoint
    /api/v1/escrow/                     - Escrow endpoints
        bookings/{id}/pay/              - Initiate payment for a booking
        payments/{id}/                  - Payment detail
        payments/{id}/verify/           - Re-verify a payment with Paystack
        payments/{id}/release/          - Release escrow to the provider
        payments/{id}/refund/           - Refund an escrowed payment (admin)
        payments/{id}/resolve/          - Resolve a failed release (admin)
        webhooks/payment/               - Paystack webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("escrow/", include("escrow.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Payments Admin"
admin.site.site_title = "Escrow Admin"
admin.site.index_title = "Payments, payouts and reconciliation"
