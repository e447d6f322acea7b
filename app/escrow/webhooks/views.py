"""
Webhook endpoint view for Paystack.

The view only adapts HTTP to the WebhookPipeline: it hands over the raw
body and the x-paystack-signature header, and answers with the status the
pipeline decided. Processing is synchronous so that Paystack receives a
retryable 503 whenever the event could not be stored.

Usage:
    # In urls.py
    from escrow.webhooks.views import payment_webhook

    urlpatterns = [
        path("webhooks/payment/", payment_webhook, name="payment-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from escrow.apps import get_gateway_client
from escrow.services import WebhookPipeline

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


@csrf_exempt
@require_POST
def payment_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Paystack notification.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (processed, duplicate, deferred or failed)
        - 400: Unparseable payload
        - 401: Missing or invalid signature
        - 503: Storage fault; Paystack should redeliver
    """
    pipeline = WebhookPipeline(get_gateway_client())
    result = pipeline.handle(request.body, request.headers.get(SIGNATURE_HEADER))

    if result.status_code >= 500:
        logger.error(
            "Webhook answered with retryable error",
            extra={"status_code": result.status_code, "detail": result.message},
        )

    return HttpResponse(result.message, status=result.status_code, content_type="text/plain")
