"""
Webhook pipeline for Paystack notifications.

Steps, in strict order:
    1. Verify   x-paystack-signature over the raw body (401 if bad), then
                parse the JSON (400 if unusable)
    2. Persist  WebhookEvent get_or_create before any business logic
                (503 if the database refuses, so Paystack redelivers)
    3. Dedupe   PROCESSED -> 200; PROCESSING and recent -> 200
    4. Dispatch claim the event, run its handler; only handlers (through
                the state machines) touch Payment/Payout rows
    5. Record   PROCESSED / FAILED / DEFERRED on the event; storage faults
                answer 503, everything else is acknowledged with 200

Side effects (notifications, audit lines) hang off the state machines'
on-commit signals, so they run only after a transition has committed and
cannot roll it back.

Handlers are dispatched without an enclosing transaction because some of
them call Paystack; each state machine call is atomic on its own.

Usage:
    from escrow.apps import get_gateway_client
    from escrow.services import WebhookPipeline

    result = WebhookPipeline(get_gateway_client()).handle(
        request.body, request.headers.get("x-paystack-signature")
    )
    return HttpResponse(result.message, status=result.status_code)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService

from escrow.exceptions import PersistenceError, ReferenceNotFoundError
from escrow.models import WebhookEvent
from escrow.services.payment_orchestrator import PaymentOrchestrator
from escrow.services.payout_orchestrator import PayoutOrchestrator
from escrow.state_machines import WebhookEventStatus
from escrow.state_machines.machine import PaymentStateMachine
from escrow.webhooks.handlers import IGNORED_EVENT_NOTE, HandlerContext, dispatch_webhook

if TYPE_CHECKING:
    from typing import Any

    from escrow.gateway import PaystackClient


RECORD_FIELDS = ["status", "error", "processed_at", "updated_at"]


def extract_reference(data: Any) -> str | None:
    """
    Return the reference a notification is about.

    Charge and transfer events carry data.reference; refund events carry
    the charge reference as data.transaction_reference.
    """
    if not isinstance(data, dict):
        return None
    transaction_data = data.get("transaction")
    reference = (
        data.get("reference")
        or data.get("transaction_reference")
        or (transaction_data.get("reference") if isinstance(transaction_data, dict) else None)
    )
    return str(reference) if reference else None


@dataclass
class PipelineResult:
    """
    HTTP answer for a notification.

    Attributes:
        status_code: 200, 400, 401 or 503
        message: Short plain-text body
        event: Stored WebhookEvent, once step 2 has run
    """

    status_code: int
    message: str
    event: WebhookEvent | None = None


class WebhookPipeline(BaseService):
    """
    Verify, persist, dedupe and dispatch Paystack notifications.

    Args:
        gateway: Paystack client built at startup (see escrow.apps)
    """

    def __init__(self, gateway: PaystackClient):
        self.gateway = gateway
        self.context = HandlerContext(
            gateway=gateway,
            charges=PaymentOrchestrator(gateway),
            payouts=PayoutOrchestrator(gateway),
            payments=PaymentStateMachine(),
        )

    @staticmethod
    def stuck_cutoff():
        """PROCESSING events untouched since before this are considered abandoned."""
        return timezone.now() - timedelta(minutes=settings.ESCROW_WEBHOOK_STUCK_MINUTES)

    def handle(self, raw_body: bytes, signature: str | None) -> PipelineResult:
        """Run all pipeline steps for one delivery."""
        logger = self.get_logger()

        # Step 1: Verify
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning(
                "Webhook signature verification failed",
                extra={"has_signature": bool(signature)},
            )
            return PipelineResult(401, "Invalid signature")

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Webhook body is not valid JSON")
            return PipelineResult(400, "Invalid payload")

        if not isinstance(payload, dict):
            return PipelineResult(400, "Invalid payload")

        event_type = payload.get("event")
        reference = extract_reference(payload.get("data"))
        if not event_type or not reference:
            logger.warning(
                "Webhook missing event type or reference",
                extra={"event_type": event_type},
            )
            return PipelineResult(400, "Missing event or reference")

        logger.info(
            f"Received Paystack webhook: {event_type}",
            extra={"event_type": event_type, "gateway_reference": reference},
        )

        # Step 2: Persist
        try:
            event, created = WebhookEvent.objects.get_or_create(
                event_type=str(event_type)[:100],
                gateway_reference=reference,
                defaults={"payload": payload},
            )
        except DatabaseError:
            logger.error(
                "Could not store webhook event",
                extra={"event_type": event_type, "gateway_reference": reference},
                exc_info=True,
            )
            return PipelineResult(503, "Storage unavailable")

        # Step 3: Dedupe
        if not created:
            if event.processed:
                logger.info(
                    "Webhook already processed, returning success",
                    extra={"webhook_event_id": str(event.pk)},
                )
                return PipelineResult(200, "Already processed", event)
            if event.status == WebhookEventStatus.PROCESSING and event.updated_at >= self.stuck_cutoff():
                return PipelineResult(200, "In progress", event)

        return self.process_event(event)

    def process_event(self, event: WebhookEvent) -> PipelineResult:
        """
        Steps 4 and 5 for a stored event.

        Shared by the HTTP path and the retry task. The event is claimed
        with a conditional update, so two workers never run the same event.
        """
        logger = self.get_logger()

        try:
            claimed = (
                WebhookEvent.objects.filter(pk=event.pk)
                .filter(
                    Q(
                        status__in=[
                            WebhookEventStatus.PENDING,
                            WebhookEventStatus.FAILED,
                            WebhookEventStatus.DEFERRED,
                        ]
                    )
                    | Q(status=WebhookEventStatus.PROCESSING, updated_at__lt=self.stuck_cutoff())
                )
                .update(
                    status=WebhookEventStatus.PROCESSING,
                    retry_count=F("retry_count") + 1,
                    updated_at=timezone.now(),
                )
            )
            event = WebhookEvent.objects.get(pk=event.pk)
        except DatabaseError:
            logger.error(
                "Could not claim webhook event",
                extra={"webhook_event_id": str(event.pk)},
                exc_info=True,
            )
            return PipelineResult(503, "Storage unavailable", event)

        if not claimed:
            message = "Already processed" if event.processed else "In progress"
            return PipelineResult(200, message, event)

        log_context = {
            "webhook_event_id": str(event.pk),
            "event_type": event.event_type,
            "gateway_reference": event.gateway_reference,
            "retry_count": event.retry_count,
        }

        # Step 4: Dispatch
        try:
            result = dispatch_webhook(event, self.context)
        except ReferenceNotFoundError as e:
            logger.info("Webhook reference not found yet, deferring", extra=log_context)
            event.mark_deferred(e.message)
            return self._record(event, PipelineResult(200, "Deferred", event))
        except (PersistenceError, DatabaseError) as e:
            logger.error("Storage fault while handling webhook", extra=log_context, exc_info=True)
            event.mark_failed(f"Storage fault: {e}")
            self._record(event, None)
            return PipelineResult(503, "Storage unavailable", event)
        except BaseApplicationError as e:
            logger.warning(
                f"Webhook handler failed: {e.error_code}",
                extra={**log_context, "error": e.message},
            )
            event.mark_failed(str(e))
            return self._record(event, PipelineResult(200, "Recorded failure", event))
        except Exception as e:
            logger.error(
                f"Unexpected error handling webhook: {type(e).__name__}",
                extra=log_context,
                exc_info=True,
            )
            event.mark_failed(f"{type(e).__name__}: {e}")
            return self._record(event, PipelineResult(200, "Recorded failure", event))

        # Step 5: Record
        if result.success:
            note = IGNORED_EVENT_NOTE if result.data == IGNORED_EVENT_NOTE else None
            event.mark_processed(note)
            logger.info("Webhook processed successfully", extra=log_context)
            return self._record(event, PipelineResult(200, "Processed", event))

        logger.warning(
            f"Webhook handler reported failure: {result.error_code}",
            extra={**log_context, "error": result.error},
        )
        event.mark_failed(f"[{result.error_code}] {result.error}" if result.error_code else result.error)
        return self._record(event, PipelineResult(200, "Recorded failure", event))

    def _record(self, event: WebhookEvent, result: PipelineResult | None) -> PipelineResult | None:
        """Save the event outcome; a failed save turns the answer into a 503."""
        try:
            event.save(update_fields=RECORD_FIELDS)
        except DatabaseError:
            self.get_logger().error(
                "Could not record webhook outcome",
                extra={"webhook_event_id": str(event.pk), "status": event.status},
                exc_info=True,
            )
            return PipelineResult(503, "Storage unavailable", event)
        return result
