"""
Celery tasks for escrow processing.

This module provides async tasks for:
- Reprocessing stored webhook events
- Retrying failed or deferred webhook events
- Resetting webhook events stuck in PROCESSING
- Reconciling stale payments against Paystack
- Re-sending a payout transfer Paystack never received

The periodic tasks are registered with django-celery-beat by the
escrow migration 0002_periodic_tasks.

Usage:
    from escrow.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import DatabaseError
from django.db.models import Q
from django.utils import timezone

from escrow.apps import get_gateway_client
from escrow.exceptions import PersistenceError
from escrow.models import WebhookEvent
from escrow.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

WEBHOOK_RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(PersistenceError, DatabaseError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Run dispatch and recording again for a stored webhook event.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with the processing outcome

    Raises:
        PersistenceError: Storage fault; triggers Celery retry
    """
    from escrow.services import WebhookPipeline

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    result = WebhookPipeline(get_gateway_client()).process_event(webhook_event)
    if result.status_code == 503:
        raise PersistenceError(
            "Storage unavailable while processing webhook",
            details={"webhook_event_id": str(webhook_event_id)},
        )

    status = result.event.status if result.event is not None else None
    return {
        "status": status.lower() if status else "unknown",
        "message": result.message,
        "webhook_event_id": str(webhook_event_id),
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry FAILED and DEFERRED webhook events.

    Events that reached ESCROW_WEBHOOK_MAX_RETRIES attempts stay FAILED
    for manual inspection.

    Returns:
        Dict with count of webhooks queued for retry
    """
    retryable = WebhookEvent.objects.filter(
        status__in=[WebhookEventStatus.FAILED, WebhookEventStatus.DEFERRED],
        retry_count__lt=settings.ESCROW_WEBHOOK_MAX_RETRIES,
    ).order_by("received_at")[:WEBHOOK_RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in retryable:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "event_type": webhook.event_type,
                "status": webhook.status,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Finds webhooks that have been in PROCESSING status for longer than
    ESCROW_WEBHOOK_STUCK_MINUTES (worker crashed mid-dispatch) and marks
    them FAILED so retry_failed_webhooks picks them up.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=settings.ESCROW_WEBHOOK_STUCK_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.PROCESSING) & Q(updated_at__lt=threshold)
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "event_type": webhook.event_type,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Reconciliation & Payout Tasks
# =============================================================================


@shared_task(acks_late=True)
def reconcile_stale_payments(stale_minutes: int | None = None) -> dict:
    """
    Periodic task: verify stale PENDING/PROCESSING_RELEASE payments.

    Args:
        stale_minutes: Override ESCROW_RECONCILIATION_STALE_MINUTES

    Returns:
        Dict with the run's counters
    """
    from escrow.services import ReconciliationService

    minutes = stale_minutes or settings.ESCROW_RECONCILIATION_STALE_MINUTES
    run = ReconciliationService(get_gateway_client()).reconcile_stale_payments(
        older_than=timedelta(minutes=minutes)
    )
    return {
        "run_id": str(run.id),
        "status": run.status,
        "payments_checked": run.payments_checked,
        "transitions_applied": run.transitions_applied,
        "flagged_for_review": run.flagged_for_review,
        "errors": run.errors,
    }


@shared_task(acks_late=True)
def execute_payout_transfer(payout_id: str) -> dict:
    """
    Send (again) the transfer for a PENDING payout.

    Queued by reconciliation once Paystack confirms it has no transfer
    with the payout's reference, so a resend cannot pay twice.

    Args:
        payout_id: UUID of the Payout

    Returns:
        Dict with whether the outcome is still pending
    """
    from escrow.services import PayoutOrchestrator

    logger.info("Executing payout transfer", extra={"payout_id": str(payout_id)})
    pending = PayoutOrchestrator(get_gateway_client()).execute_transfer(payout_id)
    return {"payout_id": str(payout_id), "transfer_pending": pending}
