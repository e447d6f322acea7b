"""
Webhook event handlers for Paystack events.

Each handler receives the stored WebhookEvent and a HandlerContext holding
the services built around the shared gateway client. Handlers only apply
transitions through those services; they never write Payment or Payout
rows directly.

Handler contract:
    - return ServiceResult.success(...) when the event has been applied
      (including idempotent no-ops)
    - return ServiceResult.failure(...) for expected business failures;
      the event is marked FAILED and acknowledged
    - raise ReferenceNotFoundError when the payment/payout is not there yet;
      the event is DEFERRED and retried later
    - other exceptions propagate to the pipeline, which records them

Usage:
    from escrow.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event, context) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event, context)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from django.conf import settings
from django.utils import timezone

from core.services import ServiceResult

from escrow.exceptions import ReferenceNotFoundError
from escrow.gateway import VerifyResult
from escrow.models import Payment, Payout, WebhookEvent
from escrow.state_machines import DiscrepancyKind, PaymentStatus

if TYPE_CHECKING:
    from escrow.gateway import PaystackClient
    from escrow.services.payment_orchestrator import PaymentOrchestrator
    from escrow.services.payout_orchestrator import PayoutOrchestrator
    from escrow.state_machines.machine import PaymentStateMachine


logger = logging.getLogger(__name__)

IGNORED_EVENT_NOTE = "ignored: no handler"


@dataclass
class HandlerContext:
    """Services available to handlers, all sharing one gateway client."""

    gateway: PaystackClient
    charges: PaymentOrchestrator
    payouts: PayoutOrchestrator
    payments: PaymentStateMachine


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent, HandlerContext], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler for one or more types.

    Usage:
        @register_handler("transfer.failed", "transfer.reversed")
        def handle_transfer_failed(webhook_event, context) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent, HandlerContext], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types succeed with data IGNORED_EVENT_NOTE, so they are
    stored and acknowledged without touching any payment.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"gateway_reference": webhook_event.gateway_reference},
        )
        return ServiceResult.success(IGNORED_EVENT_NOTE)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"gateway_reference": webhook_event.gateway_reference},
    )
    return handler(webhook_event, context)


# =============================================================================
# Lookups
# =============================================================================


def _get_payment(webhook_event: WebhookEvent) -> Payment:
    payment = Payment.objects.filter(gateway_reference=webhook_event.gateway_reference).first()
    if payment is None:
        raise ReferenceNotFoundError(
            f"No payment with reference {webhook_event.gateway_reference}",
            details={"event_type": webhook_event.event_type},
        )
    return payment


def _get_payout(webhook_event: WebhookEvent) -> Payout:
    payout = Payout.objects.filter(transfer_reference=webhook_event.gateway_reference).first()
    if payout is None:
        raise ReferenceNotFoundError(
            f"No payout with reference {webhook_event.gateway_reference}",
            details={"event_type": webhook_event.event_type},
        )
    return payout


def verify_result_from_payload(data: dict, status: str | None = None) -> VerifyResult:
    """Build a VerifyResult from a charge notification's data object."""
    metadata = data.get("metadata")
    return VerifyResult(
        reference=str(data.get("reference") or ""),
        status=status or str(data.get("status") or ""),
        amount_cents=int(data.get("amount") or 0),
        currency=str(data.get("currency") or ""),
        transaction_id=str(data["id"]) if data.get("id") is not None else None,
        gateway_response=data.get("gateway_response"),
        metadata=metadata if isinstance(metadata, dict) else {},
        raw_response=data,
    )


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.success")
def handle_charge_success(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Move the payment into escrow.

    The notification is only trusted after Paystack confirms the charge
    (ESCROW_VERIFY_CHARGES_ON_WEBHOOK), and only for the expected amount.
    """
    payment = _get_payment(webhook_event)

    if settings.ESCROW_VERIFY_CHARGES_ON_WEBHOOK:
        result = context.gateway.verify(payment.gateway_reference)
    else:
        result = verify_result_from_payload(webhook_event.data, status="success")

    if not result.is_successful:
        return ServiceResult.failure(
            f"Gateway reports charge status '{result.status}'",
            error_code="CHARGE_NOT_CONFIRMED",
        )

    resolution = context.charges.apply_charge_result(payment, result)
    if resolution.discrepancy_kind == DiscrepancyKind.CHARGE_AFTER_FAILURE:
        return ServiceResult.failure(
            "Charge confirmed for a payment that already failed",
            error_code="CHARGE_AFTER_FAILURE",
        )
    if resolution.flagged:
        return ServiceResult.failure(
            f"Charged amount {result.amount_cents} does not match {payment.amount_cents}",
            error_code="AMOUNT_MISMATCH",
        )
    return ServiceResult.success(resolution.payment)


@register_handler("charge.failed")
def handle_charge_failed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Mark the payment FAILED with Paystack's reason."""
    payment = _get_payment(webhook_event)
    result = verify_result_from_payload(webhook_event.data, status="failed")
    resolution = context.charges.apply_charge_result(payment, result)
    return ServiceResult.success(resolution.payment)


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("transfer.success")
def handle_transfer_success(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Complete the payout and release the payment together."""
    payout = _get_payout(webhook_event)
    data = webhook_event.data
    context.payouts.apply_transfer_success(payout, data.get("transfer_code"), data)
    return ServiceResult.success(Payout.objects.get(pk=payout.pk))


@register_handler("transfer.failed", "transfer.reversed")
def handle_transfer_failed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Fail the payout and apply ESCROW_TRANSFER_FAILURE_POLICY.

    Under the default manual policy the payment stays PROCESSING_RELEASE
    and a discrepancy waits for an administrator.
    """
    payout = _get_payout(webhook_event)
    data = webhook_event.data
    status = str(data.get("status") or webhook_event.event_type.split(".")[-1])
    reason = data.get("reason") or data.get("gateway_response") or f"Transfer {status}"
    context.payouts.apply_transfer_failure(
        payout,
        str(reason),
        gateway_status=status,
        raw_response=data,
    )
    return ServiceResult.success(Payout.objects.get(pk=payout.pk))


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler("refund.processed")
def handle_refund_processed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Move an escrowed payment to REFUNDED."""
    payment = _get_payment(webhook_event)
    outcome = context.payments.transition(
        payment.pk,
        PaymentStatus.REFUNDED,
        fields={"refunded_at": timezone.now()},
        reason="refund processed",
    )
    return ServiceResult.success(outcome.payment)
