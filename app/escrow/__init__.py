"""
Escrow payments application.

Moves a client's money through a held (escrow) state to a provider payout,
driven by Paystack callbacks:

    client -> PaymentOrchestrator -> Paystack initialize -> Payment PENDING
    Paystack charge.success webhook -> WebhookPipeline -> Payment ESCROW
    release request -> PayoutOrchestrator -> Paystack transfer -> PROCESSING_RELEASE
    Paystack transfer.success webhook -> Payout COMPLETED, Payment RELEASED
    ReconciliationService -> closes the gap left by lost webhooks

Components:
    - escrow.gateway: PaystackClient, the only code that talks HTTP to Paystack
    - escrow.models: Payment, Payout, WebhookEvent, TransferRecipient,
      ReconciliationRun, ReconciliationDiscrepancy
    - escrow.state_machines: guarded conditional status transitions
    - escrow.services: orchestrators, webhook pipeline, reconciliation
    - escrow.webhooks: webhook endpoint and per-event handlers
    - escrow.tasks: Celery tasks (webhook retry, reconciliation, transfers)

Usage:
    from escrow.apps import get_gateway_client
    from escrow.services import PaymentOrchestrator

    orchestrator = PaymentOrchestrator(get_gateway_client())
    result = orchestrator.initiate_payment(booking_id, payer, callback_url)
"""
