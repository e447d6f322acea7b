"""
Escrow services.

This module provides:
- PaymentOrchestrator: Charge initiation, refunds, charge outcomes
- PayoutOrchestrator: Escrow release, transfers, manual resolution
- ReconciliationService: Re-verifies stale payments against Paystack
- WebhookPipeline: Verify, persist, dedupe and dispatch notifications

Every service takes the Paystack client in its constructor:

    from escrow.apps import get_gateway_client
    from escrow.services import PayoutOrchestrator

    PayoutOrchestrator(get_gateway_client()).release_escrow(payment_id, user)
"""

from escrow.services.payment_orchestrator import (
    ChargeResolution,
    InitiationResult,
    PaymentOrchestrator,
)
from escrow.services.payout_orchestrator import PayoutOrchestrator, ReleaseResult
from escrow.services.reconciliation_service import ReconcileOutcome, ReconciliationService
from escrow.services.webhook_pipeline import PipelineResult, WebhookPipeline

__all__ = [
    "ChargeResolution",
    "InitiationResult",
    "PaymentOrchestrator",
    "PayoutOrchestrator",
    "PipelineResult",
    "ReconcileOutcome",
    "ReconciliationService",
    "ReleaseResult",
    "WebhookPipeline",
]
