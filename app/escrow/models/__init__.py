"""
Escrow models.

Usage:
    from escrow.models import Payment, Payout, WebhookEvent
"""

from escrow.models.payment import Payment
from escrow.models.payout import Payout
from escrow.models.reconciliation import ReconciliationDiscrepancy, ReconciliationRun
from escrow.models.transfer_recipient import TransferRecipient
from escrow.models.webhook_event import WebhookEvent

__all__ = [
    "Payment",
    "Payout",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "TransferRecipient",
    "WebhookEvent",
]
