"""
Escrow signals.

The state machines send these after a transition has committed, with
send_robust(), so a failing receiver can never undo or block a money
movement. Notification delivery lives outside this app and hooks the same
signals.

Signals:
    payment_status_changed: kwargs instance, previous_status, new_status, reason
    payout_status_changed: kwargs instance, previous_status, new_status, reason

Usage:
    from django.dispatch import receiver
    from escrow.signals import payment_status_changed

    @receiver(payment_status_changed)
    def notify_client(sender, instance, previous_status, new_status, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger("escrow.audit")


payment_status_changed = Signal()
payout_status_changed = Signal()


@receiver(payment_status_changed, dispatch_uid="escrow_audit_payment_transition")
def log_payment_transition(sender, instance, previous_status, new_status, reason=None, **kwargs):
    """Write one structured audit line per committed payment transition."""
    logger.info(
        "Payment status changed",
        extra={
            "payment_id": str(instance.pk),
            "booking_id": str(instance.booking_id),
            "gateway_reference": instance.gateway_reference,
            "previous_status": previous_status,
            "new_status": new_status,
            "reason": reason,
        },
    )


@receiver(payout_status_changed, dispatch_uid="escrow_audit_payout_transition")
def log_payout_transition(sender, instance, previous_status, new_status, reason=None, **kwargs):
    """Write one structured audit line per committed payout transition."""
    logger.info(
        "Payout status changed",
        extra={
            "payout_id": str(instance.pk),
            "payment_id": str(instance.payment_id),
            "transfer_reference": instance.transfer_reference,
            "previous_status": previous_status,
            "new_status": new_status,
            "reason": reason,
        },
    )
