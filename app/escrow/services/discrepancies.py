"""
Recording and closing discrepancies that need an administrator.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from escrow.models import ReconciliationDiscrepancy

if TYPE_CHECKING:
    from typing import Any

    from authentication.models import User
    from escrow.models import Payment, Payout, ReconciliationRun

logger = logging.getLogger(__name__)


def record_discrepancy(
    payment: Payment,
    kind: str,
    *,
    payout: Payout | None = None,
    gateway_status: str = "",
    details: dict[str, Any] | None = None,
    run: ReconciliationRun | None = None,
) -> ReconciliationDiscrepancy:
    """
    Store a discrepancy for manual review.

    An open discrepancy of the same kind for the same payment is reused, so
    repeated detection does not flood the review queue.
    """
    existing = ReconciliationDiscrepancy.objects.filter(
        payment=payment, kind=kind, resolved=False
    ).first()
    if existing is not None:
        return existing

    discrepancy = ReconciliationDiscrepancy.objects.create(
        payment=payment,
        payout=payout,
        run=run,
        kind=kind,
        local_status=payment.status,
        gateway_status=gateway_status or "",
        details=details or {},
    )
    logger.warning(
        "Discrepancy recorded for manual review",
        extra={
            "discrepancy_id": str(discrepancy.pk),
            "payment_id": str(payment.pk),
            "kind": kind,
            "gateway_status": gateway_status,
        },
    )
    return discrepancy


def resolve_open_discrepancies(payment: Payment, resolved_by: User, notes: str = "") -> int:
    """Close every open discrepancy for a payment. Returns how many were closed."""
    count = 0
    for discrepancy in ReconciliationDiscrepancy.objects.filter(payment=payment, resolved=False):
        discrepancy.resolve(resolved_by, notes)
        discrepancy.save(
            update_fields=[
                "resolved",
                "resolved_at",
                "resolved_by",
                "resolution_notes",
                "updated_at",
            ]
        )
        count += 1
    return count
