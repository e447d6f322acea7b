"""
State enums and the guarded transition engine for escrow models.

The machine module imports models, so it is not re-exported here; import
it as ``from escrow.state_machines.machine import PaymentStateMachine``.
"""

from escrow.state_machines.states import (
    DiscrepancyKind,
    PaymentStatus,
    PayoutStatus,
    ReconciliationRunStatus,
    ReleaseResolution,
    WebhookEventStatus,
)

__all__ = [
    "DiscrepancyKind",
    "PaymentStatus",
    "PayoutStatus",
    "ReconciliationRunStatus",
    "ReleaseResolution",
    "WebhookEventStatus",
]
