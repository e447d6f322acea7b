"""
Guarded transition engine for Payment and Payout rows.

Every status change is a single conditional UPDATE:

    UPDATE payments SET status = <target>, ...
    WHERE id = <id> AND status = <status just read>

If the row moved in between, zero rows match and the call is a no-op. This
is the only concurrency control in the subsystem: duplicate webhooks,
webhook/reconciliation races and concurrent release requests all collapse
into exactly one applied transition per edge.

The legal edges are not listed here. They are read from the django-fsm
@transition declarations on the models, so the graph has a single source.

Outcome rules for transition(pk, target):
    current == target                 -> no-op (applied=False)
    (current, target) declared        -> conditional update
    row went through target already   -> no-op (already past target)
    anything else                     -> StateTransitionError

Usage:
    from escrow.state_machines import PaymentStatus
    from escrow.state_machines.machine import PaymentStateMachine

    outcome = PaymentStateMachine().transition(
        payment.id,
        PaymentStatus.ESCROW,
        fields={"paid_at": timezone.now()},
        reason="charge.success",
    )
    if outcome.applied:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from django.db import DatabaseError, models, transaction
from django.utils import timezone

from bookings.models import Booking, BookingStatus
from core.exceptions import NotFoundError

from escrow.exceptions import PersistenceError, StateTransitionError
from escrow.models import Payment, Payout
from escrow.signals import payment_status_changed, payout_status_changed
from escrow.state_machines.states import PaymentStatus, PayoutStatus

if TYPE_CHECKING:
    from typing import Any

    from django.dispatch import Signal

logger = logging.getLogger(__name__)


# =============================================================================
# Booking Side Effects
# =============================================================================

# Booking status written in the same transaction as the payment transition.
BOOKING_STATUS_FOR_PAYMENT_STATUS: dict[str, str] = {
    PaymentStatus.ESCROW: BookingStatus.PENDING_EXECUTION,
    PaymentStatus.PROCESSING_RELEASE: BookingStatus.PAID,
    PaymentStatus.RELEASED: BookingStatus.COMPLETED,
}


# =============================================================================
# Graph Helpers
# =============================================================================


@lru_cache(maxsize=None)
def declared_edges(model: type[models.Model], field_name: str = "status") -> frozenset[tuple[str, str]]:
    """
    Return the (source, target) pairs declared with @transition on a model.
    """
    field = model._meta.get_field(field_name)
    return frozenset(
        (str(t.source), str(t.target)) for t in field.get_all_transitions(model)
    )


def reachable_from(
    edges: frozenset[tuple[str, str]],
    start: str,
    excluded: frozenset[tuple[str, str]] = frozenset(),
) -> set[str]:
    """All states reachable from ``start`` by one or more edges."""
    seen: set[str] = set()
    frontier = [start]
    while frontier:
        state = frontier.pop()
        for source, target in edges:
            if source == state and (source, target) not in excluded and target not in seen:
                seen.add(target)
                frontier.append(target)
    return seen


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class TransitionOutcome:
    """
    Result of a transition request.

    Attributes:
        instance: Row as stored after the call (fresh from the database)
        applied: True only if this call moved the row
        previous_status: Status read before the update was attempted
    """

    instance: models.Model
    applied: bool
    previous_status: str

    @property
    def payment(self) -> Payment:
        return self.instance

    @property
    def payout(self) -> Payout:
        return self.instance


# =============================================================================
# Engine
# =============================================================================


class GuardedStateMachine:
    """
    Applies declared transitions to one model with conditional updates.

    Subclasses set:
        model: Model whose ``status`` FSMField declares the graph
        status_changed: Signal sent after commit for applied transitions
        override_edges: Edges allowed only as explicit administrator
            actions; ignored when deciding whether a row is already past
            a target
    """

    model: type[models.Model]
    status_changed: Signal
    override_edges: frozenset[tuple[str, str]] = frozenset()

    @property
    def edges(self) -> frozenset[tuple[str, str]]:
        return declared_edges(self.model)

    def can_transition(self, current: str, target: str) -> bool:
        """Check if (current -> target) is a declared edge."""
        return (str(current), str(target)) in self.edges

    def is_at_or_past(self, current: str, target: str, instance=None) -> bool:
        """
        Check if a row in ``current`` has already been through ``target``.

        Reachability alone is not enough when ``current`` also follows
        other states (FAILED follows both PENDING and PROCESSING_RELEASE).
        Given the row, went_through() decides which path it took.
        """
        if current == target:
            return True
        if current not in reachable_from(self.edges, target, self.override_edges):
            return False
        return instance is None or self.went_through(instance, target)

    def went_through(self, instance, target: str) -> bool:
        """Check the row's own history for ``target``. Subclasses narrow this."""
        return True

    def transition(
        self,
        pk: Any,
        target: str,
        *,
        expected: str | None = None,
        fields: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        """
        Move a row to ``target`` if the graph allows it.

        Args:
            pk: Primary key of the row
            target: Desired status
            expected: If given, only apply when the row is in this status
            fields: Extra columns written by the same UPDATE
            reason: Free text passed to logs and to the change signal

        Returns:
            TransitionOutcome; applied=False for no-ops

        Raises:
            NotFoundError: No such row
            StateTransitionError: The graph does not allow the move
            PersistenceError: The database failed
        """
        name = self.model.__name__
        try:
            instance = self.model.objects.get(pk=pk)
            current = instance.status

            if current == target:
                return TransitionOutcome(instance=instance, applied=False, previous_status=current)

            allowed = self.can_transition(current, target) and (
                expected is None or current == expected
            )
            if not allowed:
                if self.is_at_or_past(current, target, instance):
                    logger.info(
                        f"{name} already past {target}, transition skipped",
                        extra={"id": str(pk), "current_status": current, "target_status": target},
                    )
                    return TransitionOutcome(instance=instance, applied=False, previous_status=current)

                raise StateTransitionError(
                    f"Cannot move {name.lower()} from {current} to {target}",
                    details={
                        "id": str(pk),
                        "current_status": current,
                        "target_status": target,
                        "expected_status": expected,
                    },
                )

            with transaction.atomic():
                updated = self._apply(instance, current, target, fields or {})

            instance = self.model.objects.get(pk=pk)

        except self.model.DoesNotExist:
            raise NotFoundError(
                f"{name} not found",
                details={"id": str(pk)},
            ) from None
        except DatabaseError as e:
            logger.error(
                f"Database error during {name.lower()} transition",
                extra={"id": str(pk), "target_status": target},
                exc_info=True,
            )
            raise PersistenceError(
                f"Could not persist {name.lower()} transition: {e}",
                details={"id": str(pk), "target_status": target},
            ) from e

        if not updated:
            logger.info(
                f"{name} moved concurrently, transition skipped",
                extra={"id": str(pk), "read_status": current, "target_status": target},
            )
            return TransitionOutcome(instance=instance, applied=False, previous_status=current)

        logger.info(
            f"{name} transition applied",
            extra={
                "id": str(pk),
                "previous_status": current,
                "new_status": target,
                "reason": reason,
            },
        )
        transaction.on_commit(
            lambda: self._notify(instance, current, target, reason)
        )
        return TransitionOutcome(instance=instance, applied=True, previous_status=current)

    def _apply(self, instance, current: str, target: str, fields: dict[str, Any]) -> int:
        """Run the conditional update. Returns the number of rows changed."""
        return self.model.objects.filter(pk=instance.pk, status=current).update(
            status=target,
            updated_at=timezone.now(),
            **fields,
        )

    def _notify(self, instance, previous: str, new: str, reason: str | None) -> None:
        """Send the change signal; receiver failures are logged, never raised."""
        responses = self.status_changed.send_robust(
            sender=self.model,
            instance=instance,
            previous_status=previous,
            new_status=new,
            reason=reason,
        )
        for receiver_func, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    f"{self.model.__name__} status receiver failed: {response}",
                    extra={
                        "id": str(instance.pk),
                        "receiver": getattr(receiver_func, "__name__", repr(receiver_func)),
                    },
                    exc_info=response,
                )


class PaymentStateMachine(GuardedStateMachine):
    """
    Transitions for Payment, with the booking status kept in step.

    Graph (declared on Payment):
        PENDING -> ESCROW -> PROCESSING_RELEASE -> RELEASED
        PENDING -> FAILED
        ESCROW -> REFUNDED
        PROCESSING_RELEASE -> FAILED
    """

    model = Payment
    status_changed = payment_status_changed

    def went_through(self, instance, target):
        # Only a payment that was paid can have failed after escrow.
        if instance.status == PaymentStatus.FAILED and target in (
            PaymentStatus.ESCROW,
            PaymentStatus.PROCESSING_RELEASE,
        ):
            return instance.paid_at is not None
        return True

    def _apply(self, instance, current, target, fields):
        updated = super()._apply(instance, current, target, fields)
        booking_status = BOOKING_STATUS_FOR_PAYMENT_STATUS.get(target)
        if updated and booking_status:
            Booking.objects.filter(pk=instance.booking_id).update(
                status=booking_status,
                updated_at=timezone.now(),
            )
        return updated


class PayoutStateMachine(GuardedStateMachine):
    """
    Transitions for Payout.

    Graph (declared on Payout):
        PENDING -> PROCESSING
        PENDING/PROCESSING -> COMPLETED
        PENDING/PROCESSING -> FAILED
        FAILED -> PENDING (administrator retry)
    """

    model = Payout
    status_changed = payout_status_changed
    override_edges = frozenset({(PayoutStatus.FAILED.value, PayoutStatus.PENDING.value)})
