"""
Tests for the guarded state machines.

Tests cover:
- The declared transition graphs
- Applied, no-op and illegal transitions
- Booking status side effects
- Reachability of RELEASED
- On-commit change signals
"""

import pytest
from django.utils import timezone

from bookings.models import Booking, BookingStatus
from core.exceptions import NotFoundError
from escrow.exceptions import StateTransitionError
from escrow.models import Payment, Payout
from escrow.signals import payment_status_changed
from escrow.state_machines import PaymentStatus, PayoutStatus
from escrow.state_machines.machine import (
    PaymentStateMachine,
    PayoutStateMachine,
    reachable_from,
)
from escrow.tests.factories import PaymentFactory, PayoutFactory

P = PaymentStatus
PO = PayoutStatus


# =============================================================================
# Graph
# =============================================================================


class TestPaymentGraph:
    """Tests for the edges declared on Payment."""

    def test_declared_edges(self):
        """Should expose exactly the payment lifecycle edges."""
        assert PaymentStateMachine().edges == {
            (P.PENDING, P.ESCROW),
            (P.PENDING, P.FAILED),
            (P.ESCROW, P.PROCESSING_RELEASE),
            (P.ESCROW, P.REFUNDED),
            (P.PROCESSING_RELEASE, P.RELEASED),
            (P.PROCESSING_RELEASE, P.FAILED),
        }

    def test_released_only_reachable_through_escrow_and_processing_release(self):
        """Every path into RELEASED should pass ESCROW then PROCESSING_RELEASE."""
        edges = PaymentStateMachine().edges
        into_released = {source for source, target in edges if target == P.RELEASED}
        into_processing = {source for source, target in edges if target == P.PROCESSING_RELEASE}

        assert into_released == {P.PROCESSING_RELEASE}
        assert into_processing == {P.ESCROW}

    def test_terminal_states_have_no_exits(self):
        edges = PaymentStateMachine().edges

        for terminal in (P.RELEASED, P.REFUNDED, P.FAILED):
            assert reachable_from(edges, terminal) == set()

    def test_payout_override_edge_is_not_used_for_reachability(self):
        """FAILED -> PENDING is an admin override, not a normal path."""
        machine = PayoutStateMachine()

        assert (PO.FAILED, PO.PENDING) in machine.edges
        assert reachable_from(machine.edges, PO.FAILED, machine.override_edges) == set()
        assert machine.is_at_or_past(PO.COMPLETED, PO.PROCESSING) is True

# =============================================================================
# Transitions
# =============================================================================


class TestPaymentTransitions:
    """Tests for PaymentStateMachine.transition()."""

    def test_applies_declared_edge(self, db):
        """Should move PENDING -> ESCROW and write extra fields."""
        payment = PaymentFactory()

        outcome = PaymentStateMachine().transition(
            payment.pk,
            P.ESCROW,
            fields={"gateway_transaction_id": "123"},
        )

        assert outcome.applied is True
        assert outcome.previous_status == P.PENDING
        stored = Payment.objects.get(pk=payment.pk)
        assert stored.status == P.ESCROW
        assert stored.gateway_transaction_id == "123"

    def test_same_status_is_noop(self, db):
        payment = PaymentFactory(status=P.ESCROW)

        outcome = PaymentStateMachine().transition(payment.pk, P.ESCROW)

        assert outcome.applied is False
        assert outcome.payment.status == P.ESCROW

    def test_already_past_target_is_noop(self, db):
        """A late ESCROW request for a RELEASED payment changes nothing."""
        payment = PaymentFactory(status=P.RELEASED)

        outcome = PaymentStateMachine().transition(payment.pk, P.ESCROW)

        assert outcome.applied is False
        assert Payment.objects.get(pk=payment.pk).status == P.RELEASED

    def test_undeclared_edge_raises(self, db):
        """Should refuse PENDING -> RELEASED."""
        payment = PaymentFactory()

        with pytest.raises(StateTransitionError) as exc_info:
            PaymentStateMachine().transition(payment.pk, P.RELEASED)

        assert exc_info.value.details["current_status"] == P.PENDING
        assert exc_info.value.http_status == 409
        assert Payment.objects.get(pk=payment.pk).status == P.PENDING

    def test_refunded_payment_cannot_be_released(self, db):
        payment = PaymentFactory(status=P.REFUNDED)

        with pytest.raises(StateTransitionError):
            PaymentStateMachine().transition(payment.pk, P.PROCESSING_RELEASE)

    def test_expected_status_mismatch_is_not_applied(self, db):
        """Should not fail a payment that is not in the expected status."""
        payment = PaymentFactory(status=P.PENDING)

        with pytest.raises(StateTransitionError):
            PaymentStateMachine().transition(
                payment.pk,
                P.FAILED,
                expected=P.PROCESSING_RELEASE,
            )

    def test_unknown_payment_raises_not_found(self, db):
        import uuid

        with pytest.raises(NotFoundError):
            PaymentStateMachine().transition(uuid.uuid4(), P.ESCROW)

    def test_concurrent_move_is_noop(self, db, mocker):
        """Should report applied=False when the conditional update matches no row."""
        payment = PaymentFactory()
        machine = PaymentStateMachine()
        mocker.patch.object(machine, "_apply", return_value=0)

        outcome = machine.transition(payment.pk, P.ESCROW)

        assert outcome.applied is False

    def test_row_moved_between_read_and_update(self, db, mocker):
        """Webhook and reconciliation racing to ESCROW apply exactly one transition."""
        payment = PaymentFactory()
        webhook = PaymentStateMachine()
        reconciliation = PaymentStateMachine()
        real_apply = webhook._apply
        competing = []

        def apply_after_reconciliation(instance, current, target, fields):
            competing.append(reconciliation.transition(instance.pk, P.ESCROW, reason="reconciliation"))
            return real_apply(instance, current, target, fields)

        mocker.patch.object(webhook, "_apply", side_effect=apply_after_reconciliation)

        outcome = webhook.transition(payment.pk, P.ESCROW, reason="charge.success")

        assert competing[0].applied is True
        assert outcome.applied is False
        assert outcome.previous_status == P.PENDING
        assert outcome.payment.status == P.ESCROW
        assert Payment.objects.get(pk=payment.pk).status == P.ESCROW

    @pytest.mark.parametrize("target", [P.ESCROW, P.PROCESSING_RELEASE])
    def test_unpaid_failed_payment_cannot_move_forward(self, db, target):
        """A payment failed before it was paid never went through escrow."""
        payment = PaymentFactory(status=P.FAILED)

        with pytest.raises(StateTransitionError) as exc_info:
            PaymentStateMachine().transition(payment.pk, target)

        assert exc_info.value.details["current_status"] == P.FAILED
        assert Payment.objects.get(pk=payment.pk).status == P.FAILED

    def test_payment_failed_after_release_is_past_escrow(self, db):
        """A late ESCROW request for a payment that failed during release changes nothing."""
        payment = PaymentFactory(status=P.FAILED, paid_at=timezone.now())

        outcome = PaymentStateMachine().transition(payment.pk, P.ESCROW)

        assert outcome.applied is False
        assert Payment.objects.get(pk=payment.pk).status == P.FAILED


class TestBookingSideEffects:
    """Tests for booking status updates made with payment transitions."""

    @pytest.mark.parametrize(
        "start,target,booking_status",
        [
            (P.PENDING, P.ESCROW, BookingStatus.PENDING_EXECUTION),
            (P.ESCROW, P.PROCESSING_RELEASE, BookingStatus.PAID),
            (P.PROCESSING_RELEASE, P.RELEASED, BookingStatus.COMPLETED),
        ],
    )
    def test_booking_follows_payment(self, db, start, target, booking_status):
        payment = PaymentFactory(status=start)

        PaymentStateMachine().transition(payment.pk, target)

        assert Booking.objects.get(pk=payment.booking_id).status == booking_status

    def test_failed_payment_leaves_booking_alone(self, db):
        payment = PaymentFactory()
        original = payment.booking.status

        PaymentStateMachine().transition(payment.pk, P.FAILED)

        assert Booking.objects.get(pk=payment.booking_id).status == original

    def test_noop_does_not_touch_booking(self, db):
        payment = PaymentFactory(status=P.ESCROW)
        Booking.objects.filter(pk=payment.booking_id).update(status=BookingStatus.IN_PROGRESS)

        PaymentStateMachine().transition(payment.pk, P.ESCROW)

        assert Booking.objects.get(pk=payment.booking_id).status == BookingStatus.IN_PROGRESS


class TestPayoutTransitions:
    def test_completes_from_pending(self, db):
        """A transfer webhook can complete a payout before it reached PROCESSING."""
        payout = PayoutFactory()

        outcome = PayoutStateMachine().transition(payout.pk, PO.COMPLETED)

        assert outcome.applied is True
        assert Payout.objects.get(pk=payout.pk).status == PO.COMPLETED

    def test_late_processing_after_completed_is_noop(self, db):
        payout = PayoutFactory(status=PO.COMPLETED)

        outcome = PayoutStateMachine().transition(payout.pk, PO.PROCESSING, expected=PO.PENDING)

        assert outcome.applied is False

    def test_completed_cannot_fail(self, db):
        payout = PayoutFactory(status=PO.COMPLETED)

        with pytest.raises(StateTransitionError):
            PayoutStateMachine().transition(payout.pk, PO.FAILED)

    def test_failed_can_be_reset_for_retry(self, db):
        payout = PayoutFactory(status=PO.FAILED)

        outcome = PayoutStateMachine().transition(payout.pk, PO.PENDING, expected=PO.FAILED)

        assert outcome.applied is True


# =============================================================================
# Signals
# =============================================================================


class TestTransitionSignals:
    def test_signal_sent_after_commit(self, db, django_capture_on_commit_callbacks):
        """Should notify receivers once the transition has committed."""
        payment = PaymentFactory()
        received = []

        def receiver(sender, instance, previous_status, new_status, **kwargs):
            received.append((previous_status, new_status, kwargs.get("reason")))

        payment_status_changed.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                PaymentStateMachine().transition(payment.pk, P.ESCROW, reason="charge succeeded")
        finally:
            payment_status_changed.disconnect(receiver)

        assert received == [(P.PENDING, P.ESCROW, "charge succeeded")]

    def test_failing_receiver_does_not_undo_transition(self, db, django_capture_on_commit_callbacks):
        payment = PaymentFactory()

        def broken(sender, **kwargs):
            raise RuntimeError("mailer down")

        payment_status_changed.connect(broken)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                outcome = PaymentStateMachine().transition(payment.pk, P.ESCROW)
        finally:
            payment_status_changed.disconnect(broken)

        assert outcome.applied is True
        assert Payment.objects.get(pk=payment.pk).status == P.ESCROW

    def test_noop_sends_no_signal(self, db, django_capture_on_commit_callbacks):
        payment = PaymentFactory(status=P.ESCROW)

        with django_capture_on_commit_callbacks() as callbacks:
            PaymentStateMachine().transition(payment.pk, P.ESCROW)

        assert callbacks == []
