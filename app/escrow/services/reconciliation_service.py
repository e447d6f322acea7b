"""
Reconciliation service: heals payments the webhooks did not finish.

Paystack notifications can be late, lost, or rejected by our endpoint, and
gateway calls can time out with an unknown outcome. This service re-asks
Paystack about payments that have not moved for a while and applies the
answer through the same guarded state machines the webhook pipeline uses.
Whichever path arrives first performs the transition; the other is a no-op.

What gets checked:
    PENDING             verify(reference)
        success, amount matches   -> ESCROW
        success, amount differs   -> AMOUNT_MISMATCH discrepancy
        failed / reversed         -> FAILED
        abandoned, old enough     -> FAILED
    PROCESSING_RELEASE  verify_transfer(payout.transfer_reference)
        success                   -> payout COMPLETED, payment RELEASED
        failed / reversed         -> payout FAILED + failure policy
        unknown to Paystack       -> transfer re-issued (payout still PENDING)

Usage:
    from escrow.apps import get_gateway_client
    from escrow.services import ReconciliationService

    run = ReconciliationService(get_gateway_client()).reconcile_stale_payments(
        older_than=timedelta(minutes=10)
    )
    print(run.transitions_applied, run.flagged_for_review)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService

from escrow.exceptions import GatewayError, GatewayRequestError, PersistenceError, StateTransitionError
from escrow.models import Payment, Payout, ReconciliationRun
from escrow.services.payment_orchestrator import PaymentOrchestrator
from escrow.services.payout_orchestrator import PayoutOrchestrator
from escrow.state_machines import PaymentStatus, PayoutStatus, ReconciliationRunStatus
from escrow.state_machines.machine import PaymentStateMachine

if TYPE_CHECKING:
    from escrow.gateway import PaystackClient


RECONCILABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING_RELEASE)


@dataclass
class ReconcileOutcome:
    """
    Result of reconciling one payment.

    Attributes:
        payment: Payment as stored after the check
        applied: True if the payment status changed
        flagged: True if a discrepancy was recorded
        transfer_reissued: True if a transfer resend was queued
        gateway_status: Status Paystack reported, if asked
    """

    payment: Payment
    applied: bool = False
    flagged: bool = False
    transfer_reissued: bool = False
    gateway_status: str = ""


class ReconciliationService(BaseService):
    """
    Verifies stale payments against Paystack.

    Args:
        gateway: Paystack client built at startup (see escrow.apps)
    """

    def __init__(self, gateway: PaystackClient):
        self.gateway = gateway
        self.payments = PaymentStateMachine()
        self.charges = PaymentOrchestrator(gateway)
        self.transfers = PayoutOrchestrator(gateway)

    def reconcile_stale_payments(self, older_than: timedelta | None = None) -> ReconciliationRun:
        """
        Verify every PENDING or PROCESSING_RELEASE payment untouched for
        longer than ``older_than``, oldest first.

        Gateway errors are counted per payment and never stop the run.
        A database fault marks the run FAILED and propagates.
        """
        logger = self.get_logger()
        if older_than is None:
            older_than = timedelta(minutes=settings.ESCROW_RECONCILIATION_STALE_MINUTES)

        run = ReconciliationRun.objects.create(
            stale_after_minutes=int(older_than.total_seconds() // 60),
        )
        cutoff = timezone.now() - older_than

        logger.info(
            "Starting reconciliation run",
            extra={"run_id": str(run.pk), "cutoff": cutoff.isoformat()},
        )

        try:
            payment_ids = list(
                Payment.objects.filter(status__in=RECONCILABLE_STATUSES, updated_at__lt=cutoff)
                .order_by("updated_at")
                .values_list("pk", flat=True)[: settings.ESCROW_RECONCILIATION_BATCH_SIZE]
            )

            for payment_id in payment_ids:
                try:
                    outcome = self.reconcile_payment(payment_id, run=run)
                except (GatewayError, StateTransitionError, NotFoundError) as e:
                    run.errors += 1
                    logger.warning(
                        f"Could not reconcile payment: {type(e).__name__}",
                        extra={"run_id": str(run.pk), "payment_id": str(payment_id), "error": str(e)},
                    )
                    continue

                run.payments_checked += 1
                if outcome.applied:
                    run.transitions_applied += 1
                if outcome.flagged:
                    run.flagged_for_review += 1

        except (DatabaseError, PersistenceError) as e:
            logger.error(
                "Reconciliation run aborted by a database error",
                extra={"run_id": str(run.pk)},
                exc_info=True,
            )
            run.status = ReconciliationRunStatus.FAILED
            run.error_message = str(e)
            run.completed_at = timezone.now()
            run.save()
            raise

        run.status = ReconciliationRunStatus.COMPLETED
        run.completed_at = timezone.now()
        run.save()

        logger.info(
            "Reconciliation run completed",
            extra={
                "run_id": str(run.pk),
                "payments_checked": run.payments_checked,
                "transitions_applied": run.transitions_applied,
                "flagged_for_review": run.flagged_for_review,
                "errors": run.errors,
            },
        )
        return run

    def reconcile_payment(self, payment_id, run: ReconciliationRun | None = None) -> ReconcileOutcome:
        """
        Verify one payment against Paystack and apply the answer.

        Payments in other statuses are returned unchanged.

        Raises:
            NotFoundError: Payment does not exist
            GatewayError: Paystack could not answer
        """
        try:
            payment = Payment.objects.get(pk=payment_id)
        except Payment.DoesNotExist:
            raise NotFoundError("Payment not found", details={"payment_id": str(payment_id)}) from None

        if payment.status == PaymentStatus.PENDING:
            return self._reconcile_charge(payment, run)
        if payment.status == PaymentStatus.PROCESSING_RELEASE:
            return self._reconcile_transfer(payment, run)
        return ReconcileOutcome(payment=payment)

    # =========================================================================
    # Internals
    # =========================================================================

    def _reconcile_charge(self, payment: Payment, run: ReconciliationRun | None) -> ReconcileOutcome:
        abandoned_before = timezone.now() - timedelta(hours=settings.ESCROW_ABANDONED_PAYMENT_HOURS)

        try:
            result = self.gateway.verify(payment.gateway_reference)
        except GatewayRequestError as e:
            if e.is_not_found and payment.created_at < abandoned_before:
                return self._fail_abandoned(payment, "Charge never reached the gateway")
            raise

        if result.is_abandoned and payment.created_at < abandoned_before:
            return self._fail_abandoned(payment, "Checkout abandoned", gateway_status=result.status)

        resolution = self.charges.apply_charge_result(payment, result, run=run)
        return ReconcileOutcome(
            payment=resolution.payment,
            applied=resolution.applied,
            flagged=resolution.flagged,
            gateway_status=result.status,
        )

    def _fail_abandoned(self, payment: Payment, message: str, gateway_status: str = "") -> ReconcileOutcome:
        outcome = self.payments.transition(
            payment.pk,
            PaymentStatus.FAILED,
            expected=PaymentStatus.PENDING,
            fields={"error_message": message, "failed_at": timezone.now()},
            reason="abandoned",
        )
        return ReconcileOutcome(
            payment=outcome.payment,
            applied=outcome.applied,
            gateway_status=gateway_status,
        )

    def _reconcile_transfer(self, payment: Payment, run: ReconciliationRun | None) -> ReconcileOutcome:
        payout = Payout.objects.filter(payment=payment).first()
        if payout is None or payout.status not in (PayoutStatus.PENDING, PayoutStatus.PROCESSING):
            # FAILED payouts wait for an administrator.
            return ReconcileOutcome(payment=payment)

        try:
            result = self.gateway.verify_transfer(payout.transfer_reference)
        except GatewayRequestError as e:
            if e.is_not_found and payout.status == PayoutStatus.PENDING:
                from escrow.tasks import execute_payout_transfer

                execute_payout_transfer.delay(str(payout.pk))
                self.get_logger().info(
                    "Transfer unknown to gateway, resend queued",
                    extra={"payout_id": str(payout.pk), "transfer_reference": payout.transfer_reference},
                )
                return ReconcileOutcome(payment=payment, transfer_reissued=True)
            raise

        if result.is_successful:
            applied = self.transfers.apply_transfer_success(
                payout, result.transfer_code, result.raw_response
            )
            return ReconcileOutcome(
                payment=Payment.objects.get(pk=payment.pk),
                applied=applied,
                gateway_status=result.status,
            )

        if result.is_failed:
            failed = self.transfers.apply_transfer_failure(
                payout,
                f"Transfer {result.status}",
                gateway_status=result.status,
                raw_response=result.raw_response,
                run=run,
            )
            current = Payment.objects.get(pk=payment.pk)
            return ReconcileOutcome(
                payment=current,
                applied=current.status != payment.status,
                flagged=failed and current.status == PaymentStatus.PROCESSING_RELEASE,
                gateway_status=result.status,
            )

        return ReconcileOutcome(payment=payment, gateway_status=result.status)
