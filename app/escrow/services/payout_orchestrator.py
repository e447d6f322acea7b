"""
Payout orchestrator: releasing escrow to the provider.

ReleaseEscrow uses a two-phase pattern so that no database transaction is
ever open while Paystack is being called:

    Phase 1 (one transaction):
        Payment ESCROW -> PROCESSING_RELEASE (booking -> PAID)
        Payout created PENDING with a fresh PAYOUT_ reference
    Phase 2 (no transaction):
        Paystack transfer
        accepted          -> Payout PROCESSING, transfer_code stored
        timeout/5xx       -> Payout left PENDING for reconciliation
        rejected (4xx)    -> Payout FAILED, discrepancy recorded, error raised

The transfer webhook (or reconciliation) drives the final COMPLETED/RELEASED
or FAILED outcome through the same guarded state machines, so the
synchronous and asynchronous paths can interleave in any order.

Transfer failure policy (ESCROW_TRANSFER_FAILURE_POLICY):
    manual        Payment stays PROCESSING_RELEASE; a TRANSFER_FAILED
                  discrepancy waits for resolve_failed_release()
    fail_payment  Payment moves PROCESSING_RELEASE -> FAILED immediately

Usage:
    from escrow.apps import get_gateway_client
    from escrow.services import PayoutOrchestrator

    result = PayoutOrchestrator(get_gateway_client()).release_escrow(
        payment_id, request.user
    )
    if result.transfer_pending:
        ...  # reconciliation will confirm the transfer
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError, IntegrityError
from django.db.models import F
from django.utils import timezone

from bookings.models import CompletionProof
from core.exceptions import NotFoundError
from core.services import BaseService

from escrow.exceptions import (
    AuthorizationError,
    ConflictError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    PersistenceError,
    StateTransitionError,
    ValidationError,
)
from escrow.models import Payment, Payout, TransferRecipient
from escrow.services.discrepancies import record_discrepancy, resolve_open_discrepancies
from escrow.state_machines import DiscrepancyKind, PaymentStatus, PayoutStatus, ReleaseResolution
from escrow.state_machines.machine import PaymentStateMachine, PayoutStateMachine

if TYPE_CHECKING:
    from typing import Any

    from authentication.models import User
    from escrow.gateway import PaystackClient
    from escrow.models import ReconciliationRun


TRANSFER_FAILURE_POLICY_MANUAL = "manual"
TRANSFER_FAILURE_POLICY_FAIL_PAYMENT = "fail_payment"


def generate_transfer_reference() -> str:
    """Return a fresh transfer reference: PAYOUT_<uuid hex>."""
    return f"PAYOUT_{uuid.uuid4().hex}"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ReleaseResult:
    """
    Result of a release request.

    Attributes:
        payment: Payment as stored after the call
        payout: The payment's Payout
        transfer_pending: True when Paystack's answer was unknown or the
            transfer has not been sent yet; reconciliation will finish it
    """

    payment: Payment
    payout: Payout
    transfer_pending: bool = False


# =============================================================================
# Payout Orchestrator
# =============================================================================


class PayoutOrchestrator(BaseService):
    """
    Releases escrowed funds and applies transfer outcomes.

    Args:
        gateway: Paystack client built at startup (see escrow.apps)
    """

    def __init__(self, gateway: PaystackClient):
        self.gateway = gateway
        self.payments = PaymentStateMachine()
        self.payouts = PayoutStateMachine()

    # =========================================================================
    # Release
    # =========================================================================

    def release_escrow(self, payment_id, requested_by: User) -> ReleaseResult:
        """
        Release a payment's escrow to the booking's provider.

        Calling again after a successful release returns the existing payout.

        Raises:
            NotFoundError: Payment does not exist
            AuthorizationError: Requester is neither payer nor administrator
            StateTransitionError: Payment is not in ESCROW
            ValidationError: No completion proof, or no active recipient
            GatewayRequestError: Paystack rejected the transfer
            PersistenceError: The database failed
        """
        logger = self.get_logger()
        payment = self._get_payment(payment_id)
        is_admin = requested_by.is_administrator

        if payment.payer_id != requested_by.pk and not is_admin:
            raise AuthorizationError(
                "Only the paying client or an administrator can release escrow",
                error_code="RELEASE_NOT_ALLOWED",
            )

        if payment.status in (PaymentStatus.PROCESSING_RELEASE, PaymentStatus.RELEASED):
            payout = Payout.objects.filter(payment=payment).first()
            if payout is not None:
                logger.info(
                    "Release already requested, returning existing payout",
                    extra={"payment_id": str(payment.pk), "payout_id": str(payout.pk)},
                )
                return ReleaseResult(
                    payment=payment,
                    payout=payout,
                    transfer_pending=payout.status == PayoutStatus.PENDING,
                )

        if payment.status != PaymentStatus.ESCROW:
            raise StateTransitionError(
                f"Cannot release a payment in {payment.status}",
                details={
                    "current_status": payment.status,
                    "target_status": PaymentStatus.PROCESSING_RELEASE,
                },
            )

        booking = payment.booking
        if not is_admin and not CompletionProof.objects.filter(booking=booking).exists():
            raise ValidationError(
                "The provider has not submitted completion proof yet",
                error_code="COMPLETION_PROOF_REQUIRED",
                details={"booking_id": str(booking.pk)},
            )

        recipient = self._get_active_recipient(booking.provider_id)

        # Phase 1: transition and payout row commit together
        logger.info(
            "Phase 1: Moving payment to PROCESSING_RELEASE",
            extra={"payment_id": str(payment.pk), "requested_by": str(requested_by.pk)},
        )
        try:
            with self.atomic():
                outcome = self.payments.transition(
                    payment.pk,
                    PaymentStatus.PROCESSING_RELEASE,
                    expected=PaymentStatus.ESCROW,
                    reason="release requested",
                )
                if outcome.applied:
                    payout = Payout.objects.create(
                        payment=payment,
                        provider_id=booking.provider_id,
                        recipient=recipient,
                        amount_cents=payment.escrow_amount_cents,
                        currency=payment.currency,
                        transfer_reference=generate_transfer_reference(),
                    )
        except IntegrityError:
            outcome = None
        except DatabaseError as e:
            raise PersistenceError(f"Could not start release: {e}") from e

        if outcome is None or not outcome.applied:
            payout = Payout.objects.filter(payment=payment).first()
            if payout is None:
                raise ConflictError(
                    "A concurrent release is in progress for this payment",
                    error_code="RELEASE_IN_PROGRESS",
                )
            logger.info(
                "Concurrent release won, returning its payout",
                extra={"payment_id": str(payment.pk), "payout_id": str(payout.pk)},
            )
            return ReleaseResult(
                payment=self._get_payment(payment.pk),
                payout=payout,
                transfer_pending=payout.status == PayoutStatus.PENDING,
            )

        # Phase 2: Paystack call with no transaction open
        transfer_pending = self._send_transfer(payout, recipient)

        return ReleaseResult(
            payment=self._get_payment(payment.pk),
            payout=Payout.objects.get(pk=payout.pk),
            transfer_pending=transfer_pending,
        )

    def execute_transfer(self, payout_id) -> bool:
        """
        (Re)send the transfer for a PENDING payout.

        Used by the execute_payout_transfer task once reconciliation has
        confirmed Paystack never received the original transfer.

        Returns:
            True if the outcome is still pending, False otherwise
        """
        payout = Payout.objects.select_related("payment", "recipient").get(pk=payout_id)
        if payout.status != PayoutStatus.PENDING:
            self.get_logger().info(
                "Payout no longer pending, transfer not sent",
                extra={"payout_id": str(payout.pk), "status": payout.status},
            )
            return False
        if payout.payment.status != PaymentStatus.PROCESSING_RELEASE:
            raise StateTransitionError(
                f"Cannot transfer for a payment in {payout.payment.status}",
                details={"current_status": payout.payment.status},
            )

        recipient = payout.recipient
        if recipient is None or not recipient.is_active:
            recipient = self._get_active_recipient(payout.provider_id)
        return self._send_transfer(payout, recipient)

    # =========================================================================
    # Transfer Outcomes (shared with webhooks and reconciliation)
    # =========================================================================

    def apply_transfer_success(
        self,
        payout: Payout,
        transfer_code: str | None = None,
        raw_response: dict[str, Any] | None = None,
    ) -> bool:
        """
        Payout -> COMPLETED and Payment -> RELEASED in one transaction.

        Returns:
            True if this call moved the payment to RELEASED
        """
        now = timezone.now()
        fields: dict[str, Any] = {"completed_at": now}
        if transfer_code:
            fields["transfer_code"] = transfer_code
        if raw_response:
            fields["gateway_response"] = raw_response

        with self.atomic():
            self.payouts.transition(
                payout.pk,
                PayoutStatus.COMPLETED,
                fields=fields,
                reason="transfer succeeded",
            )
            outcome = self.payments.transition(
                payout.payment_id,
                PaymentStatus.RELEASED,
                expected=PaymentStatus.PROCESSING_RELEASE,
                fields={"released_at": now},
                reason="transfer succeeded",
            )
        return outcome.applied

    def apply_transfer_failure(
        self,
        payout: Payout,
        reason: str,
        *,
        gateway_status: str = "failed",
        kind: str = DiscrepancyKind.TRANSFER_FAILED,
        raw_response: dict[str, Any] | None = None,
        run: ReconciliationRun | None = None,
    ) -> bool:
        """
        Payout -> FAILED, then apply the configured failure policy.

        Returns:
            True if this call moved the payout to FAILED

        Raises:
            StateTransitionError: The payout already completed; a
                TRANSFER_REVERSED discrepancy is recorded first
        """
        now = timezone.now()
        fields: dict[str, Any] = {"failure_reason": reason, "failed_at": now}
        if raw_response:
            fields["gateway_response"] = raw_response

        policy = settings.ESCROW_TRANSFER_FAILURE_POLICY
        try:
            return self._fail_payout(payout, reason, fields, policy, gateway_status, kind, run)
        except StateTransitionError:
            current = Payout.objects.get(pk=payout.pk)
            if current.status == PayoutStatus.COMPLETED:
                self._flag_reversal(current, reason, gateway_status, run)
            raise

    def _flag_reversal(
        self,
        payout: Payout,
        reason: str,
        gateway_status: str,
        run: ReconciliationRun | None,
    ) -> None:
        """Record money Paystack took back after the provider was paid."""
        record_discrepancy(
            Payment.objects.get(pk=payout.payment_id),
            DiscrepancyKind.TRANSFER_REVERSED,
            payout=payout,
            gateway_status=gateway_status,
            details={
                "transfer_reference": payout.transfer_reference,
                "transfer_code": payout.transfer_code,
                "failure_reason": reason,
                "amount_cents": payout.amount_cents,
            },
            run=run,
        )
        self.get_logger().error(
            "Transfer reported failed after payout completed",
            extra={
                "payout_id": str(payout.pk),
                "payment_id": str(payout.payment_id),
                "gateway_status": gateway_status,
                "reason": reason,
            },
        )

    def _fail_payout(
        self,
        payout: Payout,
        reason: str,
        fields: dict[str, Any],
        policy: str,
        gateway_status: str,
        kind: str,
        run: ReconciliationRun | None,
    ) -> bool:
        now = fields["failed_at"]
        with self.atomic():
            outcome = self.payouts.transition(
                payout.pk,
                PayoutStatus.FAILED,
                fields=fields,
                reason=reason,
            )
            if not outcome.applied:
                return False

            if policy == TRANSFER_FAILURE_POLICY_FAIL_PAYMENT:
                self.payments.transition(
                    payout.payment_id,
                    PaymentStatus.FAILED,
                    expected=PaymentStatus.PROCESSING_RELEASE,
                    fields={"error_message": f"Transfer failed: {reason}", "failed_at": now},
                    reason="transfer failed",
                )
            else:
                record_discrepancy(
                    Payment.objects.get(pk=payout.payment_id),
                    kind,
                    payout=outcome.payout,
                    gateway_status=gateway_status,
                    details={
                        "transfer_reference": payout.transfer_reference,
                        "failure_reason": reason,
                        "amount_cents": payout.amount_cents,
                    },
                    run=run,
                )

        self.get_logger().warning(
            "Transfer failed",
            extra={
                "payout_id": str(payout.pk),
                "payment_id": str(payout.payment_id),
                "reason": reason,
                "policy": policy,
            },
        )
        return True

    # =========================================================================
    # Manual Resolution
    # =========================================================================

    def resolve_failed_release(
        self,
        payment_id,
        resolution: str,
        resolved_by: User,
        notes: str = "",
    ) -> ReleaseResult:
        """
        Administrator decision for a payment whose transfer failed.

        Resolutions:
            retry_transfer: Payout FAILED -> PENDING with a new reference,
                then the transfer is sent again
            mark_failed: Payment PROCESSING_RELEASE -> FAILED (settled offline)

        Raises:
            AuthorizationError: Requester is not an administrator
            StateTransitionError: Payment/payout not in a resolvable state
            ValidationError: Unknown resolution
        """
        if not resolved_by.is_administrator:
            raise AuthorizationError(
                "Only administrators can resolve failed releases",
                error_code="RESOLUTION_NOT_ALLOWED",
            )
        if resolution not in ReleaseResolution.values:
            raise ValidationError(
                f"Unknown resolution '{resolution}'",
                error_code="INVALID_RESOLUTION",
                details={"allowed": list(ReleaseResolution.values)},
            )

        payment = self._get_payment(payment_id)
        payout = Payout.objects.filter(payment=payment).first()
        if payment.status != PaymentStatus.PROCESSING_RELEASE or payout is None or payout.status != PayoutStatus.FAILED:
            raise StateTransitionError(
                "Only a release with a failed transfer can be resolved",
                details={
                    "current_status": payment.status,
                    "payout_status": payout.status if payout else None,
                },
            )

        logger = self.get_logger()
        logger.info(
            "Resolving failed release",
            extra={
                "payment_id": str(payment.pk),
                "resolution": resolution,
                "resolved_by": str(resolved_by.pk),
            },
        )

        if resolution == ReleaseResolution.MARK_FAILED:
            with self.atomic():
                self.payments.transition(
                    payment.pk,
                    PaymentStatus.FAILED,
                    expected=PaymentStatus.PROCESSING_RELEASE,
                    fields={
                        "error_message": notes or "Release abandoned by administrator",
                        "failed_at": timezone.now(),
                    },
                    reason="administrator marked release failed",
                )
                resolve_open_discrepancies(payment, resolved_by, notes)
            return ReleaseResult(
                payment=self._get_payment(payment.pk),
                payout=Payout.objects.get(pk=payout.pk),
            )

        recipient = self._get_active_recipient(payout.provider_id)
        with self.atomic():
            self.payouts.transition(
                payout.pk,
                PayoutStatus.PENDING,
                expected=PayoutStatus.FAILED,
                fields={
                    "transfer_reference": generate_transfer_reference(),
                    "transfer_code": None,
                    "failure_reason": None,
                    "failed_at": None,
                    "recipient": recipient,
                },
                reason="administrator retry",
            )
            resolve_open_discrepancies(payment, resolved_by, notes)

        payout = Payout.objects.get(pk=payout.pk)
        transfer_pending = self._send_transfer(payout, recipient)
        return ReleaseResult(
            payment=self._get_payment(payment.pk),
            payout=Payout.objects.get(pk=payout.pk),
            transfer_pending=transfer_pending,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _send_transfer(self, payout: Payout, recipient: TransferRecipient) -> bool:
        """
        Phase 2: call Paystack and record the synchronous answer.

        Returns:
            True if the transfer outcome is still unknown
        """
        logger = self.get_logger()
        Payout.objects.filter(pk=payout.pk).update(
            attempts=F("attempts") + 1,
            updated_at=timezone.now(),
        )

        logger.info(
            "Phase 2: Sending transfer",
            extra={
                "payout_id": str(payout.pk),
                "transfer_reference": payout.transfer_reference,
                "recipient": recipient.recipient_code,
                "amount_cents": payout.amount_cents,
            },
        )
        try:
            result = self.gateway.transfer(
                recipient=recipient.recipient_code,
                amount_cents=payout.amount_cents,
                reference=payout.transfer_reference,
                reason=f"Escrow release for payment {payout.payment_id}",
            )
        except (GatewayTimeoutError, GatewayUnavailableError) as e:
            # Outcome unknown; reconciliation verifies before any resend.
            logger.warning(
                f"Transfer outcome unknown: {type(e).__name__}",
                extra={
                    "payout_id": str(payout.pk),
                    "transfer_reference": payout.transfer_reference,
                    "error": str(e),
                },
            )
            return True
        except GatewayRequestError as e:
            logger.error(
                "Transfer rejected by gateway",
                extra={
                    "payout_id": str(payout.pk),
                    "transfer_reference": payout.transfer_reference,
                    "error": str(e),
                },
            )
            self.apply_transfer_failure(
                payout,
                e.gateway_message or e.message,
                gateway_status="rejected",
                kind=DiscrepancyKind.TRANSFER_REJECTED,
            )
            raise

        if result.is_failed:
            self.apply_transfer_failure(
                payout,
                f"Transfer {result.status}",
                gateway_status=result.status,
                raw_response=result.raw_response,
            )
            return False

        outcome = self.payouts.transition(
            payout.pk,
            PayoutStatus.PROCESSING,
            expected=PayoutStatus.PENDING,
            fields={
                "transfer_code": result.transfer_code,
                "gateway_response": result.raw_response,
            },
            reason="transfer accepted",
        )
        if not outcome.applied and result.transfer_code:
            # A webhook finished the payout first; keep the code for audit.
            Payout.objects.filter(pk=payout.pk, transfer_code__isnull=True).update(
                transfer_code=result.transfer_code,
                updated_at=timezone.now(),
            )
        return False

    def _get_payment(self, payment_id) -> Payment:
        try:
            return Payment.objects.select_related("booking").get(pk=payment_id)
        except Payment.DoesNotExist:
            raise NotFoundError("Payment not found", details={"payment_id": str(payment_id)}) from None

    def _get_active_recipient(self, provider_id) -> TransferRecipient:
        recipient = TransferRecipient.objects.filter(provider_id=provider_id, is_active=True).first()
        if recipient is None:
            raise ValidationError(
                "The provider has no active transfer recipient",
                error_code="NO_TRANSFER_RECIPIENT",
                details={"provider_id": str(provider_id)},
            )
        return recipient
