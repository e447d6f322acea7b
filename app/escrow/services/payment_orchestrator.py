"""
Payment orchestrator: charge initiation, charge outcomes and refund requests.

InitiatePayment sequence:
    1. Validate booking, payer and payable status
    2. Early duplicate check (avoids a pointless Paystack call)
    3. Compute the fee split
    4. Call Paystack initialize OUTSIDE any transaction
    5. In one transaction: re-check for a payment, then insert PENDING

If Paystack fails in step 4, nothing is written. If a concurrent request
wins the race between steps 2 and 5, the unique booking constraint turns
the loser's insert into a ConflictError.

Usage:
    from escrow.apps import get_gateway_client
    from escrow.services import PaymentOrchestrator

    orchestrator = PaymentOrchestrator(get_gateway_client())
    result = orchestrator.initiate_payment(booking.id, request.user, callback_url)
    redirect(result.authorization_url)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError, IntegrityError
from django.utils import timezone

from bookings.models import Booking
from core.exceptions import NotFoundError
from core.services import BaseService

from escrow.exceptions import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    PersistenceError,
    StateTransitionError,
    ValidationError,
)
from escrow.models import Payment
from escrow.services.discrepancies import record_discrepancy
from escrow.state_machines import DiscrepancyKind, PaymentStatus
from escrow.state_machines.machine import PaymentStateMachine

if TYPE_CHECKING:
    from authentication.models import User
    from escrow.gateway import PaystackClient, VerifyResult
    from escrow.models import ReconciliationRun


# =============================================================================
# Fee Calculation
# =============================================================================


def split_amount(amount_cents: int, fee_percent: int | float | Decimal) -> tuple[int, int]:
    """
    Split a service amount into (escrow_amount_cents, platform_fee_cents).

    The fee is rounded half-up to the nearest cent; escrow gets the rest,
    so the two always add up to the original amount.

    Example:
        split_amount(100000, 10) == (90000, 10000)
    """
    fee = (Decimal(amount_cents) * Decimal(str(fee_percent)) / Decimal(100)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    platform_fee_cents = int(fee)
    return amount_cents - platform_fee_cents, platform_fee_cents


def generate_payment_reference(booking_id) -> str:
    """Return a fresh transaction reference: ESC_<booking prefix>_<uuid hex>."""
    return f"ESC_{str(booking_id).replace('-', '')[:8]}_{uuid.uuid4().hex}"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class InitiationResult:
    """
    Result of a successful payment initiation.

    Attributes:
        payment: The PENDING Payment row
        authorization_url: Paystack hosted checkout URL
        access_code: Paystack access code for inline checkout
    """

    payment: Payment
    authorization_url: str
    access_code: str


@dataclass
class ChargeResolution:
    """
    What applying a charge status did to a payment.

    Attributes:
        payment: Payment as stored after the call
        applied: True if this call changed the payment status
        flagged: True if a discrepancy was recorded instead
        discrepancy_kind: DiscrepancyKind recorded when flagged
    """

    payment: Payment
    applied: bool = False
    flagged: bool = False
    discrepancy_kind: str | None = None


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Entry point for moving client money into escrow.

    Args:
        gateway: Paystack client built at startup (see escrow.apps)
    """

    def __init__(self, gateway: PaystackClient):
        self.gateway = gateway
        self.payments = PaymentStateMachine()

    def initiate_payment(
        self,
        booking_id,
        payer: User,
        callback_url: str,
    ) -> InitiationResult:
        """
        Start a charge for a booking.

        Raises:
            NotFoundError: Booking does not exist
            AuthorizationError: Payer is not the booking's client
            ValidationError: Booking not payable or amount invalid
            ConflictError: A payment already exists for the booking
            GatewayError: Paystack failed; nothing was persisted
            PersistenceError: The insert failed for another reason
        """
        logger = self.get_logger()

        try:
            booking = Booking.objects.select_related("client").get(pk=booking_id)
        except Booking.DoesNotExist:
            raise NotFoundError("Booking not found", details={"booking_id": str(booking_id)}) from None

        if booking.client_id != payer.pk and not payer.is_administrator:
            raise AuthorizationError(
                "Only the booking's client can pay for it",
                error_code="NOT_BOOKING_CLIENT",
            )

        if not booking.is_payable:
            raise ValidationError(
                f"Booking in status {booking.status} cannot be paid for",
                error_code="BOOKING_NOT_PAYABLE",
                details={"booking_id": str(booking.pk), "status": booking.status},
            )

        if booking.service_amount_cents <= 0:
            raise ValidationError(
                "Booking amount must be positive",
                error_code="INVALID_AMOUNT",
            )

        if Payment.objects.filter(booking_id=booking.pk).exists():
            raise ConflictError(
                "A payment already exists for this booking",
                error_code="DUPLICATE_PAYMENT",
                details={"booking_id": str(booking.pk)},
            )

        amount_cents = booking.service_amount_cents
        escrow_amount_cents, platform_fee_cents = split_amount(
            amount_cents, settings.ESCROW_PLATFORM_FEE_PERCENT
        )
        reference = generate_payment_reference(booking.pk)

        logger.info(
            "Initializing payment",
            extra={
                "booking_id": str(booking.pk),
                "reference": reference,
                "amount_cents": amount_cents,
                "platform_fee_cents": platform_fee_cents,
            },
        )

        # No transaction is open here: a slow gateway must not hold locks.
        try:
            init = self.gateway.initialize(
                amount_cents=amount_cents,
                reference=reference,
                callback_url=callback_url,
                email=booking.client.email,
                metadata={
                    "booking_id": str(booking.pk),
                    "payer_id": str(payer.pk),
                    "escrow_amount_cents": escrow_amount_cents,
                    "platform_fee_cents": platform_fee_cents,
                },
            )
        except GatewayError as e:
            logger.warning(
                f"Payment initialization failed: {type(e).__name__}",
                extra={"booking_id": str(booking.pk), "reference": reference, "error": str(e)},
            )
            raise

        try:
            with self.atomic():
                if Payment.objects.filter(booking_id=booking.pk).exists():
                    raise ConflictError(
                        "A payment already exists for this booking",
                        error_code="DUPLICATE_PAYMENT",
                        details={"booking_id": str(booking.pk)},
                    )
                payment = Payment.objects.create(
                    booking=booking,
                    payer=payer,
                    gateway_reference=init.reference,
                    amount_cents=amount_cents,
                    escrow_amount_cents=escrow_amount_cents,
                    platform_fee_cents=platform_fee_cents,
                    currency=booking.currency,
                    authorization_url=init.authorization_url,
                    access_code=init.access_code,
                    gateway_response=init.raw_response,
                )
        except IntegrityError:
            logger.info(
                "Concurrent initiation lost the race for booking",
                extra={"booking_id": str(booking.pk), "reference": reference},
            )
            raise ConflictError(
                "A payment already exists for this booking",
                error_code="DUPLICATE_PAYMENT",
                details={"booking_id": str(booking.pk)},
            ) from None
        except DatabaseError as e:
            logger.error(
                "Could not store initialized payment",
                extra={"booking_id": str(booking.pk), "reference": reference},
                exc_info=True,
            )
            raise PersistenceError(f"Could not store payment: {e}") from e

        logger.info(
            "Payment initialized",
            extra={"payment_id": str(payment.pk), "reference": payment.gateway_reference},
        )
        return InitiationResult(
            payment=payment,
            authorization_url=init.authorization_url,
            access_code=init.access_code,
        )

    def refund_payment(self, payment_id, requested_by: User, reason: str = "") -> Payment:
        """
        Ask Paystack to refund an escrowed charge.

        The payment stays in ESCROW; the refund.processed webhook moves it
        to REFUNDED.

        Raises:
            AuthorizationError: Requester is not an administrator
            NotFoundError: Payment does not exist
            StateTransitionError: Payment is not in ESCROW
            GatewayError: Paystack refused or could not be reached
        """
        if not requested_by.is_administrator:
            raise AuthorizationError(
                "Only administrators can refund payments",
                error_code="REFUND_NOT_ALLOWED",
            )

        try:
            payment = Payment.objects.get(pk=payment_id)
        except Payment.DoesNotExist:
            raise NotFoundError("Payment not found", details={"payment_id": str(payment_id)}) from None

        if payment.status != PaymentStatus.ESCROW:
            raise StateTransitionError(
                f"Cannot refund a payment in {payment.status}",
                details={
                    "current_status": payment.status,
                    "target_status": PaymentStatus.REFUNDED,
                },
            )

        result = self.gateway.refund(payment.gateway_reference)

        Payment.objects.filter(pk=payment.pk, status=PaymentStatus.ESCROW).update(
            refund_requested_at=timezone.now(),
            updated_at=timezone.now(),
        )
        self.get_logger().info(
            "Refund requested",
            extra={
                "payment_id": str(payment.pk),
                "reference": payment.gateway_reference,
                "refund_status": result.status,
                "requested_by": str(requested_by.pk),
                "reason": reason,
            },
        )
        return Payment.objects.get(pk=payment.pk)

    # =========================================================================
    # Charge Outcomes (shared with webhooks and reconciliation)
    # =========================================================================

    def apply_charge_result(
        self,
        payment: Payment,
        result: VerifyResult,
        *,
        run: ReconciliationRun | None = None,
    ) -> ChargeResolution:
        """
        Apply a verified (or webhook-reported) charge status to a payment.

        success with the expected amount -> ESCROW, booking -> PENDING_EXECUTION
        success with another amount      -> AMOUNT_MISMATCH discrepancy, no move
        success for an unpaid FAILED     -> CHARGE_AFTER_FAILURE discrepancy, no move
        failed / reversed                -> FAILED
        anything else                    -> unchanged
        """
        now = timezone.now()

        if result.is_successful:
            if result.amount_cents != payment.amount_cents:
                record_discrepancy(
                    payment,
                    DiscrepancyKind.AMOUNT_MISMATCH,
                    gateway_status=result.status,
                    details={
                        "expected_amount_cents": payment.amount_cents,
                        "gateway_amount_cents": result.amount_cents,
                        "reference": payment.gateway_reference,
                    },
                    run=run,
                )
                return ChargeResolution(
                    payment=payment,
                    flagged=True,
                    discrepancy_kind=DiscrepancyKind.AMOUNT_MISMATCH,
                )

            try:
                outcome = self.payments.transition(
                    payment.pk,
                    PaymentStatus.ESCROW,
                    fields={
                        "paid_at": now,
                        "gateway_transaction_id": result.transaction_id,
                        "gateway_response": result.raw_response,
                    },
                    reason="charge succeeded",
                )
            except StateTransitionError as e:
                if e.details.get("current_status") != PaymentStatus.FAILED:
                    raise
                # Paystack holds the client's money for a payment we gave up on.
                failed = Payment.objects.get(pk=payment.pk)
                record_discrepancy(
                    failed,
                    DiscrepancyKind.CHARGE_AFTER_FAILURE,
                    gateway_status=result.status,
                    details={
                        "gateway_amount_cents": result.amount_cents,
                        "gateway_transaction_id": result.transaction_id,
                        "reference": failed.gateway_reference,
                        "error_message": failed.error_message,
                    },
                    run=run,
                )
                return ChargeResolution(
                    payment=failed,
                    flagged=True,
                    discrepancy_kind=DiscrepancyKind.CHARGE_AFTER_FAILURE,
                )
            return ChargeResolution(payment=outcome.payment, applied=outcome.applied)

        if result.is_failed:
            outcome = self.payments.transition(
                payment.pk,
                PaymentStatus.FAILED,
                fields={
                    "error_message": result.gateway_response or f"Charge {result.status}",
                    "failed_at": now,
                    "gateway_response": result.raw_response,
                },
                reason="charge failed",
            )
            return ChargeResolution(payment=outcome.payment, applied=outcome.applied)

        return ChargeResolution(payment=payment)
