"""
DRF views for the escrow app.

Endpoints (prefixed with /api/v1/escrow/):
    POST bookings/<booking_id>/pay/        - Start a payment for a booking
    GET  payments/<payment_id>/            - Payment detail
    POST payments/<payment_id>/release/    - Release escrow to the provider
    POST payments/<payment_id>/verify/     - Re-check a payment with Paystack
    POST payments/<payment_id>/refund/     - Refund an escrowed payment (admin)
    POST payments/<payment_id>/resolve/    - Resolve a failed release (admin)

The Paystack webhook lives in escrow.webhooks.views.

Errors:
    Services raise core/escrow application errors; every view converts them
    with application_error_response(), which uses the error's http_status
    and to_dict() body.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, NotFoundError

from escrow.apps import get_gateway_client
from escrow.exceptions import AuthorizationError
from escrow.models import Payment
from escrow.serializers import (
    InitiatePaymentSerializer,
    PaymentInitiationResponseSerializer,
    PaymentSerializer,
    RefundRequestSerializer,
    ReleaseResponseSerializer,
    ResolveReleaseSerializer,
    VerifyResponseSerializer,
)
from escrow.services import PaymentOrchestrator, PayoutOrchestrator, ReconciliationService

logger = logging.getLogger(__name__)


def application_error_response(error: BaseApplicationError) -> Response:
    """Translate an application error into its HTTP response."""
    if error.http_status >= 500:
        logger.error(
            f"Escrow request failed: {error.error_code}",
            extra={"error_code": error.error_code, "details": error.details},
        )
    return Response(error.to_dict(), status=error.http_status)


def get_visible_payment(payment_id, user) -> Payment:
    """
    Load a payment the user may see: payer, provider or administrator.

    Raises:
        NotFoundError: Unknown payment
        AuthorizationError: User is unrelated to the payment
    """
    payment = Payment.objects.select_related("booking").filter(pk=payment_id).first()
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": str(payment_id)})
    if user.is_administrator or user.pk in (payment.payer_id, payment.booking.provider_id):
        return payment
    raise AuthorizationError("You cannot access this payment", error_code="PAYMENT_NOT_VISIBLE")


class InitiatePaymentView(APIView):
    """
    Start a payment for a booking.

    POST /api/v1/escrow/bookings/{booking_id}/pay/

    Request body:
        {"callback_url": "https://example.com/bookings/123/paid"}

    Response:
        201 Created: Checkout details
        400/403/404/409: Booking not payable, not yours, unknown, already paid
        502: Paystack failed; nothing was stored
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_initiate_payment",
        summary="Pay for a booking",
        request=InitiatePaymentSerializer,
        responses={
            201: OpenApiResponse(response=PaymentInitiationResponseSerializer, description="Payment initiated"),
            409: OpenApiResponse(description="A payment already exists for this booking"),
            502: OpenApiResponse(description="Payment gateway error"),
        },
        tags=["Escrow"],
    )
    def post(self, request, booking_id):
        serializer = InitiatePaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = PaymentOrchestrator(get_gateway_client()).initiate_payment(
                booking_id,
                request.user,
                serializer.validated_data["callback_url"],
            )
        except BaseApplicationError as e:
            return application_error_response(e)

        return Response(
            PaymentInitiationResponseSerializer(result).data,
            status=status.HTTP_201_CREATED,
        )


class PaymentDetailView(APIView):
    """
    Get a payment with its payout.

    GET /api/v1/escrow/payments/{payment_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_get_payment",
        summary="Get payment",
        responses={200: PaymentSerializer},
        tags=["Escrow"],
    )
    def get(self, request, payment_id):
        try:
            payment = get_visible_payment(payment_id, request.user)
        except BaseApplicationError as e:
            return application_error_response(e)
        return Response(PaymentSerializer(payment).data)


class ReleaseEscrowView(APIView):
    """
    Release escrowed funds to the provider.

    POST /api/v1/escrow/payments/{payment_id}/release/

    Response:
        200 OK: {payment, payout, transfer_pending}
        400: Completion proof or transfer recipient missing
        403: Not the payer or an administrator
        409: Payment not in ESCROW
        502: Paystack rejected the transfer (payout FAILED, flagged for review)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_release_payment",
        summary="Release escrow",
        request=None,
        responses={200: ReleaseResponseSerializer},
        tags=["Escrow"],
    )
    def post(self, request, payment_id):
        try:
            result = PayoutOrchestrator(get_gateway_client()).release_escrow(payment_id, request.user)
        except BaseApplicationError as e:
            return application_error_response(e)
        return Response(ReleaseResponseSerializer(result).data)


class VerifyPaymentView(APIView):
    """
    Ask Paystack for the authoritative status of a payment and apply it.

    POST /api/v1/escrow/payments/{payment_id}/verify/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_verify_payment",
        summary="Verify payment with gateway",
        request=None,
        responses={200: VerifyResponseSerializer},
        tags=["Escrow"],
    )
    def post(self, request, payment_id):
        try:
            payment = get_visible_payment(payment_id, request.user)
            outcome = ReconciliationService(get_gateway_client()).reconcile_payment(payment.pk)
        except BaseApplicationError as e:
            return application_error_response(e)
        return Response(
            VerifyResponseSerializer({"payment": outcome.payment, "applied": outcome.applied}).data
        )


class RefundPaymentView(APIView):
    """
    Refund an escrowed payment (administrators only).

    POST /api/v1/escrow/payments/{payment_id}/refund/

    Response:
        202 Accepted: Refund requested; REFUNDED follows by webhook
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_refund_payment",
        summary="Refund payment",
        request=RefundRequestSerializer,
        responses={202: PaymentSerializer},
        tags=["Escrow - Admin"],
    )
    def post(self, request, payment_id):
        serializer = RefundRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            payment = PaymentOrchestrator(get_gateway_client()).refund_payment(
                payment_id,
                request.user,
                serializer.validated_data["reason"],
            )
        except BaseApplicationError as e:
            return application_error_response(e)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_202_ACCEPTED)


class ResolveReleaseView(APIView):
    """
    Resolve a release whose transfer failed (administrators only).

    POST /api/v1/escrow/payments/{payment_id}/resolve/

    Request body:
        {"resolution": "retry_transfer" | "mark_failed", "notes": "..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="escrow_resolve_release",
        summary="Resolve failed release",
        request=ResolveReleaseSerializer,
        responses={200: ReleaseResponseSerializer},
        tags=["Escrow - Admin"],
    )
    def post(self, request, payment_id):
        serializer = ResolveReleaseSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            result = PayoutOrchestrator(get_gateway_client()).resolve_failed_release(
                payment_id,
                serializer.validated_data["resolution"],
                request.user,
                serializer.validated_data["notes"],
            )
        except BaseApplicationError as e:
            return application_error_response(e)
        return Response(ReleaseResponseSerializer(result).data)
