"""
Booking-side operations the escrow flow depends on.

Only proof submission lives here: it is the provider's half of the
release handshake and moves the booking to AWAITING_CONFIRMATION.

Usage:
    from bookings.services import submit_completion_proof

    proof = submit_completion_proof(booking, provider, notes="All rooms done")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConflictError, PermissionDeniedError, ValidationError

from bookings.models import Booking, BookingStatus, CompletionProof

if TYPE_CHECKING:
    from authentication.models import User


logger = logging.getLogger(__name__)

PROOF_ACCEPTING_STATUSES = frozenset(
    {
        BookingStatus.PENDING_EXECUTION,
        BookingStatus.IN_PROGRESS,
    }
)


def submit_completion_proof(
    booking: Booking,
    provider: User,
    notes: str = "",
    attachment_url: str = "",
) -> CompletionProof:
    """
    Record the provider's completion proof for a funded booking.

    Raises:
        PermissionDeniedError: Caller is not the booking's provider
        ValidationError: Booking is not awaiting execution
        ConflictError: Proof was already submitted
    """
    if booking.provider_id != provider.pk:
        raise PermissionDeniedError(
            "Only the booking's provider can submit completion proof",
            error_code="NOT_BOOKING_PROVIDER",
        )

    if booking.status not in PROOF_ACCEPTING_STATUSES:
        raise ValidationError(
            f"Cannot submit proof for a booking in {booking.status}",
            error_code="BOOKING_NOT_IN_EXECUTION",
            details={"booking_status": booking.status},
        )

    try:
        with transaction.atomic():
            proof = CompletionProof.objects.create(
                booking=booking,
                submitted_by=provider,
                notes=notes,
                attachment_url=attachment_url,
            )
            Booking.objects.filter(pk=booking.pk).update(
                status=BookingStatus.AWAITING_CONFIRMATION,
                updated_at=timezone.now(),
            )
    except IntegrityError as e:
        raise ConflictError(
            "Completion proof already submitted",
            error_code="PROOF_EXISTS",
            details={"booking_id": str(booking.pk)},
        ) from e

    booking.status = BookingStatus.AWAITING_CONFIRMATION
    logger.info(
        "Completion proof submitted",
        extra={"booking_id": str(booking.pk), "provider_id": provider.pk},
    )
    return proof
