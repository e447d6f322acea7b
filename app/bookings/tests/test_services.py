"""
Tests for booking services.

Tests cover:
- Completion proof submission and the booking status it sets
- Provider-only access
- Duplicate proof handling
"""

import pytest

from bookings.models import Booking, BookingStatus, CompletionProof
from bookings.services import submit_completion_proof
from bookings.tests.factories import BookingFactory, CompletionProofFactory, UserFactory
from core.exceptions import ConflictError, PermissionDeniedError, ValidationError


class TestBookingPayable:
    @pytest.mark.parametrize(
        "status,payable",
        [
            (BookingStatus.PENDING, True),
            (BookingStatus.CONFIRMED, True),
            (BookingStatus.PENDING_EXECUTION, False),
            (BookingStatus.CANCELLED, False),
        ],
    )
    def test_is_payable(self, db, status, payable):
        assert BookingFactory(status=status).is_payable is payable


class TestSubmitCompletionProof:
    """Tests for submit_completion_proof()."""

    def test_records_proof_and_awaits_confirmation(self, db):
        """Should store the proof and move the booking to AWAITING_CONFIRMATION."""
        booking = BookingFactory(status=BookingStatus.PENDING_EXECUTION)

        proof = submit_completion_proof(booking, booking.provider, notes="All rooms done")

        assert proof.notes == "All rooms done"
        assert proof.submitted_by == booking.provider
        assert booking.status == BookingStatus.AWAITING_CONFIRMATION
        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.AWAITING_CONFIRMATION

    def test_accepts_in_progress_booking(self, db):
        booking = BookingFactory(status=BookingStatus.IN_PROGRESS)

        submit_completion_proof(booking, booking.provider)

        assert CompletionProof.objects.filter(booking=booking).exists()

    def test_rejects_other_user(self, db):
        """Should only let the booking's provider submit proof."""
        booking = BookingFactory(status=BookingStatus.PENDING_EXECUTION)

        with pytest.raises(PermissionDeniedError) as exc_info:
            submit_completion_proof(booking, UserFactory())

        assert exc_info.value.error_code == "NOT_BOOKING_PROVIDER"
        assert not CompletionProof.objects.filter(booking=booking).exists()

    def test_rejects_unfunded_booking(self, db):
        """Should refuse proof before the payment is in escrow."""
        booking = BookingFactory(status=BookingStatus.CONFIRMED)

        with pytest.raises(ValidationError) as exc_info:
            submit_completion_proof(booking, booking.provider)

        assert exc_info.value.error_code == "BOOKING_NOT_IN_EXECUTION"

    def test_duplicate_proof_conflicts(self, db):
        booking = BookingFactory(status=BookingStatus.PENDING_EXECUTION)
        CompletionProofFactory(booking=booking, submitted_by=booking.provider)
        Booking.objects.filter(pk=booking.pk).update(status=BookingStatus.IN_PROGRESS)
        booking = Booking.objects.get(pk=booking.pk)

        with pytest.raises(ConflictError) as exc_info:
            submit_completion_proof(booking, booking.provider)

        assert exc_info.value.error_code == "PROOF_EXISTS"
        assert CompletionProof.objects.filter(booking=booking).count() == 1
