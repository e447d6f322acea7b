"""
Pytest fixtures shared by every escrow test package.

The gateway fixture is a MagicMock shaped like PaystackClient whose
happy-path answers echo the references they are given; services receive it
through their constructors, exactly as they receive the real client.

Usage:
    def test_release(escrowed_payment, gateway, recipient):
        result = PayoutOrchestrator(gateway).release_escrow(
            escrowed_payment.id, escrowed_payment.payer
        )
"""

from unittest.mock import MagicMock

import pytest

from bookings.models import BookingStatus
from bookings.tests.factories import AdminUserFactory, BookingFactory, CompletionProofFactory, UserFactory
from escrow.gateway import PaystackClient
from escrow.state_machines import PaymentStatus, PayoutStatus
from escrow.tests.factories import PaymentFactory, PayoutFactory, TransferRecipientFactory
from escrow.tests.paystack import fake_initialize, fake_transfer


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def gateway():
    """PaystackClient double with happy-path defaults."""
    client = MagicMock(spec=PaystackClient)
    client.initialize.side_effect = fake_initialize
    client.transfer.side_effect = fake_transfer
    client.verify_webhook_signature.return_value = True
    return client


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def client_user(db):
    """Client who books and pays."""
    return UserFactory(email="client@example.com")


@pytest.fixture
def provider_user(db):
    """Provider who performs the service and is paid out."""
    return UserFactory(email="provider@example.com")


@pytest.fixture
def admin_user(db):
    return AdminUserFactory(email="ops@example.com")


@pytest.fixture
def stranger(db):
    """User unrelated to any booking."""
    return UserFactory(email="stranger@example.com")


# =============================================================================
# Booking & Recipient Fixtures
# =============================================================================


@pytest.fixture
def booking(db, client_user, provider_user):
    """Confirmed, payable booking worth 1000.00 ZAR."""
    return BookingFactory(client=client_user, provider=provider_user)


@pytest.fixture
def recipient(db, provider_user):
    """Active Paystack transfer recipient for the provider."""
    return TransferRecipientFactory(provider=provider_user)


# =============================================================================
# Payment State Fixtures
# =============================================================================


@pytest.fixture
def pending_payment(db, booking):
    return PaymentFactory(booking=booking, payer=booking.client)


@pytest.fixture
def escrowed_payment(db, booking):
    """Payment held in escrow, booking awaiting confirmation with proof."""
    booking.status = BookingStatus.AWAITING_CONFIRMATION
    booking.save(update_fields=["status"])
    CompletionProofFactory(booking=booking, submitted_by=booking.provider)
    return PaymentFactory(
        booking=booking,
        payer=booking.client,
        status=PaymentStatus.ESCROW,
    )


@pytest.fixture
def releasing_payout(db, booking, recipient):
    """PROCESSING payout for a payment in PROCESSING_RELEASE."""
    payment = PaymentFactory(
        booking=booking,
        payer=booking.client,
        status=PaymentStatus.PROCESSING_RELEASE,
    )
    return PayoutFactory(
        payment=payment,
        provider=booking.provider,
        recipient=recipient,
        status=PayoutStatus.PROCESSING,
        transfer_code="TRF_existing",
    )


@pytest.fixture
def failed_payout(db, booking, recipient):
    """FAILED payout for a payment still in PROCESSING_RELEASE."""
    payment = PaymentFactory(
        booking=booking,
        payer=booking.client,
        status=PaymentStatus.PROCESSING_RELEASE,
    )
    return PayoutFactory(
        payment=payment,
        provider=booking.provider,
        recipient=recipient,
        status=PayoutStatus.FAILED,
        failure_reason="Account closed",
    )
