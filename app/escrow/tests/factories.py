"""
Factory Boy factories for escrow test data.

Payment and Payout statuses are protected FSM fields: factories may set
``status`` when creating a row, but tests must re-fetch rows with
``Model.objects.get(pk=...)`` rather than ``refresh_from_db()``.

Usage:
    from escrow.tests.factories import PaymentFactory, PayoutFactory

    payment = PaymentFactory(status=PaymentStatus.ESCROW)
    payout = PayoutFactory(payment=payment)
"""

import factory
from django.utils import timezone

from bookings.tests.factories import BookingFactory, UserFactory
from escrow.models import (
    Payment,
    Payout,
    ReconciliationDiscrepancy,
    TransferRecipient,
    WebhookEvent,
)
from escrow.state_machines import DiscrepancyKind, PaymentStatus, PayoutStatus


class TransferRecipientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = TransferRecipient

    provider = factory.SubFactory(UserFactory)
    recipient_code = factory.Sequence(lambda n: f"RCP_test{n:06d}")
    bank_name = "First National Bank"
    account_name = factory.SelfAttribute("provider.full_name")
    account_last4 = "4321"
    is_active = True


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for Payment instances.

    Default creates a PENDING payment of 1000.00 ZAR (900.00 escrow,
    100.00 fee) for a new booking, paid by the booking's client.
    Rows created past ESCROW get paid_at, as the charge webhook would set.
    """

    class Meta:
        model = Payment

    booking = factory.SubFactory(BookingFactory)
    payer = factory.SelfAttribute("booking.client")
    gateway_reference = factory.Sequence(lambda n: f"ESC_test_{n:08d}")
    amount_cents = 100000
    escrow_amount_cents = 90000
    platform_fee_cents = 10000
    currency = "ZAR"
    status = PaymentStatus.PENDING
    paid_at = factory.LazyAttribute(
        lambda o: None if o.status in (PaymentStatus.PENDING, PaymentStatus.FAILED) else timezone.now()
    )
    authorization_url = factory.LazyAttribute(
        lambda o: f"https://checkout.paystack.com/{o.gateway_reference}"
    )


class PayoutFactory(factory.django.DjangoModelFactory):
    """
    Factory for Payout instances.

    Default creates a PENDING payout for a payment in PROCESSING_RELEASE.
    """

    class Meta:
        model = Payout

    payment = factory.SubFactory(PaymentFactory, status=PaymentStatus.PROCESSING_RELEASE)
    provider = factory.SelfAttribute("payment.booking.provider")
    amount_cents = factory.SelfAttribute("payment.escrow_amount_cents")
    currency = "ZAR"
    status = PayoutStatus.PENDING
    transfer_reference = factory.Sequence(lambda n: f"PAYOUT_test_{n:08d}")


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    event_type = "charge.success"
    gateway_reference = factory.Sequence(lambda n: f"ESC_hook_{n:08d}")
    payload = factory.LazyAttribute(
        lambda o: {
            "event": o.event_type,
            "data": {"reference": o.gateway_reference, "status": "success", "amount": 100000},
        }
    )


class ReconciliationDiscrepancyFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ReconciliationDiscrepancy

    payment = factory.SubFactory(PaymentFactory, status=PaymentStatus.PROCESSING_RELEASE)
    kind = DiscrepancyKind.TRANSFER_FAILED
    local_status = factory.SelfAttribute("payment.status")
    gateway_status = "failed"
