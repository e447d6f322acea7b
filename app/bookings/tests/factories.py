"""
Factory Boy factories for users and bookings.

Usage:
    from bookings.tests.factories import BookingFactory, UserFactory

    booking = BookingFactory(service_amount_cents=50000)
    admin = AdminUserFactory()
"""

import factory

from bookings.models import Booking, BookingStatus, CompletionProof


class UserFactory(factory.django.DjangoModelFactory):
    """Factory for active, non-staff users (clients and providers)."""

    class Meta:
        model = "authentication.User"
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    full_name = factory.Sequence(lambda n: f"Test User {n}")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class AdminUserFactory(UserFactory):
    """Factory for administrators (active staff)."""

    email = factory.Sequence(lambda n: f"admin{n}@example.com")
    is_staff = True


class BookingFactory(factory.django.DjangoModelFactory):
    """
    Factory for Booking instances.

    Default creates a CONFIRMED booking worth 1000.00 ZAR.
    """

    class Meta:
        model = Booking

    client = factory.SubFactory(UserFactory)
    provider = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Deep clean #{n}")
    service_amount_cents = 100000
    currency = "ZAR"
    status = BookingStatus.CONFIRMED


class CompletionProofFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CompletionProof

    booking = factory.SubFactory(BookingFactory, status=BookingStatus.AWAITING_CONFIRMATION)
    submitted_by = factory.SelfAttribute("booking.provider")
    notes = "Work completed"
