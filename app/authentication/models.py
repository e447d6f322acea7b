"""
Authentication models.

The escrow subsystem needs only three roles from a user account:
- client (payer): the user who books and pays for a service
- provider: the user who performs the service and receives the payout
- administrator: staff users (is_staff) who may override release rules,
  refund payments and resolve failed releases

Roles are relational (Booking.client / Booking.provider) rather than
stored flags, so one account can be both a client and a provider.

Related files:
    - managers.py: Custom user manager for email-based creation
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login and sent to
            Paystack when initializing a charge
        full_name: Display name used on payout recipients and receipts
        is_active: Whether the user account is active
        is_staff: Administrator flag (Django admin and escrow overrides)
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        client = User.objects.create_user(
            email="client@example.com",
            password="securepassword",
        )
        admin = User.objects.create_superuser(
            email="admin@example.com",
            password="adminpassword",
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    full_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Display name shown on bookings and payouts",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site and override escrow rules.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    def get_full_name(self):
        """Return the display name, falling back to the email address."""
        return self.full_name or self.email

    def get_short_name(self):
        """Return the first word of the display name or the email local part."""
        if self.full_name:
            return self.full_name.split()[0]
        return self.email.split("@")[0]

    @property
    def is_administrator(self) -> bool:
        """Staff users may override escrow release and resolve discrepancies."""
        return self.is_active and self.is_staff
