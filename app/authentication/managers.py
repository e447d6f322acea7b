"""
User manager keyed on email instead of username.
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Creates clients, providers and administrators by email.

    Usage:
        provider = User.objects.create_user(
            email="provider@example.com",
            full_name="Thandi Provider",
        )
    """

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a regular account.

        Accounts created without a password (e.g. by factories or imports)
        get an unusable one and must authenticate with a token.

        Raises:
            ValueError: If email is empty
        """
        if not email:
            raise ValueError("The Email field must be set")

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create an administrator; escrow overrides require is_staff."""
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        for flag in ("is_staff", "is_superuser"):
            if extra_fields.get(flag) is not True:
                raise ValueError(f"Superuser must have {flag}=True.")

        return self.create_user(email, password, **extra_fields)
