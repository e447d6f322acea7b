"""
TransferRecipient model: a provider's Paystack transfer destination.

Providers are onboarded outside this app; onboarding stores the
recipient_code Paystack returned for the provider's bank account here.
Payouts read it to address the transfer.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class TransferRecipient(UUIDPrimaryKeyMixin, BaseModel):
    """
    Paystack transfer recipient for a provider.

    Fields:
        provider: Provider user (one recipient per provider)
        recipient_code: Paystack recipient code (RCP_...)
        bank_name: Display name of the bank
        account_name: Name on the bank account
        account_last4: Last four digits, for display only
        is_active: Inactive recipients cannot receive payouts
    """

    provider = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transfer_recipient",
        help_text="Provider this recipient pays out to",
    )

    recipient_code = models.CharField(
        max_length=100,
        unique=True,
        help_text="Paystack recipient code (RCP_...)",
    )

    bank_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Bank display name",
    )

    account_name = models.CharField(
        max_length=150,
        blank=True,
        default="",
        help_text="Name on the bank account",
    )

    account_last4 = models.CharField(
        max_length=4,
        blank=True,
        default="",
        help_text="Last four digits of the account number",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether payouts may be sent to this recipient",
    )

    class Meta:
        db_table = "transfer_recipients"
        verbose_name = "Transfer Recipient"
        verbose_name_plural = "Transfer Recipients"

    def __str__(self) -> str:
        return f"TransferRecipient({self.recipient_code}, active={self.is_active})"
