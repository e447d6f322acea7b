"""
Escrow app configuration.

The Paystack client is built exactly once per process, when Django finishes
loading apps, from settings. Services receive it through their constructors;
nothing else constructs a client.

Usage:
    from escrow.apps import get_gateway_client

    client = get_gateway_client()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.apps import AppConfig, apps

if TYPE_CHECKING:
    from escrow.gateway import PaystackClient


class EscrowConfig(AppConfig):
    """Configuration for the escrow payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Escrow Payments"

    gateway_client: PaystackClient | None = None

    def ready(self):
        """
        Build the gateway client and connect signal receivers.
        """
        from escrow import signals  # noqa: F401
        from escrow.gateway import GatewayConfig, PaystackClient

        self.gateway_client = PaystackClient(GatewayConfig.from_settings())


def get_gateway_client() -> PaystackClient:
    """Return the process-wide Paystack client built at startup."""
    return apps.get_app_config("escrow").gateway_client
