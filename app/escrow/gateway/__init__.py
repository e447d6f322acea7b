"""
Payment gateway client.

Usage:
    from escrow.gateway import GatewayConfig, PaystackClient
"""

from escrow.gateway.client import (
    GatewayConfig,
    InitializeResult,
    PaystackClient,
    RefundResult,
    TransferResult,
    VerifyResult,
)

__all__ = [
    "GatewayConfig",
    "InitializeResult",
    "PaystackClient",
    "RefundResult",
    "TransferResult",
    "VerifyResult",
]
