"""
Paystack API client for escrow payment operations.

PaystackClient is the only code in the project that speaks HTTP to the
payment gateway. It carries no business logic: it formats requests,
applies timeouts, translates failures into escrow.exceptions.GatewayError
subclasses, and logs every call with timing.

Retry policy:
    Only failures to *connect* are retried (the request never reached
    Paystack, so repeating it cannot double-charge or double-transfer).
    Read timeouts, dropped connections mid-response and 5xx answers are
    ambiguous and are never retried here: callers leave the row for the
    reconciliation service to verify.

Configuration (via settings, see GatewayConfig.from_settings):
- PAYSTACK_SECRET_KEY: API secret key, also the webhook signing key
- PAYSTACK_BASE_URL: API root (default: https://api.paystack.co)
- PAYSTACK_API_TIMEOUT_SECONDS: timeout per call (default: 10)
- PAYSTACK_CONNECT_RETRIES: connection-failure retries (default: 2)
- PAYSTACK_CURRENCY: currency for charges and transfers (default: ZAR)

Usage:
    from escrow.gateway import GatewayConfig, PaystackClient

    client = PaystackClient(GatewayConfig.from_settings())

    init = client.initialize(
        amount_cents=100000,
        reference="ESC_8f2c1a_4b9e...",
        callback_url="https://app.example.com/payments/callback",
        email="client@example.com",
    )
    redirect(init.authorization_url)

    result = client.verify("ESC_8f2c1a_4b9e...")
    if result.is_successful:
        ...
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.exceptions import MaxRetryError
from urllib3.util.retry import Retry

from escrow.exceptions import (
    GatewayError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class GatewayConfig:
    """
    Immutable Paystack client configuration.

    Attributes:
        secret_key: Paystack secret key (sk_test_... / sk_live_...)
        base_url: API root URL
        timeout_seconds: Connect and read timeout for every call
        connect_retries: Retries for connection failures only
        currency: Currency code sent with charges and transfers
    """

    secret_key: str
    base_url: str = "https://api.paystack.co"
    timeout_seconds: float = 10.0
    connect_retries: int = 2
    currency: str = "ZAR"

    @classmethod
    def from_settings(cls) -> GatewayConfig:
        """Build configuration from Django settings."""
        return cls(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=getattr(settings, "PAYSTACK_BASE_URL", cls.base_url),
            timeout_seconds=float(getattr(settings, "PAYSTACK_API_TIMEOUT_SECONDS", 10)),
            connect_retries=int(getattr(settings, "PAYSTACK_CONNECT_RETRIES", 2)),
            currency=getattr(settings, "PAYSTACK_CURRENCY", cls.currency),
        )


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class InitializeResult:
    """
    Result of initializing a charge.

    Attributes:
        authorization_url: Hosted checkout page the client is redirected to
        access_code: Code for inline/popup checkout
        reference: Transaction reference (echo of ours)
        raw_response: Paystack "data" object, kept for audit
    """

    authorization_url: str
    access_code: str
    reference: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class VerifyResult:
    """
    Paystack's authoritative view of a transaction.

    Attributes:
        reference: Transaction reference
        status: "success", "failed", "abandoned", "ongoing", "pending", ...
        amount_cents: Charged amount in the smallest currency unit
        currency: Currency code
        transaction_id: Paystack transaction id
        gateway_response: Human-readable processor message
        metadata: Metadata we attached at initialization
        raw_response: Paystack "data" object
    """

    reference: str
    status: str
    amount_cents: int
    currency: str = ""
    transaction_id: str | None = None
    gateway_response: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == "success"

    @property
    def is_failed(self) -> bool:
        return self.status in ("failed", "reversed")

    @property
    def is_abandoned(self) -> bool:
        return self.status == "abandoned"


@dataclass
class TransferResult:
    """
    Result of initiating or verifying a transfer.

    Attributes:
        reference: Our transfer reference (PAYOUT_...)
        status: "pending", "otp", "success", "failed", "reversed", ...
        transfer_code: Paystack transfer code (TRF_...)
        amount_cents: Transferred amount
        raw_response: Paystack "data" object
    """

    reference: str
    status: str
    transfer_code: str | None = None
    amount_cents: int = 0
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == "success"

    @property
    def is_failed(self) -> bool:
        return self.status in ("failed", "reversed")


@dataclass
class RefundResult:
    """
    Result of requesting a refund.

    Attributes:
        status: "pending", "processing", "processed", ...
        refund_id: Paystack refund id
        amount_cents: Amount being refunded
        raw_response: Paystack "data" object
    """

    status: str
    refund_id: str | None = None
    amount_cents: int = 0
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Paystack Client
# =============================================================================


class PaystackClient:
    """
    Thin adapter over the Paystack REST API.

    One instance is built at startup (escrow.apps.EscrowConfig.ready) and
    handed to every service that needs it. Tests pass a fake instead.

    Features:
    - Bearer auth with the configured secret key
    - Bounded timeouts on every call
    - Connection-failure-only retries via urllib3 Retry
    - Error translation to GatewayError subclasses
    - Structured logging with timing metrics
    """

    def __init__(self, config: GatewayConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or self._build_session(config)

    @staticmethod
    def _build_session(config: GatewayConfig) -> requests.Session:
        """Create a pooled session that retries connection failures only."""
        retry = Retry(
            total=config.connect_retries,
            connect=config.connect_retries,
            read=False,  # re-raise read errors untouched; never retried
            status=0,
            other=0,
            redirect=False,
            allowed_methods=None,
            backoff_factor=0.5,
            raise_on_status=False,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def get_logger(self) -> logging.Logger:
        """Get logger for this client."""
        return logging.getLogger(f"{type(self).__module__}.{type(self).__name__}")

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    # =========================================================================
    # Transactions (charges)
    # =========================================================================

    def initialize(
        self,
        amount_cents: int,
        reference: str,
        callback_url: str,
        email: str,
        metadata: dict[str, Any] | None = None,
    ) -> InitializeResult:
        """
        Initialize a charge and obtain the hosted checkout URL.

        Args:
            amount_cents: Amount in the smallest currency unit
            reference: Our unique transaction reference
            callback_url: Where Paystack redirects the client afterwards
            email: Customer email (required by Paystack)
            metadata: Extra data echoed back on verify and webhooks

        Raises:
            GatewayRequestError: Paystack rejected the request
            GatewayUnavailableError: Paystack unreachable or 5xx
            GatewayTimeoutError: No response in time (outcome unknown)
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        data = self._request(
            "POST",
            "/transaction/initialize",
            operation="initialize",
            payload={
                "amount": amount_cents,
                "email": email,
                "reference": reference,
                "callback_url": callback_url,
                "currency": self.config.currency,
                "metadata": metadata or {},
            },
            log_context={"reference": reference, "amount_cents": amount_cents},
        )

        try:
            return InitializeResult(
                authorization_url=data["authorization_url"],
                access_code=data["access_code"],
                reference=data.get("reference") or reference,
                raw_response=data,
            )
        except KeyError as e:
            raise GatewayRequestError(
                f"Malformed initialize response: missing {e.args[0]}",
                error_code="GATEWAY_MALFORMED_RESPONSE",
            ) from e

    def verify(self, reference: str) -> VerifyResult:
        """
        Fetch the authoritative status of a transaction.

        Raises:
            GatewayRequestError: Unknown reference or rejected request
            GatewayUnavailableError: Paystack unreachable or 5xx
            GatewayTimeoutError: No response in time
        """
        data = self._request(
            "GET",
            f"/transaction/verify/{quote(reference, safe='')}",
            operation="verify",
            log_context={"reference": reference},
        )

        metadata = data.get("metadata")
        return VerifyResult(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or ""),
            amount_cents=int(data.get("amount") or 0),
            currency=str(data.get("currency") or ""),
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            gateway_response=data.get("gateway_response"),
            metadata=metadata if isinstance(metadata, dict) else {},
            raw_response=data,
        )

    # =========================================================================
    # Transfers (payouts)
    # =========================================================================

    def transfer(
        self,
        recipient: str,
        amount_cents: int,
        reference: str,
        reason: str = "",
    ) -> TransferResult:
        """
        Send money from the platform balance to a transfer recipient.

        The reference is unique per payout; Paystack refuses a second
        transfer with the same reference.

        Raises:
            GatewayRequestError: Rejected (bad recipient, low balance, ...)
            GatewayUnavailableError: Paystack unreachable or 5xx
            GatewayTimeoutError: No response in time (outcome unknown)
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        data = self._request(
            "POST",
            "/transfer",
            operation="transfer",
            payload={
                "source": "balance",
                "amount": amount_cents,
                "recipient": recipient,
                "reference": reference,
                "reason": reason,
                "currency": self.config.currency,
            },
            log_context={
                "reference": reference,
                "recipient": recipient,
                "amount_cents": amount_cents,
            },
        )
        return self._transfer_result(data, reference)

    def verify_transfer(self, reference: str) -> TransferResult:
        """
        Fetch the authoritative status of a transfer by our reference.

        Raises:
            GatewayRequestError: Unknown reference (check ``is_not_found``)
            GatewayUnavailableError: Paystack unreachable or 5xx
            GatewayTimeoutError: No response in time
        """
        data = self._request(
            "GET",
            f"/transfer/verify/{quote(reference, safe='')}",
            operation="verify_transfer",
            log_context={"reference": reference},
        )
        return self._transfer_result(data, reference)

    @staticmethod
    def _transfer_result(data: dict[str, Any], reference: str) -> TransferResult:
        return TransferResult(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or ""),
            transfer_code=data.get("transfer_code"),
            amount_cents=int(data.get("amount") or 0),
            raw_response=data,
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, reference: str, amount_cents: int | None = None) -> RefundResult:
        """
        Refund a successful transaction, fully or partially.

        Completion is reported later by the ``refund.processed`` webhook.
        """
        payload: dict[str, Any] = {"transaction": reference}
        if amount_cents is not None:
            payload["amount"] = amount_cents

        data = self._request(
            "POST",
            "/refund",
            operation="refund",
            payload=payload,
            log_context={"reference": reference, "amount_cents": amount_cents},
        )
        return RefundResult(
            status=str(data.get("status") or ""),
            refund_id=str(data["id"]) if data.get("id") is not None else None,
            amount_cents=int(data.get("amount") or 0),
            raw_response=data,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """
        Check the ``x-paystack-signature`` header against the raw body.

        Paystack signs the exact request bytes with HMAC-SHA512 keyed by
        the secret key. The comparison is constant-time.

        Args:
            raw_body: Request body exactly as received
            signature: Header value (hex digest)

        Returns:
            True only for a present, matching signature
        """
        if not signature or not self.config.secret_key:
            return False

        expected = hmac.new(
            self.config.secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    # =========================================================================
    # HTTP Plumbing
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: dict[str, Any] | None = None,
        log_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one API call and return Paystack's ``data`` object.

        Raises:
            GatewayError subclasses, see _handle_transport_error and
            _check_response.
        """
        logger = self.get_logger()
        log_context = {"operation": operation, "method": method, "path": path, **(log_context or {})}

        start_time = time.monotonic()
        logger.info("Starting Paystack operation", extra=log_context)

        try:
            response = self.session.request(
                method,
                f"{self.config.base_url.rstrip('/')}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.config.secret_key}",
                    "Accept": "application/json",
                },
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            self._handle_transport_error(e, log_context, duration_ms)
            raise  # Never reached, _handle_transport_error always raises

        duration_ms = (time.monotonic() - start_time) * 1000
        data = self._check_response(response, log_context, duration_ms)

        logger.info(
            "Paystack operation completed",
            extra={
                **log_context,
                "status_code": response.status_code,
                "gateway_status": data.get("status"),
                "duration_ms": duration_ms,
            },
        )
        return data

    def _check_response(
        self,
        response: requests.Response,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> dict[str, Any]:
        """Translate a non-success Paystack answer into a GatewayError."""
        logger = self.get_logger()
        log_context = {**log_context, "status_code": response.status_code, "duration_ms": duration_ms}

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 500:
            logger.error("Paystack server error", extra=log_context)
            raise GatewayUnavailableError(
                "Payment gateway error. Please retry later.",
                status_code=response.status_code,
                gateway_message=(body or {}).get("message") if isinstance(body, dict) else None,
            )

        if not isinstance(body, dict):
            logger.error("Paystack returned a non-JSON body", extra=log_context)
            raise GatewayRequestError(
                "Malformed response from payment gateway",
                error_code="GATEWAY_MALFORMED_RESPONSE",
                status_code=response.status_code,
            )

        gateway_message = body.get("message")

        if response.status_code == 401:
            logger.critical("Paystack authentication failed - check secret key", extra=log_context)
            raise GatewayRequestError(
                "Payment gateway authentication failed",
                error_code="GATEWAY_AUTHENTICATION_FAILED",
                status_code=response.status_code,
                gateway_message=gateway_message,
            )

        if response.status_code >= 400 or not body.get("status"):
            logger.warning(
                "Paystack rejected request",
                extra={**log_context, "gateway_message": gateway_message},
            )
            raise GatewayRequestError(
                gateway_message or f"Payment gateway rejected request ({response.status_code})",
                status_code=response.status_code,
                gateway_message=gateway_message,
            )

        data = body.get("data")
        return data if isinstance(data, dict) else {}

    def _handle_transport_error(
        self,
        error: requests.exceptions.RequestException,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate requests exceptions to gateway exceptions.

        Raises:
            GatewayUnavailableError: Never connected (safe to repeat)
            GatewayTimeoutError: Sent but no usable answer (outcome unknown)
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, requests.exceptions.ConnectTimeout):
            logger.error("Timed out connecting to Paystack", extra=log_context)
            raise GatewayUnavailableError(
                "Could not connect to payment gateway. Please retry.",
                error_code="GATEWAY_CONNECT_TIMEOUT",
            ) from error

        if isinstance(error, requests.exceptions.Timeout):
            logger.error("Paystack read timed out", extra=log_context)
            raise GatewayTimeoutError(
                "Payment gateway did not respond in time",
            ) from error

        if isinstance(error, requests.exceptions.ConnectionError):
            reason = error.args[0] if error.args else None
            if isinstance(reason, MaxRetryError):
                logger.error("Connection error to Paystack", extra=log_context, exc_info=True)
                raise GatewayUnavailableError(
                    "Could not connect to payment gateway. Please retry.",
                ) from error

            # Connection dropped after the request was sent
            logger.error("Paystack connection dropped mid-request", extra=log_context, exc_info=True)
            raise GatewayTimeoutError(
                "Payment gateway connection dropped; outcome unknown",
                error_code="GATEWAY_CONNECTION_DROPPED",
            ) from error

        logger.error(
            f"Unexpected error calling Paystack: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayError(
            f"Unexpected payment gateway error: {error}",
            error_code="GATEWAY_UNKNOWN_ERROR",
        ) from error
