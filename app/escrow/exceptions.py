"""
Escrow-specific exceptions.

Every error the escrow subsystem raises belongs to one of six categories,
each mapped to an HTTP status by its class (see core.exceptions):

Exception Hierarchy:
    ValidationError (core, 400) - Bad caller input or unmet precondition
    AuthorizationError (403) - Role/ownership mismatch
    ConflictError (core, 409) - Duplicate payment for a booking
    └── StateTransitionError (409) - Illegal status transition requested
    GatewayError (502) - Paystack failure; carries is_retryable
    ├── GatewayTimeoutError - No response in time; outcome unknown
    ├── GatewayUnavailableError - Could not connect, or Paystack 5xx
    └── GatewayRequestError - Paystack rejected the request (4xx, status=false)
    PersistenceError (503) - Storage fault; caller should retry later
    ReferenceNotFoundError (404) - Gateway reference unknown locally

Propagation:
    Validation, authorization, conflict and transition errors surface to the
    caller immediately. Gateway and persistence errors raised while handling
    a webhook are recorded on the WebhookEvent row for automatic or manual
    retry instead of being dropped.

Usage:
    from escrow.exceptions import GatewayError, StateTransitionError

    try:
        client.transfer(recipient, amount_cents, reference)
    except GatewayError as e:
        if e.is_retryable:
            schedule_retry()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Caller Errors
# =============================================================================


class AuthorizationError(PermissionDeniedError):
    """
    Raised when the requester may not act on a payment or booking.

    Example:
        if requested_by.pk != payment.payer_id and not requested_by.is_staff:
            raise AuthorizationError(
                "Only the paying client or an administrator can release escrow",
                error_code="RELEASE_NOT_ALLOWED",
            )
    """

    default_error_code: str = "AUTHORIZATION_ERROR"


class StateTransitionError(ConflictError):
    """
    Raised when a requested status transition is not in the graph.

    Attributes:
        details: Contains current_status and target_status

    Example:
        raise StateTransitionError(
            "Cannot move payment from PENDING to PROCESSING_RELEASE",
            details={"current_status": "PENDING", "target_status": "PROCESSING_RELEASE"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class ReferenceNotFoundError(NotFoundError):
    """
    Raised when a gateway reference does not match any local row.

    During webhook processing this is not fatal: the event is stored as
    DEFERRED and retried, since a callback can outrun the payment insert.
    """

    default_error_code: str = "REFERENCE_NOT_FOUND"


class PersistenceError(BaseApplicationError):
    """
    Raised when the database fails underneath an escrow operation.

    The webhook endpoint answers 503 for these so Paystack redelivers.
    """

    default_error_code: str = "PERSISTENCE_ERROR"
    http_status: int = 503


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for Paystack failures.

    Callers decide retry policy using is_retryable:
    - True: the request certainly did not take effect; safe to repeat
    - False: permanent rejection, or the outcome is unknown

    Attributes:
        status_code: HTTP status from Paystack, if a response arrived
        gateway_message: Paystack's "message" field, if any
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        gateway_message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        if gateway_message:
            details["gateway_message"] = gateway_message
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        self.gateway_message = gateway_message


class GatewayTimeoutError(GatewayError):
    """
    Paystack did not answer within the configured timeout.

    IMPORTANT: the request may have taken effect. Never retry blindly;
    leave the row for the reconciliation service to verify.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = False


class GatewayUnavailableError(GatewayError):
    """
    Paystack could not be reached or answered with a 5xx.

    Connection failures are retried inside the client already; by the time
    this surfaces the retries are exhausted.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayRequestError(GatewayError):
    """
    Paystack rejected the request (4xx or ``status: false``).

    Permanent for the same parameters: bad recipient, insufficient
    balance, unknown reference, invalid key.
    """

    default_error_code: str = "GATEWAY_REQUEST_REJECTED"
    is_retryable: bool = False

    @property
    def is_not_found(self) -> bool:
        """Paystack has no record of the reference."""
        if self.status_code == 404:
            return True
        return "not found" in (self.gateway_message or "").lower()


__all__ = [
    "AuthorizationError",
    "ConflictError",
    "GatewayError",
    "GatewayRequestError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "PersistenceError",
    "ReferenceNotFoundError",
    "StateTransitionError",
    "ValidationError",
]
