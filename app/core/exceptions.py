"""
Application error hierarchy.

Each error knows its message, a machine-readable code, optional details and
the HTTP status API views answer with, so views map any domain failure to a
response with ``Response(e.to_dict(), status=e.http_status)``.

    BaseApplicationError (500)
    ├── ValidationError (400)
    ├── PermissionDeniedError (403)
    ├── NotFoundError (404)
    ├── ConflictError (409)
    └── ExternalServiceError (502)

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "A payment already exists for this booking",
        error_code="DUPLICATE_PAYMENT",
        details={"booking_id": str(booking.id)},
    )

Note:
    Request parsing and authentication errors stay with DRF; these classes
    are raised by services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Root of all domain errors.

    Attributes:
        message: Human-readable description
        error_code: Stable code clients can branch on
        details: Identifiers and statuses involved in the failure
        http_status: Status an API view should answer with
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Response body for the error.

        Example:
            {
                "error": "Cannot move payment from PENDING to PROCESSING_RELEASE",
                "error_code": "INVALID_STATE_TRANSITION",
                "details": {"current_status": "PENDING"}
            }
        """
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Bad input or an unmet business precondition (unpayable booking, missing proof)."""

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    The caller is authenticated but not allowed to act on the resource.

    Missing or invalid credentials are DRF's AuthenticationFailed, not this.
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """The resource's current state forbids the operation (duplicates, illegal moves)."""

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """A third-party service failed or answered with something unusable."""

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
