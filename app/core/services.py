"""
Service layer building blocks.

- ServiceResult: outcome of a step that may fail for an expected reason
- BaseService: per-class logger and explicit transaction boundaries

Raise core.exceptions errors when the caller has to act on the failure;
return ServiceResult.failure() when the failure is a normal answer, such as
a webhook whose business rules do not hold. The webhook pipeline records
those failures on the event instead of answering the gateway with an error.

Usage:
    from core.services import BaseService, ServiceResult

    class ChargeChecker(BaseService):
        def check(self, payment, result) -> ServiceResult[Payment]:
            if result.amount_cents != payment.amount_cents:
                return ServiceResult.failure(
                    "Amount differs from gateway", error_code="AMOUNT_MISMATCH"
                )
            return ServiceResult.success(payment)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Success flag plus either data or an error description.

    Attributes:
        success: Whether the step did what it was asked to
        data: Payload for successful results
        error: Human-readable reason for failed results
        error_code: Machine-readable reason, stored with the error
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for services.

    Services that call Paystack take the client in their constructor;
    the rest of their state lives in the database.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Open a database transaction.

        Gateway calls never run inside this block: a slow Paystack answer
        must not hold row locks.
        """
        with transaction.atomic():
            yield
