"""Domain errors raised by the service layer.

Each error carries the HTTP status the API layer should answer with and a
stable, user-facing message.
"""
from __future__ import annotations

from typing import Any, Optional
from uuid import UUID


class AppException(Exception):
    """Base application exception."""

    status_code: int = 400

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(AppException):
    """Resource not found exception."""

    status_code = 404


class ConflictError(AppException):
    """The request conflicts with the current state of a resource."""

    status_code = 409


class ValidationFailedError(AppException):
    """Input rejected before any store access."""

    status_code = 400


class PaymentInitiationError(AppException):
    """The payment gateway rejected or failed to start a payment."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        subscription_id: Optional[UUID] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.subscription_id = subscription_id
