"""
Domain exceptions shared across modules.

The HTTP layer maps these to status codes in `codconfirm.main`.
"""

from typing import Any


class DomainError(Exception):
    """Base class for domain errors."""


class ValidationError(DomainError):
    """A required field is missing or malformed. Nothing was mutated."""


class NotFoundError(DomainError):
    """The referenced order, call attempt or store does not exist."""


class InvalidTransitionError(DomainError):
    """An order status change is not allowed by the transition table."""


class ProviderError(DomainError):
    """An upstream provider (voice or commerce) returned a failure."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}
