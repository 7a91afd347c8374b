# Overview: Domain error taxonomy shared by services and routes.

"""
Every core operation either commits fully or raises exactly one DomainError.

Routes catch them and return e.to_dict() ({"error": message, "details":
details}) with the error's status_code; anything else is logged and
becomes a 500.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(DomainError):
    """400-level input problem."""


class InvalidTypeError(ValidationError):
    """Ledger entry type is not one of the known kinds."""


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    status_code = 409


class InitialCountExistsError(ConflictError):
    """Variant already has an INITIAL_COUNT ledger entry."""


class InsufficientStockError(DomainError):
    """On-hand would go negative. details["items"] names each variant short."""

    status_code = 409


class InsufficientPaymentError(DomainError):
    pass


class EmptyCartError(DomainError):
    pass


class EmptyReceiptError(DomainError):
    pass


class ImportBlockedError(ValidationError):
    """Import file has rows with blocking issues; details carry the preview."""


class OverReceiptError(DomainError):
    status_code = 409


class OrderClosedError(DomainError):
    """Purchase order is RECEIVED or CANCELLED."""

    status_code = 409


class ConcurrencyConflictError(DomainError):
    """
    Lock wait timed out or a concurrent writer won.

    The caller may retry the whole operation from a fresh read; the core
    never retries on its own.
    """

    status_code = 409
    retryable = True

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryable"] = True
        return payload


class AuthenticationError(DomainError):
    status_code = 401


class PermissionDeniedError(DomainError):
    status_code = 403


class ImmutableRecordError(ConflictError):
    """Attempted to update or delete an append-only record."""
