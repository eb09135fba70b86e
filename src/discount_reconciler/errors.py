"""Error taxonomy for discount reconciliation.

Every error carries a machine-classifiable ``kind`` and a human-actionable
``remediation`` hint so callers can render failures without exposing a
stack trace. Full detail stays in ``details`` for operator logs.
"""
from __future__ import annotations

from typing import Any, Optional


class DiscountError(Exception):
    """Base exception for discount reconciliation errors."""

    kind = "discount_error"
    remediation = "Check the operator logs for details."

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if remediation is not None:
            self.remediation = remediation

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error": {
                "kind": self.kind,
                "message": self.message,
                "remediation": self.remediation,
                "details": self.details,
            }
        }


class ValidationError(DiscountError):
    """Bad user input. Raised locally, never reaches the store."""

    kind = "validation"
    remediation = "Correct the highlighted field and submit again."

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field})
        self.field = field


class ConfigurationError(DiscountError):
    """Required settings are missing or invalid."""

    kind = "configuration"
    remediation = "Set DISCOUNT_RECONCILER_SHOP_DOMAIN and DISCOUNT_RECONCILER_ACCESS_TOKEN, or pass --shop and --token."

    def __init__(self, message: str, setting: Optional[str] = None, remediation: Optional[str] = None):
        super().__init__(message, details={"setting": setting}, remediation=remediation)
        self.setting = setting


class PrecisionError(DiscountError):
    """Encoded value does not re-derive to the requested value."""

    kind = "precision"
    remediation = "Use a value with at most two decimal places."


class StoreError(DiscountError):
    """Base class for failures reported by or on the way to the store."""

    kind = "store"
    retryable = False


class AuthenticationError(StoreError):
    """The store rejected the access token."""

    kind = "authentication"
    remediation = "Log in again so a fresh access token is issued."

    def __init__(self, message: str = "Store authentication failed", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details=details)


class PermissionDeniedError(StoreError):
    """The token is valid but lacks a required access scope."""

    kind = "permission"
    remediation = "Reinstall the app and accept all requested permissions (read_discounts, write_discounts)."


class StoreValidationError(StoreError):
    """The store rejected one or more fields ("user errors")."""

    kind = "store_validation"
    remediation = "Adjust the rejected fields and try again."

    def __init__(self, message: str, user_errors: Optional[list[dict[str, Any]]] = None):
        self.user_errors = user_errors or []
        super().__init__(message, details={"user_errors": self.user_errors})

    @classmethod
    def from_user_errors(cls, operation: str, user_errors: list[dict[str, Any]]) -> "StoreValidationError":
        """Build an error keeping every field, code and message."""
        summary = " | ".join(
            f"{e.get('message')} (Field: {_format_field(e.get('field'))}, Code: {e.get('code') or 'N/A'})"
            for e in user_errors
        )
        return cls(f"{operation} validation failed: {summary}", user_errors=user_errors)


class TransportError(StoreError):
    """Network or protocol failure talking to the store. Safe to retry."""

    kind = "transport"
    remediation = "Check connectivity to the store and retry."
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code
        self.retryable = retryable


class OpaqueFailure(StoreError):
    """The store returned a success envelope without the expected entity."""

    kind = "opaque_failure"
    remediation = "The store did not return the discount. Check the admin for a partial result and retry."


class PipelineTimeout(DiscountError):
    """The cleanup and create pipeline exceeded its deadline."""

    kind = "timeout"
    remediation = "The store is slow to respond. Run the inventory check before retrying."


class CleanupNotSettled(DiscountError):
    """Deleted discounts were still visible when the settle ceiling was reached."""

    kind = "not_settled"
    remediation = "Wait a few seconds and run the cleanup again."


class UnsupportedOperation(DiscountError):
    """The store cannot perform this operation."""

    kind = "unsupported"
    remediation = "Delete the existing discount and create a new one with the desired values."


def _format_field(field: Any) -> str:
    if isinstance(field, (list, tuple)):
        return ".".join(str(part) for part in field)
    return str(field) if field else "N/A"
