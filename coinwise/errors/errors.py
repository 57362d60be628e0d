"""
Exception hierarchy for coinwise.

- CoinwiseError (base)
  - LedgerError: local validation, operation rejected with no mutation
    - InsufficientFunds
    - InsufficientHoldings
    - InvalidOrder
  - CompetitionError
    - AlreadyCompeting
    - NotCompeting
  - AuthFailure: identity provider rejected the request (terminal for the operation)
  - SyncFailure: remote read/write failed (logged, never rolls back local state)
  - SessionError: operation issued outside an active session
  - PriceFeedError: price fetch failed
  - ConfigurationError: invalid configuration
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class CoinwiseError(Exception):
    """Base exception for all coinwise errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


# --- Ledger ---


class LedgerError(CoinwiseError):
    """Recoverable ledger validation error. State is left untouched."""


class InsufficientFunds(LedgerError):
    def __init__(
        self,
        message: str = "Insufficient funds",
        *,
        required: Optional[Decimal] = None,
        available: Optional[Decimal] = None,
        component: Optional[str] = "ledger",
    ) -> None:
        self.required = required
        self.available = available
        details: dict[str, Any] = {}
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        super().__init__(message, component=component, details=details)


class InsufficientHoldings(LedgerError):
    def __init__(
        self,
        message: str = "Insufficient holdings",
        *,
        symbol: Optional[str] = None,
        required: Optional[Decimal] = None,
        available: Optional[Decimal] = None,
        component: Optional[str] = "ledger",
    ) -> None:
        self.symbol = symbol
        self.required = required
        self.available = available
        details: dict[str, Any] = {}
        if symbol:
            details["symbol"] = symbol
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        super().__init__(message, component=component, details=details)


class InvalidOrder(LedgerError):
    """Raised for non-positive amounts/prices or unknown sides."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = "ledger",
    ) -> None:
        self.field = field
        self.value = value
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


# --- Competition ---


class CompetitionError(CoinwiseError):
    """Invalid competition transition."""


class AlreadyCompeting(CompetitionError):
    pass


class NotCompeting(CompetitionError):
    pass


# --- Identity ---


class AuthFailureReason(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    NOT_FOUND = "not_found"
    WEAK_PASSWORD = "weak_password"
    ALREADY_IN_USE = "already_in_use"
    INVALID_EMAIL = "invalid_email"


AUTH_MESSAGES: dict[AuthFailureReason, str] = {
    AuthFailureReason.INVALID_CREDENTIAL: "Wrong email or password.",
    AuthFailureReason.NOT_FOUND: "No account exists for this email.",
    AuthFailureReason.WEAK_PASSWORD: "Password must be at least 6 characters.",
    AuthFailureReason.ALREADY_IN_USE: "This email is already registered.",
    AuthFailureReason.INVALID_EMAIL: "The email address is not valid.",
}


class AuthFailure(CoinwiseError):
    """Identity provider rejected sign-in/sign-up. Surfaced verbatim, never retried."""

    def __init__(
        self,
        reason: AuthFailureReason,
        message: Optional[str] = None,
        *,
        provider_code: Optional[str] = None,
        component: Optional[str] = "identity",
    ) -> None:
        self.reason = reason
        self.provider_code = provider_code
        details: dict[str, Any] = {"reason": reason.value}
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message or AUTH_MESSAGES[reason], component=component, details=details)

    @property
    def user_message(self) -> str:
        return AUTH_MESSAGES[self.reason]


# --- Sync ---


class SyncFailure(CoinwiseError):
    """Raised when a push or pull against the remote store fails."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        attempts: int = 0,
        component: Optional[str] = "sync",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        self.attempts = attempts
        details = details or {}
        if path:
            details["path"] = path
        if attempts:
            details["attempts"] = attempts
        super().__init__(message, component=component, details=details)


# --- Session ---


class SessionError(CoinwiseError):
    """Operation requires an active session."""


# --- Prices ---


class PriceFeedError(CoinwiseError):
    """Price fetch failed or returned malformed data."""


# --- Config ---


class ConfigurationError(CoinwiseError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
