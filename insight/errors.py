"""Typed errors and provider error classification.

Adapters translate whatever their transport reports (HTTP status, provider
error code, exception text) into an :class:`ErrorKind` exactly once, at the
adapter boundary. The retry policy and the dispatcher only ever look at the
kind, never at message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure classes the core reasons about."""

    CONFIGURATION = "configuration"  # Missing key / base URL: reconfigure
    AUTH = "auth"                    # 401 / 403
    BILLING = "billing"              # Payment required / insufficient balance
    TRANSIENT = "transient"          # 5xx, network resets: retry
    OVERLOADED = "overloaded"        # Capacity: retry, then fall back
    QUOTA = "quota"                  # 429 / quota wording: fall back
    PARSE = "parse"                  # Model output not usable
    ABORTED = "aborted"              # Cancelled by the caller
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.OVERLOADED)

    @property
    def triggers_fallback(self) -> bool:
        return self in (ErrorKind.QUOTA, ErrorKind.OVERLOADED)


# ── Exceptions ─────────────────────────────────────────────────────────────


class InsightError(Exception):
    """Base class for every error raised by the core."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ConfigurationError(InsightError):
    kind = ErrorKind.CONFIGURATION


class ProviderError(InsightError):
    """A provider rejected or failed a request."""

    def __init__(self, message: str = "", *, kind: Optional[ErrorKind] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        if kind is not None:
            self.kind = kind


class AuthError(ProviderError):
    kind = ErrorKind.AUTH


class BillingError(ProviderError):
    kind = ErrorKind.BILLING


class TransientProviderError(ProviderError):
    kind = ErrorKind.TRANSIENT


class OverloadedError(TransientProviderError):
    kind = ErrorKind.OVERLOADED


class QuotaError(ProviderError):
    kind = ErrorKind.QUOTA


class ParseError(InsightError):
    kind = ErrorKind.PARSE


class AbortedError(InsightError):
    kind = ErrorKind.ABORTED

    def __init__(self, message: str = "Aborted", **kwargs) -> None:
        super().__init__(message, **kwargs)


_ERROR_CLASSES: dict[ErrorKind, type[ProviderError]] = {
    ErrorKind.AUTH: AuthError,
    ErrorKind.BILLING: BillingError,
    ErrorKind.TRANSIENT: TransientProviderError,
    ErrorKind.OVERLOADED: OverloadedError,
    ErrorKind.QUOTA: QuotaError,
}


# ── Classification ─────────────────────────────────────────────────────────

#: Provider codes meaning "the account cannot pay for this model".
BILLING_CODES: frozenset[str] = frozenset([
    "1113",                 # Zhipu: insufficient balance
    "30001",                # SiliconFlow: account balance insufficient
    "insufficient_quota",   # OpenAI
    "billing_error",        # Anthropic
])
_AUTH_CODES: frozenset[str] = frozenset([
    "authentication_error", "permission_error", "invalid_api_key",
])
_QUOTA_CODES: frozenset[str] = frozenset([
    "rate_limit_error", "rate_limit_exceeded", "1302", "1303",
])
_OVERLOADED_CODES: frozenset[str] = frozenset(["overloaded_error", "1305"])

_BILLING_SIGNALS = ("credit balance is too low", "insufficient balance", "余额不足")
_QUOTA_SIGNALS = ("quota", "rate limit", "rate_limit", "resource_exhausted", "too many requests")
_OVERLOADED_SIGNALS = ("overloaded",)
_TRANSIENT_SIGNALS = (
    "connection reset", "econnreset", "rpc failed", "socket hang up",
    "timed out", "timeout", "503", "service unavailable", "connection error",
)


def classify(
    status_code: Optional[int] = None,
    code: Optional[str] = None,
    message: str = "",
) -> ErrorKind:
    """Map a provider failure onto an :class:`ErrorKind`.

    Status codes and provider codes win over message wording; wording is
    only consulted when neither is conclusive.
    """
    code = str(code).lower() if code is not None else ""
    text = (message or "").lower()

    if status_code in (401, 403) or code in _AUTH_CODES:
        return ErrorKind.AUTH
    if status_code == 402 or code in BILLING_CODES:
        return ErrorKind.BILLING
    if status_code == 429 or code in _QUOTA_CODES:
        return ErrorKind.QUOTA
    if status_code == 529 or code in _OVERLOADED_CODES:
        return ErrorKind.OVERLOADED
    if any(sig in text for sig in _BILLING_SIGNALS):
        return ErrorKind.BILLING
    if any(sig in text for sig in _OVERLOADED_SIGNALS):
        return ErrorKind.OVERLOADED
    if any(sig in text for sig in _QUOTA_SIGNALS):
        return ErrorKind.QUOTA
    if status_code is not None and status_code >= 500:
        return ErrorKind.TRANSIENT
    if any(sig in text for sig in _TRANSIENT_SIGNALS):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def provider_error(
    kind: ErrorKind,
    message: str,
    *,
    status_code: Optional[int] = None,
    code: Optional[str] = None,
) -> ProviderError:
    """Build the exception class matching *kind*."""
    cls = _ERROR_CLASSES.get(kind, ProviderError)
    if cls is ProviderError:
        return ProviderError(message, kind=kind, status_code=status_code, code=code)
    return cls(message, status_code=status_code, code=code)


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the kind of *exc*; anything not raised by the core is UNKNOWN."""
    if isinstance(exc, InsightError):
        return exc.kind
    return ErrorKind.UNKNOWN
