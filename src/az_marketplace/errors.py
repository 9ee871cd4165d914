"""Error taxonomy for Azure Resource Manager calls.

Every failure that crosses the API-client layer is turned into exactly one
:class:`MarketplaceError` subclass.  Each kind carries a stable ``code``, a
``user_message`` suitable for display and a ``retryable`` flag consulted by
the retry policy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import requests
from azure.core.exceptions import ClientAuthenticationError

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "ErrorReport",
    "MarketplaceError",
    "NetworkError",
    "RateLimitError",
    "ServerError",
    "ServiceUnavailableError",
    "ValidationError",
    "classify",
    "classify_http_status",
    "create_error_report",
    "get_user_friendly_message",
    "is_retryable_error",
]

_GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again."


class MarketplaceError(Exception):
    """Base class for all classified errors."""

    code: str = "UNKNOWN_ERROR"
    user_message: str = _GENERIC_USER_MESSAGE
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.original_error = original_error


class NetworkError(MarketplaceError):
    code = "NETWORK_ERROR"
    user_message = (
        "Network connection failed. Please check your internet connection and try again."
    )
    retryable = True


class AuthenticationError(MarketplaceError):
    code = "AUTHENTICATION_ERROR"
    user_message = "Authentication failed. Please sign in again."
    retryable = False


class AuthorizationError(MarketplaceError):
    code = "AUTHORIZATION_ERROR"
    user_message = (
        "You don't have permission to access this resource. "
        "Please contact your administrator."
    )
    retryable = False


class RateLimitError(MarketplaceError):
    """Throttled by ARM.  *retry_after* is the server hint in seconds."""

    code = "RATE_LIMIT_ERROR"
    user_message = "Too many requests. Please wait a moment and try again."
    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        status_code: int | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message, status_code, original_error)
        self.retry_after = retry_after


class ServerError(MarketplaceError):
    code = "SERVER_ERROR"
    user_message = "Server is temporarily unavailable. Please try again in a few moments."
    retryable = True


class ValidationError(MarketplaceError):
    """Bad input or a malformed API response.  *field* names the culprit."""

    code = "VALIDATION_ERROR"
    user_message = "Invalid data provided. Please check your input and try again."
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: BaseException | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, status_code, original_error)
        self.field = field


class ServiceUnavailableError(MarketplaceError):
    code = "SERVICE_UNAVAILABLE"
    user_message = "Service is temporarily unavailable. Please try again later."
    retryable = True


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _parse_retry_after(value: object) -> float | None:
    """Return the Retry-After header as seconds, ignoring HTTP-date forms."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def classify_http_status(
    status: int,
    body: str | None = None,
    retry_after: object = None,
) -> MarketplaceError:
    """Map an HTTP error status (and optional body) to a taxonomy error."""
    detail = body or f"HTTP {status}"

    if status == 400:
        return ValidationError(f"Bad request: {detail}", status)
    if status == 401:
        return AuthenticationError(f"Authentication failed: {detail}", status)
    if status == 403:
        return AuthorizationError(f"Access forbidden: {detail}", status)
    if status == 404:
        return ValidationError(f"Resource not found: {detail}", status)
    if status == 429:
        return RateLimitError(
            f"Rate limit exceeded: {detail}",
            retry_after=_parse_retry_after(retry_after),
            status_code=status,
        )
    if status == 500:
        return ServerError(f"Internal server error: {detail}", status)
    if status == 502:
        return ServerError(f"Bad gateway: {detail}", status)
    if status == 503:
        return ServiceUnavailableError(f"Service unavailable: {detail}", status)
    if status == 504:
        return ServerError(f"Gateway timeout: {detail}", status)
    if status >= 500:
        return ServerError(f"Server error {status}: {detail}", status)
    if status >= 400:
        return ValidationError(f"Client error {status}: {detail}", status)
    return ServerError(f"Unexpected status {status}: {detail}", status)


def classify(error: object) -> MarketplaceError:
    """Return the taxonomy error for any raised exception or thrown value.

    Taxonomy errors pass through untouched.  Known library exceptions are
    mapped by type, anything else by keywords in its message.  Unknown
    inputs default to :class:`ServerError`; this function never raises.
    """
    if isinstance(error, MarketplaceError):
        return error

    if isinstance(error, requests.HTTPError) and error.response is not None:
        resp = error.response
        classified = classify_http_status(
            resp.status_code, str(error), resp.headers.get("Retry-After")
        )
        classified.original_error = error
        return classified

    if isinstance(error, requests.Timeout):
        return NetworkError("Request timed out", original_error=error)

    if isinstance(error, requests.ConnectionError):
        return NetworkError("Network request failed", original_error=error)

    if isinstance(error, ClientAuthenticationError):
        return AuthenticationError(f"Authentication failed: {error}", 401, error)

    if isinstance(error, BaseException):
        message = str(error).lower()

        if "network" in message or "connection" in message:
            return NetworkError("Network connection failed", original_error=error)
        if "timeout" in message or "timed out" in message:
            return NetworkError("Request timed out", original_error=error)
        if "unauthorized" in message or "401" in message:
            return AuthenticationError("Authentication failed", 401, error)
        if "forbidden" in message or "403" in message:
            return AuthorizationError("Access forbidden", 403, error)
        if "rate limit" in message or "429" in message:
            return RateLimitError("Rate limit exceeded", status_code=429, original_error=error)
        if "server error" in message or "500" in message:
            return ServerError("Internal server error", 500, error)
        if "unavailable" in message or "503" in message:
            return ServiceUnavailableError("Service unavailable", 503, error)

        return ServerError(f"Unknown error: {error}", original_error=error)

    return ServerError(f"Unknown error: {error!r}")


# ---------------------------------------------------------------------------
# Helpers for callers and the UI layer
# ---------------------------------------------------------------------------


def is_retryable_error(error: object) -> bool:
    return isinstance(error, MarketplaceError) and error.retryable


def get_user_friendly_message(error: object) -> str:
    if isinstance(error, MarketplaceError):
        return error.user_message
    return _GENERIC_USER_MESSAGE


@dataclass(frozen=True)
class ErrorReport:
    code: str
    message: str
    user_message: str
    retryable: bool
    timestamp: float
    status_code: int | None = None
    url: str | None = None


def create_error_report(error: object, url: str | None = None) -> ErrorReport:
    """Build a serialisable summary of *error* for logs and API responses."""
    classified = classify(error)
    return ErrorReport(
        code=classified.code,
        message=classified.message,
        user_message=classified.user_message,
        retryable=classified.retryable,
        timestamp=time.time(),
        status_code=classified.status_code,
        url=url,
    )
