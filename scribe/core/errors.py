# scribe/core/errors.py
"""
Error taxonomy for the completion core.

Every failure the orchestration layer can observe maps to exactly one of
these classes. ``retryable`` tells the orchestrator whether another
attempt may succeed; user-facing text is produced by
``brand_error_message`` and never carries vendor names or raw payloads.
"""

import re
from typing import Any, Dict, Optional


class ScribeError(Exception):
    """Base class for all errors raised by the completion core."""

    retryable: bool = False
    error_code: str = "SCRIBE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


class ConfigurationError(ScribeError):
    """Missing or malformed credentials. Fatal, never retried."""

    error_code = "CONFIGURATION_ERROR"


class ProviderHTTPError(ScribeError):
    """Upstream answered with a non-success status."""

    error_code = "PROVIDER_HTTP_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, provider: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.provider = provider


class ProviderOverloadedError(ProviderHTTPError):
    """HTTP 429 / 529 from the provider."""

    error_code = "PROVIDER_OVERLOADED"
    retryable = True


class ModelNotFoundError(ProviderHTTPError):
    """The requested model is not available for this key (HTTP 404)."""

    error_code = "MODEL_NOT_FOUND"
    retryable = True


class ProviderNetworkError(ScribeError):
    """Connection, DNS or timeout failure before a response was read."""

    error_code = "PROVIDER_NETWORK_ERROR"
    retryable = True


class WireFormatError(ScribeError):
    """A provider frame could not be interpreted."""

    error_code = "WIRE_FORMAT_ERROR"


class EmptyResultError(ScribeError):
    """The stream finished cleanly without producing any content."""

    error_code = "EMPTY_RESULT"
    retryable = True


class ProviderStreamError(ScribeError):
    """The provider reported an error inside an otherwise healthy stream."""

    error_code = "PROVIDER_STREAM_ERROR"


class ProvidersExhaustedError(ScribeError):
    """Every route in the failover plan failed."""

    error_code = "PROVIDERS_EXHAUSTED"


class QuotaExceededError(ScribeError):
    """The account cannot afford the requested amount."""

    error_code = "QUOTA_EXCEEDED"


class BatchError(ScribeError):
    error_code = "BATCH_ERROR"


class BatchNotFoundError(BatchError):
    error_code = "BATCH_NOT_FOUND"


class RequestCancelled(Exception):
    """Raised when the caller cancels a request. Not a failure."""


BRAND = "ScribeAI"

_VENDOR_NAMES = re.compile(r"\b(gemini|anthropic|claude|deepseek|openai|google)\b", re.IGNORECASE)
_QUOTA_HINTS = ("quota", "resource_exhausted", "usage limit")
_OVERLOAD_HINTS = ("overload", "rate limit", "capacity", "high demand", "429", "529", "503", "502")
_NETWORK_HINTS = ("failed to fetch", "connection", "network", "timed out", "timeout")


def brand_error_message(error: Exception) -> str:
    """Convert any exception into a user-facing message."""
    if isinstance(error, QuotaExceededError):
        return error.message
    if isinstance(error, ConfigurationError):
        return f"{BRAND} is not configured correctly. Please contact support."
    if isinstance(error, ProviderOverloadedError):
        return f"{BRAND} is experiencing high demand. Please try again in a moment."
    if isinstance(error, ProviderNetworkError):
        return f"Unable to connect to {BRAND} services. Please check your internet connection and try again."
    if isinstance(error, BatchError):
        # batch reasons are written for users
        cleaned = _VENDOR_NAMES.sub(BRAND, error.message)
        return cleaned[:200] + "..." if len(cleaned) > 200 else cleaned

    error_str = str(error)
    lowered = error_str.lower()
    if any(hint in lowered for hint in _QUOTA_HINTS):
        return f"{BRAND} usage limit has been reached for today. Please try again tomorrow or upgrade your plan."
    if any(hint in lowered for hint in _OVERLOAD_HINTS):
        return f"{BRAND} is experiencing high demand. Please try again in a moment."
    if any(hint in lowered for hint in _NETWORK_HINTS):
        return f"Unable to connect to {BRAND} services. Please check your internet connection and try again."
    # provider-originated text stays in the logs
    return f"{BRAND} could not complete this request. Please try again."
