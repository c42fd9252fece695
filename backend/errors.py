"""Typed upstream/provider errors.

Every error knows the provider it came from, the HTTP status the proxy
answers with, a short ``error`` label (the frontend switches on it) and a
human-readable message that names the Settings field to fix.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

PRICE_KEY_HINT = "Settings > Data > API Key"
NEWS_KEY_HINT = "Settings > Data > News API Key"
NEWS_URL_HINT = "Settings > Data > News"


def retry_hint(hint: str) -> str:
    """Remediation for transient upstream failures."""
    return f"Try again shortly or check your provider in {hint}"


def settings_hint(hint: str) -> str:
    return f"Check your provider settings in {hint}"


class ProviderError(Exception):
    """Catch-all upstream failure. Base class of the taxonomy."""

    http_status = 500
    error = "Provider error"

    def __init__(
        self,
        provider: str,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        self.provider = provider
        self.message = message or f"{provider} request failed"
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, "provider": self.provider}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider!r}, message={self.message!r})"


class MissingCredential(ProviderError):
    http_status = 400
    error = "API key required"

    def __init__(self, provider: str, display_name: Optional[str] = None, hint: str = PRICE_KEY_HINT):
        name = display_name or provider
        super().__init__(provider, f"{name} requires an API key. Please add your key in {hint}")


class AuthError(ProviderError):
    http_status = 401
    error = "Invalid API key"


class RateLimited(ProviderError):
    error = "Rate limited"


class UpstreamTimeout(ProviderError):
    error = "Timeout"


class ServerError(ProviderError):
    error = "Upstream server error"


class UnreachableHost(ProviderError):
    error = "Unreachable host"


class HostUnreachable(UnreachableHost):
    """A user-supplied host that does not resolve or refuses connections."""

    http_status = 404
    error = "Invalid URL"


class ProviderRejected(ProviderError):
    """Upstream answered 200 with an error document (NewsAPI ``status: error``)."""

    http_status = 400

    def __init__(self, provider: str, message: Optional[str] = None, *, label: str = "Provider error", body: Any = None):
        super().__init__(provider, message, body=body)
        self.error = label


class NoArticles(ProviderError):
    http_status = 404
    error = "No articles"


class NotFound(ProviderError):
    http_status = 404
    error = "Not found"


class InvalidCustomUrl(ProviderError):
    http_status = 400
    error = "Invalid URL"


class UnsupportedCurrency(ProviderError):
    """Upstream rejected the requested quote currency; callers retry in USD."""

    http_status = 400
    error = "Unsupported currency"


class UnknownProvider(ProviderError):
    http_status = 400
    error = "Unknown provider"


class InvalidRequest(ProviderError):
    """Caller input the proxy refuses before touching any provider."""

    http_status = 400
    error = "Invalid request"

    def __init__(self, message: str, provider: str = "proxy"):
        super().__init__(provider, message)


class DataUnavailable(ProviderError):
    """Every attempted source failed; carries the last real error's message."""

    error = "Data unavailable"

    def __init__(self, provider: str, message: Optional[str] = None, *, cause: Optional[ProviderError] = None):
        self.cause = cause
        if message is None and cause is not None:
            message = cause.message
        super().__init__(provider, message)


# Failure classes that may move a request on to the next provider.
FALLBACK_ELIGIBLE = (RateLimited, UpstreamTimeout, ServerError)


def is_fallback_eligible(exc: BaseException) -> bool:
    return isinstance(exc, FALLBACK_ELIGIBLE)


__all__ = [
    "ProviderError", "MissingCredential", "AuthError", "RateLimited",
    "UpstreamTimeout", "ServerError", "UnreachableHost", "HostUnreachable", "ProviderRejected", "NoArticles",
    "NotFound", "InvalidCustomUrl", "UnsupportedCurrency", "UnknownProvider", "InvalidRequest",
    "DataUnavailable", "FALLBACK_ELIGIBLE", "is_fallback_eligible",
    "PRICE_KEY_HINT", "NEWS_KEY_HINT", "NEWS_URL_HINT", "retry_hint", "settings_hint",
]
