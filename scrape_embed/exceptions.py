"""
Custom exceptions for scrape_embed.

Error philosophy:
  - Insufficient input (no text, too short, zero chunks) is NOT an exception:
    the embedding pipeline returns a `skipped` result instead.
  - ConfigurationError      → FAIL HARD: raised immediately, never retried.
  - ProviderError           → RETRY when `retryable` (network, timeout, 429/5xx).
  - ResponseValidationError → TERMINAL: provider answered with a bad shape.
  - UpstreamError           → PROPAGATES through the pipeline unchanged.

Everything raised inside generate_embeddings() except UpstreamError is
converted into a skipped result carrying the message.
"""

from typing import Optional


class ScrapeEmbedError(Exception):
    """Base exception for all scrape_embed errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- FAIL HARD: programming / configuration mistakes ---

class ConfigurationError(ScrapeEmbedError, ValueError):
    """
    Raised for invalid configuration or programming errors.

    Examples: unknown aggregation strategy, vector dimension mismatch,
    malformed custom redaction pattern, missing API key.
    """
    pass


# --- Provider failures ---

class ProviderError(ScrapeEmbedError):
    """Raised when an embedding provider call fails."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class ProviderTimeoutError(ProviderError):
    """Raised when the timeout wrapper cancels an in-flight provider call."""

    def __init__(self, message: str, provider: str = "unknown", details: Optional[dict] = None):
        super().__init__(message, provider, retryable=True, details=details)


class ResponseValidationError(ScrapeEmbedError):
    """
    Raised when a provider response cannot be parsed or has the wrong shape.

    Terminal: the same request would produce the same bad response.
    """
    pass


class CircuitOpenError(ScrapeEmbedError):
    """Raised when a circuit breaker rejects a call."""
    pass


# --- PROPAGATE: allow-listed upstream validation errors ---

class UpstreamError(ScrapeEmbedError):
    """
    Raised for request-level problems the caller must see unchanged.

    `code` is one of UPSTREAM_CODES.
    """

    INVALID_URL = "INVALID_URL"
    BLOCKED = "BLOCKED"
    UPSTREAM_CODES = (INVALID_URL, BLOCKED)

    def __init__(self, message: str, code: str, details: Optional[dict] = None):
        if code not in self.UPSTREAM_CODES:
            raise ConfigurationError(f"Unknown upstream error code: {code}")
        super().__init__(message, details)
        self.code = code

    def to_response(self) -> dict:
        return {
            "error": "UpstreamError",
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
