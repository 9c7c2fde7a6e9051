"""
HTTP embedding provider on httpx.

Talks to any REST embedding endpoint. Request and response shapes default to
the OpenAI format and can be replaced with request_builder/response_mapper.

The endpoint URL is checked once at construction: it must parse, use HTTPS
(unless require_https=False) and must not point at a private or loopback
host (unless allow_private=True). Violations raise UpstreamError, which the
pipeline lets through to the caller.
"""

import ipaddress
from typing import Any, Optional

import httpx

from ..exceptions import ProviderError, ProviderTimeoutError, ResponseValidationError, UpstreamError
from ..resilience import DEFAULT_RETRYABLE_STATUSES
from ..schemas import EmbedRequest, EmbedResponse, HttpEmbeddingConfig
from ..logger import get_module_logger
from .base import BaseEmbeddingProvider, validate_embed_response

logger = get_module_logger("providers.http")

DEFAULT_TIMEOUT_SECONDS = 30.0

PRIVATE_HOSTNAMES = {"localhost", "localhost.localdomain"}


def is_private_host(hostname: str) -> bool:
    """True for localhost and private, loopback, link-local or unspecified IP literals."""
    host = hostname.strip("[]").lower()
    if host in PRIVATE_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified


def validate_url(url: str, require_https: bool = True, allow_private: bool = False) -> httpx.URL:
    """
    Parse and vet an endpoint URL.

    Raises:
        UpstreamError: INVALID_URL for unparseable or non-HTTPS URLs,
            BLOCKED for private hosts
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise UpstreamError(f"Invalid URL: {url}", UpstreamError.INVALID_URL, details={"error": str(e)})

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise UpstreamError(f"Invalid URL: {url}", UpstreamError.INVALID_URL)

    if require_https and parsed.scheme != "https":
        raise UpstreamError(f"HTTPS required. Got: {parsed.scheme}", UpstreamError.INVALID_URL)

    if not allow_private and is_private_host(parsed.host):
        raise UpstreamError(
            f"Private/internal addresses not allowed: {parsed.host}",
            UpstreamError.BLOCKED
        )

    return parsed


def _default_request_builder(texts: list[str], model: str) -> dict:
    return {"input": texts, "model": model}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code} {response.reason_phrase}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
        if body.get("message"):
            return body["message"]
    return response.text


class HttpEmbeddingProvider(BaseEmbeddingProvider):
    """Embedding provider for any REST API."""

    name = "http-embedding"

    def __init__(
        self,
        config: HttpEmbeddingConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        name: Optional[str] = None
    ):
        """
        Args:
            config: Endpoint, default model, headers, security switches and hooks
            client: Shared AsyncClient; a short-lived one is created per call otherwise
            timeout_seconds: httpx timeout for calls made without a shared client
            name: Provider name reported in metrics
        """
        self.config = config
        self.base_url = config.base_url
        self.model = config.model
        self.client = client
        self.timeout_seconds = timeout_seconds
        if name:
            self.name = name

        validate_url(self.base_url, require_https=config.require_https, allow_private=config.allow_private)

        self.headers = {"Content-Type": "application/json", **config.headers}
        self.request_builder = config.request_builder or _default_request_builder

    async def embed(self, texts: list[str], request: EmbedRequest) -> EmbedResponse:
        """POST texts to the endpoint and validate the returned vectors."""
        model = request.model or self.model
        body = self.request_builder(texts, model)

        if request.signal is not None and request.signal.is_set():
            raise ProviderTimeoutError("Request cancelled before sending", provider=self.name)

        data = await self._post(body)

        if self.config.response_mapper is not None:
            embeddings = self.config.response_mapper(data)
            usage = data.get("usage") if isinstance(data, dict) else None
            return validate_embed_response({"embeddings": embeddings, "usage": usage}, len(texts))

        return validate_embed_response(data, len(texts))

    async def _post(self, body: Any) -> Any:
        try:
            if self.client is not None:
                response = await self.client.post(self.base_url, json=body, headers=self.headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=False) as client:
                    response = await client.post(self.base_url, json=body, headers=self.headers)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self.name} request timed out: {e}", provider=self.name)
        except httpx.TransportError as e:
            logger.error(f"{self.name} transport error: {e}")
            raise ProviderError(
                f"{self.name} request failed: {e}",
                provider=self.name,
                retryable=True,
                details={"error": str(e)}
            )

        if response.is_error or response.is_redirect:
            message = _error_message(response)
            logger.error(f"{self.name} returned HTTP {response.status_code}: {message}")
            raise ProviderError(
                f"{self.name} embedding failed (HTTP {response.status_code}): {message}",
                provider=self.name,
                status_code=response.status_code,
                retryable=response.status_code in DEFAULT_RETRYABLE_STATUSES,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ResponseValidationError(
                f"Failed to parse {self.name} response as JSON: {e}",
                details={"status_code": response.status_code}
            )


def create_http_embedding(config: HttpEmbeddingConfig, **kwargs) -> HttpEmbeddingProvider:
    """Create a generic HTTP embedding provider."""
    return HttpEmbeddingProvider(config, **kwargs)
