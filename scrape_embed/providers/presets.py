"""
Ready-made embedding providers for common APIs.

OpenAI goes through the official SDK (AsyncOpenAI); the others are
HttpEmbeddingProvider instances with the right URL, headers and body shape.
"""

import os
from typing import Optional

from ..exceptions import ConfigurationError, ProviderError, ResponseValidationError
from ..resilience import is_retryable_error
from ..schemas import EmbeddingUsage, EmbedRequest, EmbedResponse, HttpEmbeddingConfig
from ..logger import get_module_logger
from .base import BaseEmbeddingProvider, get_default_model, validate_embed_response
from .http import HttpEmbeddingProvider

logger = get_module_logger("providers.presets")

OLLAMA_DEFAULT_URL = "http://localhost:11434/api/embeddings"
HUGGINGFACE_URL = "https://api-inference.huggingface.co/models/{model}"
COHERE_URL = "https://api.cohere.ai/v1/embed"


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embeddings API client."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = get_default_model("openai"),
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        client=None
    ):
        self.model = model

        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ConfigurationError(
                "OpenAI API key required. Set OPENAI_API_KEY env var or pass api_key."
            )

        # Lazy import: only import the openai SDK when this provider is actually used
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ConfigurationError("openai package not installed. Run: pip install openai")

        self.client = AsyncOpenAI(api_key=self.api_key, base_url=base_url, organization=organization)

    async def embed(self, texts: list[str], request: EmbedRequest) -> EmbedResponse:
        kwargs = {"model": request.model or self.model, "input": texts}
        if request.dimensions:
            kwargs["dimensions"] = request.dimensions

        try:
            response = await self.client.embeddings.create(**kwargs)
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise ProviderError(
                f"OpenAI embedding call failed: {e}",
                provider=self.name,
                status_code=getattr(e, "status_code", None),
                retryable=is_retryable_error(e),
                details={"error": str(e)}
            )

        data = getattr(response, "data", None)
        if data is None:
            raise ResponseValidationError("Invalid OpenAI response: missing data")

        # The API may return items out of order; `index` is authoritative
        items = sorted(data, key=lambda item: getattr(item, "index", 0))
        result = validate_embed_response({"embeddings": [list(item.embedding) for item in items]}, len(texts))

        usage = getattr(response, "usage", None)
        if usage is not None:
            result.usage = EmbeddingUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            )
        return result


def create_openai_embedding(
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    organization: Optional[str] = None,
    client=None
) -> OpenAIEmbeddingProvider:
    """
    Create an OpenAI embedding provider.

    Usage:
        provider = create_openai_embedding(api_key="sk-...")
        response = await provider.embed(["Hello"], EmbedRequest())
    """
    return OpenAIEmbeddingProvider(
        api_key=api_key,
        model=model or get_default_model("openai"),
        base_url=base_url,
        organization=organization,
        client=client,
    )


def create_azure_embedding(
    endpoint: str,
    deployment_name: str,
    api_version: str,
    api_key: Optional[str] = None,
    **kwargs
) -> HttpEmbeddingProvider:
    """Azure OpenAI deployment; the deployment name doubles as the model."""
    api_key = api_key or os.getenv("AZURE_OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "Azure OpenAI API key required. Set AZURE_OPENAI_API_KEY env var or pass api_key."
        )

    base_url = (
        f"{endpoint.rstrip('/')}/openai/deployments/{deployment_name}"
        f"/embeddings?api-version={api_version}"
    )
    return HttpEmbeddingProvider(
        HttpEmbeddingConfig(
            base_url=base_url,
            model=deployment_name,
            headers={"api-key": api_key},
            request_builder=lambda texts, model: {"input": texts},
        ),
        name="azure",
        **kwargs
    )


def _ollama_request(texts: list[str], model: str) -> dict:
    # /api/embeddings takes a single prompt; the pipeline sends one chunk per call
    if len(texts) != 1:
        raise ConfigurationError(f"Ollama embeds one text per request, got {len(texts)}")
    return {"model": model, "prompt": texts[0]}


def create_ollama_embedding(
    base_url: str = OLLAMA_DEFAULT_URL,
    model: Optional[str] = None,
    **kwargs
) -> HttpEmbeddingProvider:
    """
    Local Ollama server.

    Ollama's /api/embeddings endpoint handles one text per request, so every
    chunk is a separate HTTP call. Plain HTTP and localhost are allowed.
    """
    return HttpEmbeddingProvider(
        HttpEmbeddingConfig(
            base_url=base_url,
            model=model or get_default_model("ollama"),
            require_https=False,
            allow_private=True,
            request_builder=_ollama_request,
            response_mapper=lambda response: [response["embedding"]],
        ),
        name="ollama",
        **kwargs
    )


def _huggingface_mapper(response) -> list:
    if isinstance(response, list) and response:
        # A single input comes back as one flat vector
        if isinstance(response[0], (int, float)):
            return [response]
        return response
    raise ResponseValidationError("Unexpected HuggingFace response format")


def create_huggingface_embedding(
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    **kwargs
) -> HttpEmbeddingProvider:
    """HuggingFace Inference API (feature extraction). The token is optional."""
    model = model or get_default_model("huggingface")
    api_key = api_key or os.getenv("HF_TOKEN") or os.getenv("HUGGINGFACE_API_KEY")

    headers = {}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    return HttpEmbeddingProvider(
        HttpEmbeddingConfig(
            base_url=HUGGINGFACE_URL.format(model=model),
            model=model,
            headers=headers,
            request_builder=lambda texts, model: {"inputs": texts},
            response_mapper=_huggingface_mapper,
        ),
        name="huggingface",
        **kwargs
    )


def create_cohere_embedding(
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs
) -> HttpEmbeddingProvider:
    api_key = api_key or os.getenv("COHERE_API_KEY")
    if not api_key:
        raise ConfigurationError("Cohere API key required. Set COHERE_API_KEY env var or pass api_key.")

    return HttpEmbeddingProvider(
        HttpEmbeddingConfig(
            base_url=COHERE_URL,
            model=model or get_default_model("cohere"),
            headers={"Authorization": f"Bearer {api_key}"},
            request_builder=lambda texts, model: {
                "texts": texts,
                "model": model,
                "input_type": "search_document",
            },
            response_mapper=lambda response: response["embeddings"],
        ),
        name="cohere",
        **kwargs
    )
