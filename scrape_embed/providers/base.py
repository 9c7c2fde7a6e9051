"""
Embedding provider contract and shared response validation.

Each provider implements BaseEmbeddingProvider so the pipeline doesn't need
to know which embedding API is behind the call.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Union

from ..exceptions import ConfigurationError, ResponseValidationError
from ..schemas import (
    CustomProviderConfig,
    EmbeddingUsage,
    EmbedRequest,
    EmbedResponse,
    HttpProviderConfig,
)

DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "azure": "text-embedding-ada-002",
    "ollama": "nomic-embed-text",
    "cohere": "embed-english-v3.0",
    "huggingface": "sentence-transformers/all-MiniLM-L6-v2",
}


class BaseEmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name: str = "embedding"

    @abstractmethod
    async def embed(self, texts: list[str], request: EmbedRequest) -> EmbedResponse:
        """
        Embed texts.

        Args:
            texts: Input texts
            request: Model override, output dimensions, cancellation signal

        Returns:
            Exactly one vector per input text, in input order
        """
        pass


def is_embedding_provider(value: Any) -> bool:
    """Duck-typed check: anything with a name and a callable embed()."""
    return hasattr(value, "name") and callable(getattr(value, "embed", None))


def get_provider_cache_key(config: Union[HttpProviderConfig, CustomProviderConfig]) -> str:
    """Stable provider identity for cache keys."""
    if config.type == "http":
        return f"http:{config.config.base_url.rstrip('/')}:{config.config.model}"
    elif config.type == "custom":
        return f"custom:{getattr(config.provider, 'name', type(config.provider).__name__)}"
    else:
        raise ConfigurationError(f"Unknown embedding provider type: {config.type}")


def get_default_model(provider_type: str) -> str:
    return DEFAULT_MODELS.get(provider_type, "default")


def _extract_embeddings(response: Any) -> list:
    if isinstance(response, list):
        return response

    if not isinstance(response, dict):
        raise ResponseValidationError("Invalid embedding response: expected object")

    if isinstance(response.get("embeddings"), list):
        return response["embeddings"]

    if isinstance(response.get("data"), list):
        # OpenAI format: {"data": [{"embedding": [...]}]}
        embeddings = []
        for item in response["data"]:
            if not isinstance(item, dict) or not isinstance(item.get("embedding"), list):
                raise ResponseValidationError("Invalid embedding response: missing embedding in data item")
            embeddings.append(item["embedding"])
        return embeddings

    if isinstance(response.get("embedding"), list):
        return [response["embedding"]]

    raise ResponseValidationError("Invalid embedding response: missing embeddings array")


def validate_embed_response(response: Any, expected_count: int) -> EmbedResponse:
    """
    Normalize and check a raw provider response.

    Accepts {"embeddings": [...]}, OpenAI's {"data": [{"embedding": [...]}]},
    {"embedding": [...]} and a bare list of vectors. Checks the vector count,
    consistent dimensions and finite numeric values; extracts usage if present.

    Raises:
        ResponseValidationError: on any shape problem
    """
    embeddings = _extract_embeddings(response)

    if len(embeddings) != expected_count:
        raise ResponseValidationError(
            f"Embedding count mismatch: expected {expected_count}, got {len(embeddings)}",
            details={"expected": expected_count, "actual": len(embeddings)}
        )

    if embeddings:
        first = embeddings[0]
        if not isinstance(first, list) or not first:
            raise ResponseValidationError("Invalid embedding response: empty first embedding")

        dimensions = len(first)
        for i, embedding in enumerate(embeddings[1:], start=1):
            if not isinstance(embedding, list) or len(embedding) != dimensions:
                actual = len(embedding) if isinstance(embedding, list) else 0
                raise ResponseValidationError(
                    f"Embedding dimension mismatch at index {i}: expected {dimensions}, got {actual}"
                )

        for embedding in embeddings:
            for value in embedding:
                # bool is an int subclass but never a valid component
                if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                    raise ResponseValidationError("Invalid embedding value: expected finite number")

    usage = None
    raw_usage = response.get("usage") if isinstance(response, dict) else None
    if isinstance(raw_usage, dict):
        usage = EmbeddingUsage(
            prompt_tokens=raw_usage.get("prompt_tokens") or 0,
            total_tokens=raw_usage.get("total_tokens") or 0,
        )

    return EmbedResponse(embeddings=[[float(v) for v in e] for e in embeddings], usage=usage)
