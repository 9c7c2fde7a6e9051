"""
Embedding provider adapters.

create_embedding_provider() turns an EmbeddingOptions provider config into a
provider object; create_embedding_provider_from_env() picks a preset from
EMBEDDING_PROVIDER and friends.

Usage:
    # Using environment variables (EMBEDDING_PROVIDER, OPENAI_API_KEY, ...)
    provider = create_embedding_provider_from_env()

    # Explicit preset
    provider = create_ollama_embedding(model="nomic-embed-text")
"""

from typing import Optional, Union

from pydantic import TypeAdapter

from ..config import ProviderSettings
from ..exceptions import ConfigurationError
from ..schemas import CustomProviderConfig, HttpEmbeddingConfig, HttpProviderConfig, ProviderConfig
from ..logger import get_module_logger
from .base import (
    BaseEmbeddingProvider,
    get_default_model,
    get_provider_cache_key,
    is_embedding_provider,
    validate_embed_response,
)
from .http import HttpEmbeddingProvider, create_http_embedding, is_private_host, validate_url
from .presets import (
    OpenAIEmbeddingProvider,
    create_azure_embedding,
    create_cohere_embedding,
    create_huggingface_embedding,
    create_ollama_embedding,
    create_openai_embedding,
)

logger = get_module_logger("providers")

_provider_config_adapter = TypeAdapter(ProviderConfig)


def create_embedding_provider(config: Union[HttpProviderConfig, CustomProviderConfig, dict]):
    """
    Create an embedding provider from configuration.

    Args:
        config: {"type": "http", "config": {...}} or {"type": "custom", "provider": obj}

    Returns:
        Provider with `name` and async `embed(texts, request)`
    """
    if isinstance(config, dict):
        config = _provider_config_adapter.validate_python(config)

    if config.type == "http":
        return create_http_embedding(config.config)
    elif config.type == "custom":
        if not is_embedding_provider(config.provider):
            raise ConfigurationError(
                f"Custom provider must have `name` and an async `embed` method, got {type(config.provider).__name__}"
            )
        return config.provider
    else:
        raise ConfigurationError(f"Unknown embedding provider type: {config.type}")


def create_embedding_provider_from_env(
    settings: Optional[ProviderSettings] = None,
    env_file: Optional[str] = None
):
    """
    Build the provider named by EMBEDDING_PROVIDER.

    Args:
        settings: Pre-built settings (defaults to ProviderSettings.from_env())
        env_file: Optional .env path passed to ProviderSettings.from_env()
    """
    settings = settings or ProviderSettings.from_env(env_file)

    logger.info(f"Creating embedding provider: {settings.provider}")

    # Each preset handles its own default model and API key checks
    if settings.provider == "openai":
        return create_openai_embedding(
            api_key=settings.openai_api_key,
            model=settings.model,
            base_url=settings.base_url,
        )

    elif settings.provider == "azure":
        if not settings.azure_endpoint:
            raise ConfigurationError("AZURE_OPENAI_ENDPOINT is required for the azure provider")
        return create_azure_embedding(
            endpoint=settings.azure_endpoint,
            deployment_name=settings.model or get_default_model("azure"),
            api_version=settings.azure_api_version,
            api_key=settings.azure_api_key,
        )

    elif settings.provider == "ollama":
        kwargs = {"model": settings.model}
        if settings.base_url:
            kwargs["base_url"] = settings.base_url
        return create_ollama_embedding(**kwargs)

    elif settings.provider == "huggingface":
        return create_huggingface_embedding(model=settings.model, api_key=settings.huggingface_api_key)

    elif settings.provider == "cohere":
        return create_cohere_embedding(api_key=settings.cohere_api_key, model=settings.model)

    elif settings.provider == "http":
        if not settings.base_url or not settings.model:
            raise ConfigurationError("EMBEDDING_BASE_URL and EMBEDDING_MODEL are required for the http provider")
        return create_http_embedding(HttpEmbeddingConfig(base_url=settings.base_url, model=settings.model))

    else:
        raise ConfigurationError(f"Unsupported embedding provider: {settings.provider}")


__all__ = [
    "BaseEmbeddingProvider",
    "HttpEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "create_embedding_provider",
    "create_embedding_provider_from_env",
    "create_http_embedding",
    "create_openai_embedding",
    "create_azure_embedding",
    "create_ollama_embedding",
    "create_huggingface_embedding",
    "create_cohere_embedding",
    "get_default_model",
    "get_provider_cache_key",
    "is_embedding_provider",
    "is_private_host",
    "validate_embed_response",
    "validate_url",
]
