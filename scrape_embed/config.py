"""
Environment-driven provider settings.

Resolution order: explicit argument > environment variable > default.
A .env file in the working directory (or the given path) is loaded first
without overriding variables that are already set.
"""

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from .exceptions import ConfigurationError
from .logger import get_module_logger

logger = get_module_logger("config")

ProviderName = Literal["openai", "azure", "ollama", "huggingface", "cohere", "http"]

DEFAULT_PROVIDER = "openai"
DEFAULT_AZURE_API_VERSION = "2023-05-15"


class ProviderSettings(BaseModel):
    """Everything needed to build an embedding provider from the environment."""

    provider: ProviderName = DEFAULT_PROVIDER
    model: Optional[str] = None
    base_url: Optional[str] = None          # http/ollama endpoint, OpenAI-compatible base URL

    openai_api_key: Optional[str] = None
    azure_api_key: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_api_version: str = DEFAULT_AZURE_API_VERSION
    cohere_api_key: Optional[str] = None
    huggingface_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "ProviderSettings":
        """
        Read settings from the environment.

        Args:
            env_file: Optional .env path (default: search from the working directory)
            **overrides: Explicit values, winning over the environment

        Raises:
            ConfigurationError: unknown EMBEDDING_PROVIDER or invalid values
        """
        load_dotenv(env_file)

        values = {
            "provider": os.getenv("EMBEDDING_PROVIDER", DEFAULT_PROVIDER).lower(),
            "model": os.getenv("EMBEDDING_MODEL"),
            "base_url": os.getenv("EMBEDDING_BASE_URL"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "azure_api_key": os.getenv("AZURE_OPENAI_API_KEY"),
            "azure_endpoint": os.getenv("AZURE_OPENAI_ENDPOINT"),
            "azure_api_version": os.getenv("AZURE_OPENAI_API_VERSION", DEFAULT_AZURE_API_VERSION),
            "cohere_api_key": os.getenv("COHERE_API_KEY"),
            "huggingface_api_key": os.getenv("HF_TOKEN") or os.getenv("HUGGINGFACE_API_KEY"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            settings = cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid embedding provider settings: {e}")

        logger.info(f"Embedding provider from environment: {settings.provider}")
        return settings
