"""
scrape_embed

Turns scraped HTML into clean, embedding-ready text and embedding vectors.
- Segmenter:  DOM → typed content blocks
- Classifier: boilerplate vs. substance, with relevance scores
- Normalizer: cleaned, joined, truncated text with a content hash
- Pipeline:   input selection → PII redaction → cache → chunking →
              resilient provider calls → aggregation

Public API surface:
  Orchestration   — ContentProcessor, normalize_html, generate_embeddings, embed
  Content stages  — Segmenter, parse_blocks, DefaultClassifier, combine_classifiers, normalize_text
  Embedding parts — chunk_text, aggregate_vectors, create_pii_redactor, InMemoryEmbeddingCache
  Resilience      — CircuitBreaker, RateLimiter, Semaphore, with_resilience
  Data models     — ContentBlock, NormalizeOptions, NormalizeResult, EmbeddingOptions, EmbeddingResult
  Error types     — ScrapeEmbedError, ConfigurationError, ProviderError, UpstreamError
"""

# --- Orchestration ---
from .main import ContentProcessor, normalize_html, normalize_html_file
from .pipeline import embed, embed_scraped_data, generate_embeddings

# --- Content stages ---
from .segmenter import Segmenter, parse_blocks
from .classifier import (
    BaseClassifier,
    DefaultClassifier,
    FunctionClassifier,
    combine_classifiers,
    default_block_classifier,
)
from .normalizer import normalize_text

# --- Embedding building blocks ---
from .chunking import chunk_text, estimate_tokens, get_chunking_stats, needs_chunking
from .aggregation import (
    aggregate_vectors,
    cosine_similarity,
    dot_product,
    euclidean_distance,
    normalize_vector,
)
from .redactor import contains_pii, create_pii_redactor, redact_pii
from .cache import (
    BaseEmbeddingCache,
    InMemoryEmbeddingCache,
    NoOpEmbeddingCache,
    create_no_op_cache,
    generate_cache_key,
    get_default_cache,
    reset_default_cache,
)
from .input import preview_input, select_input, validate_input
from .resilience import CircuitBreaker, RateLimiter, Semaphore, with_resilience, with_retry, with_timeout
from .providers import (
    BaseEmbeddingProvider,
    HttpEmbeddingProvider,
    create_embedding_provider,
    create_embedding_provider_from_env,
)

# --- Data models ---
from .schemas import (
    ContentBlock,
    ClassifierContext,
    ClassifierResult,
    NormalizeOptions,
    NormalizeResult,
    ScrapedData,
    EmbeddingOptions,
    EmbeddingResult,
    EmbeddingSkipped,
    EmbeddingSuccessSingle,
    EmbeddingSuccessMultiple,
    ProcessedDocument,
)

# --- Exceptions ---
from .exceptions import (
    ScrapeEmbedError,
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    ResponseValidationError,
    CircuitOpenError,
    UpstreamError,
)

__version__ = "0.3.0"
__all__ = [
    "ContentProcessor",
    "normalize_html",
    "normalize_html_file",
    "generate_embeddings",
    "embed",
    "embed_scraped_data",
    "Segmenter",
    "parse_blocks",
    "BaseClassifier",
    "DefaultClassifier",
    "FunctionClassifier",
    "combine_classifiers",
    "default_block_classifier",
    "normalize_text",
    "chunk_text",
    "estimate_tokens",
    "get_chunking_stats",
    "needs_chunking",
    "aggregate_vectors",
    "cosine_similarity",
    "dot_product",
    "euclidean_distance",
    "normalize_vector",
    "contains_pii",
    "create_pii_redactor",
    "redact_pii",
    "BaseEmbeddingCache",
    "InMemoryEmbeddingCache",
    "NoOpEmbeddingCache",
    "create_no_op_cache",
    "generate_cache_key",
    "get_default_cache",
    "reset_default_cache",
    "preview_input",
    "select_input",
    "validate_input",
    "CircuitBreaker",
    "RateLimiter",
    "Semaphore",
    "with_resilience",
    "with_retry",
    "with_timeout",
    "BaseEmbeddingProvider",
    "HttpEmbeddingProvider",
    "create_embedding_provider",
    "create_embedding_provider_from_env",
    "ContentBlock",
    "ClassifierContext",
    "ClassifierResult",
    "NormalizeOptions",
    "NormalizeResult",
    "ScrapedData",
    "EmbeddingOptions",
    "EmbeddingResult",
    "EmbeddingSkipped",
    "EmbeddingSuccessSingle",
    "EmbeddingSuccessMultiple",
    "ProcessedDocument",
    "ScrapeEmbedError",
    "ConfigurationError",
    "ProviderError",
    "ProviderTimeoutError",
    "ResponseValidationError",
    "CircuitOpenError",
    "UpstreamError",
]
