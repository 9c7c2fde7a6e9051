"""
Pydantic schemas defining the contracts between modules.

Content side:
  Segmenter → ContentBlock list → Classifier (ClassifierResult) → Normalizer
  → NormalizeResult (text + NormalizationMeta)

Embedding side:
  EmbeddingOptions + ScrapedData → Pipeline → EmbeddingResult
  (EmbeddingSuccessSingle | EmbeddingSuccessMultiple | EmbeddingSkipped)

Option models are the whole configuration surface of the core; run_normalizer.py
only maps its flags onto them. Durations are configured in seconds and
reported in milliseconds.
"""

import re
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# --- Content blocks ---

BlockType = Literal[
    "paragraph", "heading", "list", "quote", "table", "code",
    "media", "nav", "footer", "promo", "legal", "unknown",
]

TruncateStrategy = Literal["sentence", "word", "char"]


class BlockContext(BaseModel):
    """Position of a block in the DOM it was taken from."""
    model_config = ConfigDict(frozen=True)

    parent_tags: tuple[str, ...] = ()   # Ancestor chain, outermost first: ("html", "body", "main")
    depth: int = 0


class ContentBlock(BaseModel):
    """
    A classified unit of document text.

    Emitted once per DOM walk in document order and never mutated afterwards.
    `text` is always non-empty after trimming.
    """
    model_config = ConfigDict(frozen=True)

    type: BlockType
    text: str
    level: Optional[int] = Field(default=None, ge=1, le=6)   # Only for headings
    html: Optional[str] = None                                # Inner HTML, only with include_html
    attrs: dict[str, str] = Field(default_factory=dict)       # Media: alt/src/poster
    context: BlockContext = Field(default_factory=BlockContext)


class ScoredBlock(ContentBlock):
    """A block that survived classification, with the classifier's verdict."""
    score: Optional[float] = None
    label: Optional[str] = None


# --- Classifier contract ---

class ClassifierContext(BaseModel):
    """Positional context handed to every classifier call."""
    model_config = ConfigDict(frozen=True)

    index: int                          # Zero-based position in the block list
    total_blocks: int
    url: Optional[str] = None           # Source URL, for domain-specific rules
    parent_tags: tuple[str, ...] = ()
    depth: int = 0


class ClassifierResult(BaseModel):
    """Accept/reject verdict for one block."""
    model_config = ConfigDict(frozen=True)

    accept: bool
    label: str = "content"
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# --- Normalizer contract ---

class NormalizeOptions(BaseModel):
    """Options for normalize_text() and the document orchestrator."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    mode: Literal["summary", "full"] = "full"     # summary = rank accepted blocks by score
    max_chars: Optional[int] = Field(default=None, gt=0)
    min_chars: Optional[int] = Field(default=None, ge=0)
    max_blocks: Optional[int] = Field(default=None, gt=0)
    truncate: TruncateStrategy = "sentence"
    drop_selectors: list[str] = Field(default_factory=list)   # Added to the segmenter defaults
    remove_boilerplate: bool = True
    decode_entities: bool = True
    normalize_unicode: bool = True
    preserve_line_breaks: bool = True
    strip_links: bool = True
    include_html: bool = False
    language_hint: Optional[str] = None
    block_classifier: Optional[Any] = None       # BaseClassifier or callable(block, context)
    debug: bool = False                          # Return the scored blocks as well


class NormalizationMeta(BaseModel):
    """Size accounting and bookkeeping for one normalization run."""
    char_count: int
    token_estimate: int                 # ceil(char_count / 4)
    language: str = "unknown"
    boilerplate_removed: bool
    classifier_used: bool
    hash: str                           # SHA-256 hex, first 32 chars; "" for empty results
    extraction_time_ms: float
    blocks_total: int                   # Before the max_blocks cap and classification
    blocks_accepted: int
    truncated: bool


class NormalizeResult(BaseModel):
    """Output of normalize_text()."""
    text: str
    meta: NormalizationMeta
    blocks: Optional[list[ScoredBlock]] = None   # Only with debug=True


# --- Chunking ---

class TextChunk(BaseModel):
    """
    A slice of the whitespace-collapsed input.

    start_index/end_index index into that collapsed text, not into the chunk list.
    """
    model_config = ConfigDict(frozen=True)

    text: str
    start_index: int
    end_index: int
    tokens: int


class ChunkingStats(BaseModel):
    input_length: int
    estimated_tokens: int
    estimated_chunks: int
    will_truncate: bool


# --- Aggregation ---

AggregationStrategy = Literal["average", "max", "first", "all"]


class SingleVector(BaseModel):
    type: Literal["single"] = "single"
    vector: list[float]
    dimensions: int


class MultipleVectors(BaseModel):
    type: Literal["multiple"] = "multiple"
    vectors: list[list[float]]
    dimensions: int


AggregationResult = Union[SingleVector, MultipleVectors]


# --- Redaction ---

class RedactionResult(BaseModel):
    text: str
    redacted: bool
    redaction_count: int
    redactions_by_type: dict[str, int] = Field(default_factory=dict)


# --- Scraped document (embedding input) ---

class ScrapedData(BaseModel):
    """
    The subset of a scraped page the embedding pipeline can draw input from.

    Unknown fields are kept so custom transforms can read them.
    """
    model_config = ConfigDict(extra="allow")

    url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    excerpt: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None          # Markdown
    text_content: Optional[str] = None     # Plain text


class InputValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    text: Optional[str] = None
    word_count: int = 0
    char_count: int = 0


# --- Provider wire contract ---

class EmbeddingUsage(BaseModel):
    prompt_tokens: int = 0
    total_tokens: int = 0


class EmbedRequest(BaseModel):
    """Per-call request options handed to a provider."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: Optional[str] = None          # None = provider default
    dimensions: Optional[int] = None
    signal: Optional[Any] = None         # asyncio.Event set when the call is cancelled


class EmbedResponse(BaseModel):
    embeddings: list[list[float]]
    usage: Optional[EmbeddingUsage] = None


# --- Embedding configuration ---

InputType = Literal["text_content", "title_summary", "custom"]


class InputConfig(BaseModel):
    """Which part of the scraped data becomes embedding input."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: InputType = "text_content"
    transform: Optional[Callable[[ScrapedData], str]] = None   # Wins over `type`
    custom_text: Optional[str] = None                          # Used with type="custom"


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    size: int = Field(default=500, gt=0)                 # Target chunk size in tokens
    overlap: int = Field(default=50, ge=0)               # Clamped below size at chunking time
    tokenizer: Union[Literal["heuristic", "tiktoken"], Callable[[str], int]] = "heuristic"
    max_input_length: int = Field(default=100_000, gt=0)  # Characters; longer input is cut


class OutputConfig(BaseModel):
    aggregation: AggregationStrategy = "average"
    dimensions: Optional[int] = Field(default=None, gt=0)


class PiiRedactionConfig(BaseModel):
    """Detectors to enable. Custom patterns may be strings or compiled regexes."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    email: bool = False
    phone: bool = False
    credit_card: bool = False
    ssn: bool = False
    ip_address: bool = False
    custom_patterns: list[Any] = Field(default_factory=list)

    @field_validator("custom_patterns", mode="before")
    @classmethod
    def _compile_patterns(cls, value):
        if value is None:
            return []
        compiled = []
        for pattern in value:
            if isinstance(pattern, re.Pattern):
                compiled.append(pattern)
            elif isinstance(pattern, str):
                try:
                    compiled.append(re.compile(pattern))
                except re.error as e:
                    raise ValueError(f"Invalid custom PII pattern {pattern!r}: {e}")
            else:
                raise ValueError(f"Custom PII pattern must be str or re.Pattern, got {type(pattern).__name__}")
        return compiled


class SafetyConfig(BaseModel):
    pii_redaction: Optional[PiiRedactionConfig] = None
    min_text_length: Optional[int] = Field(default=None, ge=0)   # Default 10 at validation time
    max_tokens: Optional[int] = Field(default=None, gt=0)        # Caps the chunk size
    allow_sensitive_callbacks: bool = False                      # on_chunk sees un-redacted text


class CacheConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: Optional[Any] = None              # BaseEmbeddingCache; None = process-wide default
    ttl_seconds: Optional[float] = Field(default=None, gt=0)   # None = the store's default
    cache_key_salt: Optional[str] = None


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retryable_statuses: tuple[int, ...] = (408, 429, 500, 502, 503, 504)


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_seconds: float = Field(default=30.0, ge=0)


class RateLimitConfig(BaseModel):
    requests_per_minute: float = Field(default=60, gt=0)


class ResilienceState(BaseModel):
    """
    Explicitly shared primitives, e.g. one breaker per provider across a crawl.

    Anything with the same methods as CircuitBreaker / RateLimiter / Semaphore
    can be injected.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    circuit_breaker: Optional[Any] = None
    rate_limiter: Optional[Any] = None
    semaphore: Optional[Any] = None


class ResilienceConfig(BaseModel):
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: Optional[CircuitBreakerConfig] = None
    rate_limit: Optional[RateLimitConfig] = None
    state: Optional[ResilienceState] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    concurrency: int = Field(default=1, ge=1)


class HttpEmbeddingConfig(BaseModel):
    """Generic REST embedding endpoint."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    base_url: str
    model: str
    headers: dict[str, str] = Field(default_factory=dict)
    require_https: bool = True
    allow_private: bool = False
    request_builder: Optional[Callable[[list[str], str], Any]] = None   # (texts, model) -> JSON body
    response_mapper: Optional[Callable[[Any], list[list[float]]]] = None


class HttpProviderConfig(BaseModel):
    type: Literal["http"] = "http"
    config: HttpEmbeddingConfig


class CustomProviderConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal["custom"] = "custom"
    provider: Any                        # Anything with `name` and async `embed(texts, request)`


ProviderConfig = Union[HttpProviderConfig, CustomProviderConfig]


class EmbeddingOptions(BaseModel):
    """Options for one generate_embeddings() call."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider: ProviderConfig = Field(discriminator="type")
    model: Optional[str] = None                  # Wins over the provider's default
    input: InputConfig = Field(default_factory=InputConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    on_chunk: Optional[Callable[[str, list[float]], Any]] = None
    on_metrics: Optional[Callable[["EmbeddingMetrics"], Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_provider(cls, data):
        # Accept a provider instance directly as shorthand for {type: custom}
        if isinstance(data, dict):
            provider = data.get("provider")
            if provider is not None and not isinstance(provider, (dict, BaseModel)) \
                    and callable(getattr(provider, "embed", None)):
                data = {**data, "provider": {"type": "custom", "provider": provider}}
        return data


# --- Embedding results ---

class EmbeddingSource(BaseModel):
    model: Optional[str] = None
    chunks: int
    tokens: int
    checksum: str
    cached: bool = False
    latency_ms: float


class PartialEmbeddingSource(BaseModel):
    model: Optional[str] = None
    chunks: Optional[int] = None
    tokens: Optional[int] = None
    checksum: Optional[str] = None
    cached: Optional[bool] = None
    latency_ms: Optional[float] = None


class EmbeddingSuccessSingle(BaseModel):
    status: Literal["success"] = "success"
    aggregation: Literal["average", "max", "first"]
    vector: list[float]
    source: EmbeddingSource


class EmbeddingSuccessMultiple(BaseModel):
    status: Literal["success"] = "success"
    aggregation: Literal["all"] = "all"
    vectors: list[list[float]]
    source: EmbeddingSource


class EmbeddingSkipped(BaseModel):
    status: Literal["skipped"] = "skipped"
    reason: str
    source: PartialEmbeddingSource = Field(default_factory=PartialEmbeddingSource)


EmbeddingResult = Union[EmbeddingSuccessSingle, EmbeddingSuccessMultiple, EmbeddingSkipped]


class EmbeddingMetrics(BaseModel):
    """Emitted once per pipeline call through on_metrics."""
    provider: str
    model: Optional[str] = None
    input_tokens: int
    output_dimensions: int
    chunks: int
    latency_ms: float
    cached: bool
    retries: int
    pii_redacted: bool


class CacheStats(BaseModel):
    size: int
    max_entries: int
    expired: int
    utilization: float


# --- Document orchestrator output ---

class ProcessedDocument(BaseModel):
    """Output of ContentProcessor.process()."""
    url: Optional[str] = None
    normalized: NormalizeResult
    embeddings: Optional[EmbeddingResult] = None


# on_metrics refers to EmbeddingMetrics, defined after EmbeddingOptions
EmbeddingOptions.model_rebuild()
