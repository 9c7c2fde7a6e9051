"""
Content-addressable embedding cache.

Keys are computed by generate_cache_key() from the post-redaction content
plus a fingerprint of every option that changes the resulting vectors.
The cache itself never looks at content.

Benefits:
- Cost savings: identical text is embedded once per configuration
- Speed: cache hits skip chunking and every provider call
"""

import hashlib
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .schemas import (
    CacheStats,
    ChunkingConfig,
    EmbeddingResult,
    InputConfig,
    PiiRedactionConfig,
    SafetyConfig,
)
from .logger import get_module_logger

logger = get_module_logger("cache")

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 60 * 60

CHECKSUM_LENGTH = 16


class BaseEmbeddingCache(ABC):
    """Async key/value interface the pipeline talks to."""

    @abstractmethod
    async def get(self, key: str) -> Optional[EmbeddingResult]:
        pass

    @abstractmethod
    async def set(self, key: str, value: EmbeddingResult, ttl_seconds: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


@dataclass
class _CacheEntry:
    value: EmbeddingResult
    created_at: float
    expires_at: float
    accessed_at: float


class InMemoryEmbeddingCache(BaseEmbeddingCache):
    """
    In-process LRU cache with per-entry TTL.

    Expired entries are dropped lazily on get(); cleanup() sweeps them all.
    When full, inserting a new key evicts the least recently accessed entry.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_entries = max_entries
        self.default_ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[EmbeddingResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if now > entry.expires_at:
            del self._entries[key]
            logger.debug("Cache entry expired")
            return None

        entry.accessed_at = now
        # Hits are copies; callers may mutate them freely
        return entry.value.model_copy(deep=True)

    async def set(self, key: str, value: EmbeddingResult, ttl_seconds: Optional[float] = None) -> None:
        now = self._clock()
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl

        if len(self._entries) >= self.max_entries and key not in self._entries:
            self._evict_lru()

        self._entries[key] = _CacheEntry(
            value=value.model_copy(deep=True),
            created_at=now,
            expires_at=now + ttl,
            accessed_at=now,
        )

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> CacheStats:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if now > entry.expires_at)
        return CacheStats(
            size=len(self._entries),
            max_entries=self.max_entries,
            expired=expired,
            utilization=len(self._entries) / self.max_entries,
        )

    def cleanup(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        oldest = min(self._entries, key=lambda k: self._entries[k].accessed_at)
        del self._entries[oldest]


class NoOpEmbeddingCache(BaseEmbeddingCache):
    """Cache interface that stores nothing. Use it to disable caching."""

    async def get(self, key: str) -> Optional[EmbeddingResult]:
        return None

    async def set(self, key: str, value: EmbeddingResult, ttl_seconds: Optional[float] = None) -> None:
        pass

    async def delete(self, key: str) -> bool:
        return False

    async def clear(self) -> None:
        pass


def create_no_op_cache() -> NoOpEmbeddingCache:
    return NoOpEmbeddingCache()


# --- Cache keys ---

def _tokenizer_id(tokenizer: Any) -> str:
    if tokenizer is None or tokenizer == "heuristic":
        return "heuristic"
    if tokenizer == "tiktoken":
        return "tiktoken"
    return "custom"


def _serialize_input(config: Optional[InputConfig]) -> Optional[dict]:
    if config is None:
        return None
    return {
        "type": config.type,
        "has_transform": config.transform is not None,
        "has_custom_text": bool(config.custom_text),
    }


def _serialize_chunking(config: Optional[ChunkingConfig]) -> Optional[dict]:
    if config is None:
        return None
    return {
        "size": config.size,
        "overlap": config.overlap,
        "tokenizer": _tokenizer_id(config.tokenizer),
        "max_input_length": config.max_input_length,
    }


def _serialize_pii(config: Optional[PiiRedactionConfig]) -> Optional[dict]:
    if config is None:
        return None
    return {
        "email": config.email,
        "phone": config.phone,
        "credit_card": config.credit_card,
        "ssn": config.ssn,
        "ip_address": config.ip_address,
        "custom_patterns": [f"{p.pattern}/{p.flags}" for p in config.custom_patterns],
    }


def _serialize_safety(config: Optional[SafetyConfig]) -> Optional[dict]:
    if config is None:
        return None
    return {
        "pii_redaction": _serialize_pii(config.pii_redaction),
        "min_text_length": config.min_text_length,
        "max_tokens": config.max_tokens,
    }


def _drop_none(value: Any) -> Any:
    """Unset options and explicit None must produce the same key."""
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value if v is not None]
    return value


def generate_cache_key(
    content: str,
    provider_key: str,
    model: Optional[str] = None,
    dimensions: Optional[int] = None,
    aggregation: Optional[str] = None,
    input_config: Optional[InputConfig] = None,
    chunking: Optional[ChunkingConfig] = None,
    safety: Optional[SafetyConfig] = None,
    cache_key_salt: Optional[str] = None
) -> str:
    """
    SHA-256 over a canonical configuration fingerprint, a NUL separator, then the content.

    The fingerprint is sorted-key JSON, so it is stable across processes.
    """
    fingerprint = _drop_none({
        "provider_key": provider_key,
        "model": model or "provider-default",
        "dimensions": dimensions if dimensions is not None else "default",
        "aggregation": aggregation or "average",
        "input": _serialize_input(input_config),
        "chunking": _serialize_chunking(chunking),
        "safety": _serialize_safety(safety),
        "cache_key_salt": cache_key_salt,
    })

    digest = hashlib.sha256()
    digest.update(json.dumps(fingerprint, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    digest.update(b"\0")
    digest.update(content.encode("utf-8"))
    return digest.hexdigest()


def generate_checksum(content: str) -> str:
    """Short content checksum reported in EmbeddingSource."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:CHECKSUM_LENGTH]


def validate_cached_result(result: EmbeddingResult, expected_dimensions: Optional[int] = None) -> bool:
    """True if a cached success result has the expected vector length. Skipped results always pass."""
    if result.status != "success" or not expected_dimensions:
        return True

    if result.aggregation == "all":
        if not result.vectors:
            return False
        return len(result.vectors[0]) == expected_dimensions

    return len(result.vector) == expected_dimensions


# Process-wide convenience instance; callers that need isolation pass their own store
_default_cache: Optional[InMemoryEmbeddingCache] = None


def get_default_cache() -> InMemoryEmbeddingCache:
    """Get or create the default cache instance."""
    global _default_cache
    if _default_cache is None:
        _default_cache = InMemoryEmbeddingCache()
    return _default_cache


def reset_default_cache() -> None:
    """Drop the default cache (test isolation)."""
    global _default_cache
    if _default_cache is not None:
        _default_cache._entries.clear()
    _default_cache = None
