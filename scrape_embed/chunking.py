"""
Chunker.

Splits normalized text into overlapping, token-bounded chunks for embedding.
Chunk ends prefer sentence boundaries, then word boundaries; chunk starts
never fall mid-word.
"""

import math
import re
from typing import Callable, Optional, Union

from .exceptions import ConfigurationError
from .schemas import ChunkingConfig, ChunkingStats, TextChunk
from .logger import get_module_logger

logger = get_module_logger("chunking")

DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 50
DEFAULT_MAX_INPUT_LENGTH = 100_000

# Heuristic: about 4 characters per token for English text
CHARS_PER_TOKEN = 4

# Sentence ends are searched within this fraction around the target end
BREAK_SEARCH_RATIO = 0.2

TIKTOKEN_ENCODING = "cl100k_base"

SENTENCE_END_PATTERN = re.compile(r"[.!?]\s+")
WHITESPACE_PATTERN = re.compile(r"\s+")

Tokenizer = Callable[[str], int]


def heuristic_token_count(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _tiktoken_counter() -> Tokenizer:
    # Lazy import: tiktoken is an optional extra
    try:
        import tiktoken
    except ImportError:
        raise ConfigurationError(
            "tiktoken package not installed. Run: pip install scrape-embed[tiktoken]"
        )

    encoding = tiktoken.get_encoding(TIKTOKEN_ENCODING)
    return lambda text: len(encoding.encode(text))


def create_tokenizer(tokenizer: Union[str, Tokenizer, None] = None) -> Tokenizer:
    """
    Resolve a tokenizer setting to a counting function.

    Args:
        tokenizer: "heuristic" (default), "tiktoken", or any callable(text) -> int

    Returns:
        Token counting function
    """
    if tokenizer is None or tokenizer == "heuristic":
        return heuristic_token_count
    if tokenizer == "tiktoken":
        return _tiktoken_counter()
    if callable(tokenizer):
        return tokenizer
    raise ConfigurationError(f"Unknown tokenizer: {tokenizer!r}")


def tokens_to_chars(tokens: int) -> int:
    return tokens * CHARS_PER_TOKEN


def find_break_point(text: str, target_index: int, min_index: int = 0) -> int:
    """
    Pick a chunk end near target_index.

    Last sentence end (punctuation + whitespace) within 20% before the target,
    else the last space after the search window start, else the target itself.
    The search window never reaches below min_index.
    """
    window = int(target_index * BREAK_SEARCH_RATIO)
    search_start = max(min_index, target_index - window)
    search_end = min(len(text), target_index + window)

    last_sentence_end = -1
    for match in SENTENCE_END_PATTERN.finditer(text, search_start, search_end):
        if match.end() <= target_index:
            last_sentence_end = match.end()

    if last_sentence_end != -1:
        return last_sentence_end

    word_boundary = text.rfind(" ", 0, target_index + 1)
    if word_boundary > search_start:
        # The space stays with the previous chunk
        return word_boundary + 1

    return target_index


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def chunk_text(text: str, config: Optional[ChunkingConfig] = None) -> list[TextChunk]:
    """
    Split text into overlapping chunks.

    Input beyond max_input_length is dropped, then whitespace is collapsed.
    start_index/end_index refer to the collapsed text.

    Args:
        text: Text to split
        config: Chunk size/overlap in tokens, tokenizer, max input length

    Returns:
        Chunks in order; empty for blank input
    """
    config = config or ChunkingConfig()
    chunk_size = config.size
    overlap = min(config.overlap, chunk_size - 1)
    count_tokens = create_tokenizer(config.tokenizer)

    if len(text) > config.max_input_length:
        logger.info(f"Input truncated from {len(text)} to {config.max_input_length} chars before chunking")
        text = text[:config.max_input_length]

    normalized = collapse_whitespace(text)
    if not normalized:
        return []

    total_tokens = count_tokens(normalized)
    if total_tokens <= chunk_size:
        return [TextChunk(text=normalized, start_index=0, end_index=len(normalized), tokens=total_tokens)]

    chunk_chars = tokens_to_chars(chunk_size)
    overlap_chars = tokens_to_chars(overlap)
    length = len(normalized)

    chunks: list[TextChunk] = []
    start = 0

    while start < length:
        target_end = min(start + chunk_chars, length)
        end = find_break_point(normalized, target_end, start + 1) if target_end < length else target_end

        piece = normalized[start:end].strip()
        if piece:
            chunks.append(TextChunk(text=piece, start_index=start, end_index=end, tokens=count_tokens(piece)))

        if end >= length:
            break

        # Strictly forward, even when overlap swallows the whole chunk
        start = max(end - overlap_chars, start + 1)

        # Snap forward to the next word start
        space = normalized.find(" ", start)
        if space != -1 and space < start + overlap_chars:
            start = space + 1

    logger.debug(f"Split {length} chars into {len(chunks)} chunks")
    return chunks


def estimate_tokens(text: str, tokenizer: Union[str, Tokenizer, None] = None) -> int:
    """Token count for text, without chunking."""
    return create_tokenizer(tokenizer)(text)


def needs_chunking(
    text: str,
    max_tokens: int = DEFAULT_CHUNK_SIZE,
    tokenizer: Union[str, Tokenizer, None] = None
) -> bool:
    return create_tokenizer(tokenizer)(text) > max_tokens


def get_chunking_stats(text: str, config: Optional[ChunkingConfig] = None) -> ChunkingStats:
    """Predict chunking outcome for text without producing the chunks."""
    config = config or ChunkingConfig()
    count_tokens = create_tokenizer(config.tokenizer)

    will_truncate = len(text) > config.max_input_length
    normalized = collapse_whitespace(text[:config.max_input_length])
    estimated_tokens = count_tokens(normalized)

    estimated_chunks = 1
    if estimated_tokens > config.size:
        overlap = min(config.overlap, config.size - 1)
        estimated_chunks = math.ceil((estimated_tokens - overlap) / (config.size - overlap))

    return ChunkingStats(
        input_length=len(text),
        estimated_tokens=estimated_tokens,
        estimated_chunks=estimated_chunks,
        will_truncate=will_truncate,
    )
