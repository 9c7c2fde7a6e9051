"""
Text Normalizer.

Turns classified content blocks into clean, embedding-ready text.

Pipeline position: Stage 3 (Segmenter → Classifier → Normalizer).
Input:  list[ContentBlock] + NormalizeOptions
Output: NormalizeResult (text + NormalizationMeta, scored blocks in debug mode)
"""

import hashlib
import html
import math
import re
import time
import unicodedata
from typing import Optional

from .classifier import DefaultClassifier, as_classifier
from .schemas import (
    ClassifierContext,
    ContentBlock,
    NormalizationMeta,
    NormalizeOptions,
    NormalizeResult,
    ScoredBlock,
    TruncateStrategy,
)
from .logger import get_module_logger

logger = get_module_logger("normalizer")

MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\([^)]+\)")
HORIZONTAL_WS_PATTERN = re.compile(r"[ \t]+")
EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")
NEWLINES_PATTERN = re.compile(r"\n+")

SENTENCE_BOUNDARIES = (". ", "? ", "! ")

# Boundary cuts are only taken when they keep this share of the limit
SENTENCE_CUT_MIN_RATIO = 0.5
WORD_CUT_MIN_RATIO = 0.8

HASH_LENGTH = 32


def normalize_string(
    text: str,
    decode_entities: bool = True,
    strip_links: bool = True,
    normalize_unicode: bool = True,
    preserve_line_breaks: bool = True
) -> str:
    """
    Clean one block of text.

    Order: entities → markdown links → NFC → horizontal whitespace → newlines → trim.
    """
    result = text

    if decode_entities:
        result = html.unescape(result).replace("\xa0", " ")

    if strip_links:
        result = MARKDOWN_LINK_PATTERN.sub(r"\1", result)

    if normalize_unicode:
        result = unicodedata.normalize("NFC", result)

    result = HORIZONTAL_WS_PATTERN.sub(" ", result)

    if preserve_line_breaks:
        result = EXCESS_NEWLINES_PATTERN.sub("\n\n", result)
    else:
        result = NEWLINES_PATTERN.sub(" ", result)

    return result.strip()


def truncate_text(text: str, max_chars: int, strategy: TruncateStrategy = "sentence") -> tuple[str, bool]:
    """
    Cut text to max_chars at a natural boundary.

    sentence: last ". ", "? " or "! " if past half the limit (punctuation kept)
    word:     last space if past 80% of the limit
    char:     hard cut

    Returns:
        (truncated text, whether a cut happened)
    """
    if len(text) <= max_chars:
        return text, False

    truncated = text[:max_chars]

    # Abbreviations such as "Dr. " count as sentence ends
    if strategy == "sentence":
        boundary = max(truncated.rfind(b) for b in SENTENCE_BOUNDARIES)
        if boundary > max_chars * SENTENCE_CUT_MIN_RATIO:
            truncated = truncated[:boundary + 1]
    elif strategy == "word":
        space = truncated.rfind(" ")
        if space > max_chars * WORD_CUT_MIN_RATIO:
            truncated = truncated[:space]

    return truncated.strip(), True


def content_hash(text: str) -> str:
    """Stable content hash used for deduplication (128 bits of SHA-256)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def normalize_text(
    blocks: list[ContentBlock],
    options: Optional[NormalizeOptions] = None,
    url: Optional[str] = None
) -> NormalizeResult:
    """
    Classify, clean, join and truncate content blocks.

    Args:
        blocks: Blocks from the segmenter, in document order
        options: Normalization options (defaults when omitted)
        url: Source URL, passed to classifiers in their context

    Returns:
        NormalizeResult. Text falling below min_chars yields an empty result
        that still reports the original block count.
    """
    start_time = time.perf_counter()
    options = options or NormalizeOptions()

    classifier = None
    if options.block_classifier is not None:
        classifier = as_classifier(options.block_classifier)
    elif options.remove_boilerplate:
        classifier = DefaultClassifier()

    blocks_total = len(blocks)
    blocks_truncated = False
    if options.max_blocks and len(blocks) > options.max_blocks:
        blocks = blocks[:options.max_blocks]
        blocks_truncated = True

    scored: list[ScoredBlock] = []
    if classifier is not None:
        for i, block in enumerate(blocks):
            context = ClassifierContext(
                index=i,
                total_blocks=len(blocks),
                url=url,
                parent_tags=block.context.parent_tags,
                depth=block.context.depth,
            )
            result = classifier.classify(block, context)
            if result.accept:
                scored.append(ScoredBlock(**block.model_dump(), score=result.score, label=result.label))
    else:
        scored = [ScoredBlock(**block.model_dump()) for block in blocks]

    if options.mode == "summary":
        # sorted() is stable: equal scores keep document order
        scored = sorted(scored, key=lambda b: -(b.score if b.score is not None else 0.5))

    parts = []
    for block in scored:
        text = normalize_string(
            block.text,
            decode_entities=options.decode_entities,
            strip_links=options.strip_links,
            normalize_unicode=options.normalize_unicode,
            preserve_line_breaks=options.preserve_line_breaks,
        )
        if block.type == "heading" and block.level:
            text = f"{'#' * block.level} {text}"
        parts.append(text)

    normalized = "\n\n".join(parts)

    truncated = False
    if options.max_chars and len(normalized) > options.max_chars:
        normalized, truncated = truncate_text(normalized, options.max_chars, options.truncate)

    language = options.language_hint or "unknown"

    if options.min_chars and len(normalized) < options.min_chars:
        logger.info(f"Normalized text below min_chars ({len(normalized)} < {options.min_chars}), returning empty result")
        return NormalizeResult(
            text="",
            meta=NormalizationMeta(
                char_count=0,
                token_estimate=0,
                language=language,
                boilerplate_removed=False,
                classifier_used=False,
                hash="",
                extraction_time_ms=_elapsed_ms(start_time),
                blocks_total=blocks_total,
                blocks_accepted=0,
                truncated=blocks_truncated,
            ),
            blocks=[] if options.debug else None,
        )

    meta = NormalizationMeta(
        char_count=len(normalized),
        token_estimate=math.ceil(len(normalized) / 4),
        language=language,
        boilerplate_removed=options.remove_boilerplate,
        classifier_used=classifier is not None,
        hash=content_hash(normalized),
        extraction_time_ms=_elapsed_ms(start_time),
        blocks_total=blocks_total,
        blocks_accepted=len(scored),
        truncated=truncated or blocks_truncated,
    )

    logger.debug(f"Normalized {meta.blocks_accepted}/{blocks_total} blocks into {meta.char_count} chars")

    return NormalizeResult(
        text=normalized,
        meta=meta,
        blocks=scored if options.debug else None,
    )


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000
