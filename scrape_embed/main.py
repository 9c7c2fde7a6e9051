"""
Main orchestrator for scrape_embed.

Coordinates the content pipeline: Segmenter → Classifier → Normalizer, and
optionally hands the normalized text to the embedding pipeline.
"""

from pathlib import Path
from typing import Optional, Union

from bs4 import Tag

from .normalizer import normalize_text
from .pipeline import generate_embeddings
from .schemas import EmbeddingOptions, NormalizeOptions, NormalizeResult, ProcessedDocument, ScrapedData
from .segmenter import DEFAULT_PARSER, Segmenter
from .logger import get_module_logger, setup_logger

logger = get_module_logger("main")


class ContentProcessor:
    """
    Main orchestrator for HTML → text → embeddings.

    Coordinates:
    1. Segmenter: Splits the document into typed blocks
    2. Classifier + Normalizer: Drops boilerplate, cleans and joins text
    3. Embedding pipeline (optional): Chunks, embeds and aggregates
    """

    def __init__(
        self,
        options: Optional[NormalizeOptions] = None,
        max_blocks: Optional[int] = None,
        parser: str = DEFAULT_PARSER,
        log_level: Union[int, str, None] = None
    ):
        """
        Args:
            options: Normalization options used by every call
            max_blocks: Hard cap on segmented blocks (default: segmenter default)
            parser: BeautifulSoup tree builder ("html5lib" or "lxml")
            log_level: Reconfigure the package logger (int or level name)
        """
        if log_level is not None:
            setup_logger(level=log_level)

        self.options = options or NormalizeOptions()

        segmenter_kwargs = {
            "drop_selectors": self.options.drop_selectors,
            "include_html": self.options.include_html,
            "parser": parser,
        }
        if max_blocks is not None:
            segmenter_kwargs["max_blocks"] = max_blocks
        self.segmenter = Segmenter(**segmenter_kwargs)

        logger.info("ContentProcessor initialized")

    def normalize_html(self, html: Union[str, bytes, Tag], url: Optional[str] = None) -> NormalizeResult:
        """
        Segment and normalize one document.

        Args:
            html: HTML string/bytes or a parsed BeautifulSoup tree (left untouched)
            url: Source URL, passed to classifiers

        Returns:
            NormalizeResult with text and metadata
        """
        # Stage 1: Segment
        # Input:  HTML or parsed tree
        # Output: ContentBlock list in document order
        blocks = self.segmenter.segment(html)

        # Stage 2: Classify + normalize
        # Input:  blocks + NormalizeOptions
        # Output: text, hash, counts
        result = normalize_text(blocks, self.options, url=url)

        logger.info(
            f"Normalized document: {result.meta.blocks_accepted}/{result.meta.blocks_total} blocks, "
            f"{result.meta.char_count} chars"
        )
        return result

    async def process(
        self,
        html: Union[str, bytes, Tag],
        url: Optional[str] = None,
        embeddings: Optional[EmbeddingOptions] = None,
        title: Optional[str] = None
    ) -> ProcessedDocument:
        """
        Normalize a document and, when embedding options are given, embed its text.

        Embedding failures come back as a skipped result inside the document.
        """
        normalized = self.normalize_html(html, url=url)

        embedding_result = None
        if embeddings is not None:
            # Stage 3: Embed
            # Input:  normalized text as text_content
            # Output: EmbeddingResult (success or skipped)
            data = ScrapedData(url=url, title=title, text_content=normalized.text)
            embedding_result = await generate_embeddings(data, embeddings)

        return ProcessedDocument(url=url, normalized=normalized, embeddings=embedding_result)

    def process_file(self, file_path: Union[str, Path], url: Optional[str] = None) -> NormalizeResult:
        """Normalize an HTML file."""
        file_path = Path(file_path)

        # Raw bytes let the parser honour the document's declared charset
        return self.normalize_html(file_path.read_bytes(), url=url or file_path.resolve().as_uri())


def normalize_html(
    html: Union[str, bytes, Tag],
    options: Optional[NormalizeOptions] = None,
    url: Optional[str] = None
) -> NormalizeResult:
    """Convenience function to normalize HTML."""
    return ContentProcessor(options=options).normalize_html(html, url=url)


def normalize_html_file(file_path: Union[str, Path], options: Optional[NormalizeOptions] = None) -> NormalizeResult:
    """Convenience function to normalize an HTML file."""
    return ContentProcessor(options=options).process_file(file_path)
