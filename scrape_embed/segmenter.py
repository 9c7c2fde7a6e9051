"""
Block Segmenter.

Walks a parsed HTML document and emits an ordered list of typed ContentBlocks.

Pipeline position: Stage 1 (Segmenter → Classifier → Normalizer).
Input:  HTML string/bytes, or an already parsed BeautifulSoup tree
Output: list[ContentBlock] in document order

The caller's tree is never mutated: noise elements are dropped from an
isolated re-parse of it.
"""

import re
from typing import Optional, Union

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from .schemas import BlockContext, BlockType, ContentBlock
from .logger import get_module_logger

logger = get_module_logger("segmenter")

DEFAULT_PARSER = "html5lib"
DEFAULT_MAX_BLOCKS = 2000

# Always removed before walking; callers can add more.
DEFAULT_DROP_SELECTORS = [
    "script",
    "style",
    "noscript",
    "iframe",
    "svg",
    "canvas",
    "[hidden]",
    '[aria-hidden="true"]',
]

# Tried in order; the first match is the primary content container.
CONTENT_CONTAINER_SELECTORS = ["article", "main", '[role="main"]', ".content", "#content"]

# Structural type by selector. Order matters: first match wins.
BLOCK_TYPE_SELECTORS: list[tuple[str, BlockType]] = [
    ('nav, [role="navigation"]', "nav"),
    ('footer, [role="contentinfo"]', "footer"),
    ("aside.promo, .promo, .advertisement, .ad, [data-ad]", "promo"),
    (".legal, .disclaimer, .terms, .copyright", "legal"),
    ("blockquote, q", "quote"),
    ("pre, code", "code"),
    ("table", "table"),
    ("ul, ol, dl, li, dt, dd", "list"),
    ("figure, img, video, audio, picture", "media"),
    ("figcaption", "paragraph"),
    ("p", "paragraph"),
]

# Boilerplate types a block inherits from its ancestors (e.g. <li> inside <nav>)
INHERITED_TYPES = {"nav", "footer", "promo", "legal"}

# Untyped tags that still form a block of their own
CANDIDATE_TAGS = {"p", "div", "section", "article", "li", "dt", "dd", "figcaption"}

# Block-level descendants that make an element a mere wrapper.
# Inline tags (code, q, img, span...) do not count: their text belongs to the parent block.
BLOCK_LEVEL_TAGS = [
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "dl", "li", "dt", "dd",
    "blockquote", "pre", "table", "div", "section", "article", "figure", "figcaption",
]

HEADING_PATTERN = re.compile(r"^h([1-6])$")

HIDDEN_STYLE_PATTERNS = [
    re.compile(r"display\s*:\s*none", re.IGNORECASE),
    re.compile(r"visibility\s*:\s*hidden", re.IGNORECASE),
]


class Segmenter:
    """Splits an HTML document into typed content blocks."""

    def __init__(
        self,
        drop_selectors: Optional[list[str]] = None,
        max_blocks: int = DEFAULT_MAX_BLOCKS,
        include_html: bool = False,
        parser: str = DEFAULT_PARSER
    ):
        self.drop_selectors = DEFAULT_DROP_SELECTORS + list(drop_selectors or [])
        self.max_blocks = max_blocks
        self.include_html = include_html
        self.parser = parser

    def segment(self, document: Union[str, bytes, Tag]) -> list[ContentBlock]:
        """
        Segment a document into content blocks.

        Args:
            document: HTML string/bytes or a parsed BeautifulSoup tree

        Returns:
            Blocks in document order, at most max_blocks of them
        """
        soup = self._isolated_copy(document)
        self._drop_noise(soup)

        container = self._find_container(soup)

        blocks: list[ContentBlock] = []
        processed: set[int] = set()  # ids of elements already covered by an emitted block

        for elem in container.find_all(True):
            if len(blocks) >= self.max_blocks:
                logger.info(f"Block cap reached ({self.max_blocks}), stopping walk")
                break

            if id(elem) in processed:
                continue

            block = self._build_block(elem, container)
            if block is None:
                continue

            blocks.append(block)
            # Inline children (code, q, img) must not reappear as blocks of their own
            processed.update(id(desc) for desc in elem.find_all(True))

        logger.info(f"Segmented {len(blocks)} content blocks")
        return blocks

    def _isolated_copy(self, document: Union[str, bytes, Tag]) -> BeautifulSoup:
        """Parse strings directly; re-parse trees so dropping nodes never touches the caller's copy."""
        if isinstance(document, Tag):
            return BeautifulSoup(str(document), self.parser)
        return BeautifulSoup(document, self.parser)

    def _drop_noise(self, soup: BeautifulSoup) -> None:
        """Remove scripts, hidden elements and caller-supplied selectors."""
        for selector in self.drop_selectors:
            try:
                matches = soup.select(selector)
            except SelectorSyntaxError as e:
                logger.warning(f"Invalid drop selector '{selector}': {e}")
                continue
            for elem in matches:
                # Nested matches may already be gone with their ancestor
                if not elem.decomposed:
                    elem.decompose()

        # Inline-style hiding is not expressible as a CSS selector
        for elem in soup.find_all(style=True):
            if not elem.decomposed and self._is_hidden(elem):
                elem.decompose()

    def _is_hidden(self, elem: Tag) -> bool:
        style = elem.get("style", "")
        return any(p.search(style) for p in HIDDEN_STYLE_PATTERNS)

    def _find_container(self, soup: BeautifulSoup) -> Tag:
        """Primary content area: article → main → role=main → .content → #content → body."""
        for selector in CONTENT_CONTAINER_SELECTORS:
            found = soup.select_one(selector)
            if found is not None:
                logger.debug(f"Content container matched '{selector}'")
                return found
        return soup.find("body") or soup

    def _build_block(self, elem: Tag, container: Tag) -> Optional[ContentBlock]:
        """Return a block for the element, or None when it does not form one."""
        tag_name = (elem.name or "").lower()
        if not tag_name:
            return None

        block_type, level = self._classify_structure(elem, tag_name)

        if block_type == "unknown" and tag_name not in CANDIDATE_TAGS:
            return None

        text = elem.get_text().strip()
        if not text:
            return None

        # Most granular wins: wrappers of other blocks are skipped, their children emitted.
        # Media keeps its wrapper so alt/src stay attached to the caption text.
        if block_type != "media" and self._has_block_descendant(elem):
            return None

        inherited = self._inherited_type(elem, container)
        if inherited is not None and block_type not in INHERITED_TYPES:
            block_type = inherited

        parent_tags = tuple(
            parent.name.lower()
            for parent in reversed(list(elem.parents))
            if not isinstance(parent, BeautifulSoup) and parent.name
        )

        return ContentBlock(
            type="paragraph" if block_type == "unknown" else block_type,
            text=text,
            level=level,
            html=elem.decode_contents() if self.include_html else None,
            attrs=self._media_attrs(elem) if block_type == "media" else {},
            context=BlockContext(parent_tags=parent_tags, depth=len(parent_tags)),
        )

    def _classify_structure(self, elem: Tag, tag_name: str) -> tuple[BlockType, Optional[int]]:
        heading = HEADING_PATTERN.match(tag_name)
        if heading:
            return "heading", int(heading.group(1))

        for selector, block_type in BLOCK_TYPE_SELECTORS:
            if elem.css.match(selector):
                return block_type, None
        return "unknown", None

    def _has_block_descendant(self, elem: Tag) -> bool:
        """True if a block-level descendant carries text of its own."""
        for desc in elem.find_all(BLOCK_LEVEL_TAGS):
            if desc.get_text().strip():
                return True
        return False

    def _inherited_type(self, elem: Tag, container: Tag) -> Optional[BlockType]:
        """Boilerplate type of the closest nav/footer/promo/legal ancestor inside the container."""
        for parent in elem.parents:
            if parent is container or isinstance(parent, BeautifulSoup):
                break
            for selector, block_type in BLOCK_TYPE_SELECTORS:
                if block_type in INHERITED_TYPES and parent.css.match(selector):
                    return block_type
        return None

    def _media_attrs(self, elem: Tag) -> dict[str, str]:
        """alt/src for images; src/poster for video (first <source> only)."""
        attrs: dict[str, str] = {}

        img = elem if elem.name == "img" else elem.find("img")
        if img is not None:
            if img.get("alt"):
                attrs["alt"] = img["alt"]
            if img.get("src"):
                attrs["src"] = img["src"]
            return attrs

        video = elem if elem.name == "video" else elem.find("video")
        if video is not None:
            src = video.get("src")
            if not src:
                source = video.find("source")
                src = source.get("src") if source is not None else None
            if src:
                attrs["src"] = src
            if video.get("poster"):
                attrs["poster"] = video["poster"]
        return attrs


def parse_blocks(
    document: Union[str, bytes, Tag],
    drop_selectors: Optional[list[str]] = None,
    max_blocks: int = DEFAULT_MAX_BLOCKS,
    include_html: bool = False,
    parser: str = DEFAULT_PARSER
) -> list[ContentBlock]:
    """Convenience function to segment a document."""
    return Segmenter(
        drop_selectors=drop_selectors,
        max_blocks=max_blocks,
        include_html=include_html,
        parser=parser,
    ).segment(document)
