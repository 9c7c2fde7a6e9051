"""
Input selection for the embedding pipeline.

Picks which part of the scraped data gets embedded and cleans it:
control characters stripped, whitespace collapsed, every line trimmed.
"""

import re
from typing import Optional, Union

from .exceptions import ConfigurationError
from .schemas import InputConfig, InputValidation, ScrapedData

DEFAULT_MIN_LENGTH = 10
MIN_WORDS = 3

# Control characters except tab and newline
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
HORIZONTAL_WS_PATTERN = re.compile(r"[ \t]+")
EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")

# Applied in order; covers the common cases, not the full markdown grammar
MARKDOWN_RULES = [
    (re.compile(r"```[\s\S]*?```"), ""),                    # fenced code
    (re.compile(r"`[^`]+`"), ""),                           # inline code
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),         # images
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),          # links
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),          # headers
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"^>\s+", re.MULTILINE), ""),               # blockquotes
    (re.compile(r"^[-*_]{3,}$", re.MULTILINE), ""),         # horizontal rules
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),        # bullets
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),        # numbered lists
]


def clean_input_text(text: Optional[str]) -> str:
    if not text:
        return ""
    result = CONTROL_CHARS_PATTERN.sub("", text)
    result = HORIZONTAL_WS_PATTERN.sub(" ", result)
    result = EXCESS_NEWLINES_PATTERN.sub("\n\n", result)
    result = "\n".join(line.strip() for line in result.split("\n"))
    return result.strip()


def strip_markdown(markdown: str) -> str:
    for pattern, replacement in MARKDOWN_RULES:
        markdown = pattern.sub(replacement, markdown)
    return markdown


def _as_scraped(data: Union[ScrapedData, dict]) -> ScrapedData:
    if isinstance(data, ScrapedData):
        return data
    return ScrapedData(**data)


def _select_text_content(data: ScrapedData) -> Optional[str]:
    # Fallback chain: text_content → content (markdown) → excerpt → description
    if data.text_content:
        return clean_input_text(data.text_content)
    if data.content:
        return clean_input_text(strip_markdown(data.content))
    if data.excerpt:
        return clean_input_text(data.excerpt)
    if data.description:
        return clean_input_text(data.description)
    return None


def _select_title_summary(data: ScrapedData) -> Optional[str]:
    parts = []
    if data.title:
        parts.append(data.title)

    summary = data.summary or data.excerpt or data.description
    if summary:
        parts.append(summary)

    if not parts:
        return None
    return clean_input_text("\n\n".join(parts))


def select_input(data: Union[ScrapedData, dict], config: Optional[InputConfig] = None) -> Optional[str]:
    """
    Select and clean the embedding input.

    A transform wins over everything; type="custom" uses custom_text and falls
    back to text_content when none is given.

    Returns:
        Cleaned text, or None when the data has nothing usable
    """
    data = _as_scraped(data)
    config = config or InputConfig()

    if config.transform is not None:
        return clean_input_text(config.transform(data))

    if config.type == "custom" and config.custom_text:
        return clean_input_text(config.custom_text)

    if config.type in ("text_content", "custom"):
        return _select_text_content(data)
    elif config.type == "title_summary":
        return _select_title_summary(data)
    else:
        raise ConfigurationError(f"Unknown input type: {config.type}")


def validate_input(text: Optional[str], min_length: int = DEFAULT_MIN_LENGTH) -> InputValidation:
    """Require min_length characters and at least three words longer than one character."""
    if not text:
        return InputValidation(valid=False, reason="No input text available")

    if len(text) < min_length:
        return InputValidation(
            valid=False,
            reason=f"Input too short ({len(text)} < {min_length} characters)"
        )

    word_count = sum(1 for word in text.split() if len(word) > 1)
    if word_count < MIN_WORDS:
        return InputValidation(
            valid=False,
            reason=f"Input has too few words ({word_count} < {MIN_WORDS})"
        )

    return InputValidation(valid=True, text=text, word_count=word_count, char_count=len(text))


def preview_input(
    data: Union[ScrapedData, dict],
    config: Optional[InputConfig] = None,
    max_length: int = 200
) -> str:
    """What select_input() would embed, shortened for display."""
    text = select_input(data, config)
    if not text:
        return "[No input available]"
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}..."
