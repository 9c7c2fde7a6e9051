"""
Block Classifier.

Accepts, rejects and scores content blocks as boilerplate vs. substance.

Pipeline position: Stage 2 (Segmenter → Classifier → Normalizer).
Input:  ContentBlock + ClassifierContext (index, total, url, ancestors, depth)
Output: ClassifierResult (accept, label, score)

Classifiers are plain objects with a `classify` method and a `priority`.
combine_classifiers() keeps them in an explicit list sorted by priority;
any callable(block, context) can be wrapped with as_classifier().
"""

import re
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

from .schemas import ClassifierContext, ClassifierResult, ContentBlock
from .logger import get_module_logger

logger = get_module_logger("classifier")

# Pattern matching only looks at this many leading characters
MATCH_INPUT_LIMIT = 1000

# Generic, site-agnostic boilerplate phrasing
BOILERPLATE_PATTERNS = [
    re.compile(r"\b(subscribe|sign up|newsletter|notifications|follow us)\b", re.IGNORECASE),
    re.compile(r"\b(sponsored|advertis(e|ement|ing)|promotion|partner content)\b", re.IGNORECASE),
    re.compile(r"\b(read more|keep reading|continue reading|see more)\b", re.IGNORECASE),
    re.compile(r"\b(cookie policy|privacy policy|terms of service|all rights reserved)\b", re.IGNORECASE),
    re.compile(r"\b(share on|share this|tweet this|pin it)\b", re.IGNORECASE),
    re.compile(r"\b(comments?|leave a reply|join the discussion)\b", re.IGNORECASE),
]

MEDIA_CREDIT_PATTERN = re.compile(r"\b(photo by|image:|credit:|source:)", re.IGNORECASE)
TERMINAL_PUNCTUATION = re.compile(r"[.!?]\s*$")

REJECTED_TYPES = ("nav", "footer", "legal", "promo")

SHORT_FRAGMENT_CHARS = 20
MEDIA_CREDIT_MAX_CHARS = 120


class BaseClassifier(ABC):
    """Abstract base class for block classifiers."""

    # Higher priority runs earlier inside a combined classifier
    priority: int = 0

    @abstractmethod
    def classify(self, block: ContentBlock, context: ClassifierContext) -> ClassifierResult:
        """
        Decide whether a block belongs in the normalized output.

        Must not mutate the block.
        """
        pass

    def __call__(self, block: ContentBlock, context: ClassifierContext) -> ClassifierResult:
        return self.classify(block, context)


class DefaultClassifier(BaseClassifier):
    """
    Site-agnostic classifier.

    Rejects empty text, structural boilerplate (nav/footer/legal/promo),
    boilerplate phrasing, short unpunctuated fragments and photo credits.
    Accepted blocks are scored: h1=0.9, h2=0.8, h3+=0.7; paragraphs by
    length up to 0.9; quotes and code 0.7; everything else 0.5.
    """

    def classify(self, block: ContentBlock, context: ClassifierContext) -> ClassifierResult:
        text = (block.text or "").strip()
        sample = text[:MATCH_INPUT_LIMIT]

        if not text:
            return ClassifierResult(accept=False, label="empty")

        if block.type in REJECTED_TYPES:
            return ClassifierResult(accept=False, label=block.type)

        if any(pattern.search(sample) for pattern in BOILERPLATE_PATTERNS):
            return ClassifierResult(accept=False, label="boilerplate")

        # Short fragments are usually UI labels, unless they read as a sentence
        is_short = len(text) < SHORT_FRAGMENT_CHARS
        if is_short and block.type not in ("heading", "list") and not TERMINAL_PUNCTUATION.search(text):
            return ClassifierResult(accept=False, label="too-short")

        if len(text) < MEDIA_CREDIT_MAX_CHARS and MEDIA_CREDIT_PATTERN.search(sample):
            return ClassifierResult(accept=False, label="media-credit")

        return ClassifierResult(accept=True, label="content", score=self._score(block, text))

    def _score(self, block: ContentBlock, text: str) -> float:
        if block.type == "heading":
            if block.level == 1:
                return 0.9
            if block.level == 2:
                return 0.8
            return 0.7
        if block.type == "paragraph":
            return min(0.9, 0.5 + len(text) / 1000)
        if block.type in ("quote", "code"):
            return 0.7
        return 0.5


class FunctionClassifier(BaseClassifier):
    """Adapts a plain callable(block, context) -> ClassifierResult."""

    def __init__(
        self,
        func: Callable[[ContentBlock, ClassifierContext], ClassifierResult],
        priority: int = 0
    ):
        self.func = func
        self.priority = priority

    def classify(self, block: ContentBlock, context: ClassifierContext) -> ClassifierResult:
        return self.func(block, context)


class CombinedClassifier(BaseClassifier):
    """
    AND-combination of classifiers.

    Runs in priority order (ties keep the given order), returns the first
    rejection unchanged, and otherwise averages the scores of all accepting
    classifiers that produced one.
    """

    def __init__(self, classifiers: list[BaseClassifier], priority: int = 0):
        self.classifiers = sorted(classifiers, key=lambda c: -c.priority)
        self.priority = priority

    def classify(self, block: ContentBlock, context: ClassifierContext) -> ClassifierResult:
        results: list[ClassifierResult] = []

        for classifier in self.classifiers:
            result = classifier.classify(block, context)
            if not result.accept:
                return result
            results.append(result)

        scores = [r.score for r in results if r.score is not None]
        score = sum(scores) / len(scores) if scores else None
        label = "+".join(r.label for r in results if r.label) or "content"

        return ClassifierResult(accept=True, label=label, score=score)


ClassifierLike = Union[BaseClassifier, Callable[[ContentBlock, ClassifierContext], ClassifierResult]]


def as_classifier(classifier: ClassifierLike) -> BaseClassifier:
    """Wrap callables so everything downstream sees the BaseClassifier interface."""
    if isinstance(classifier, BaseClassifier):
        return classifier
    if callable(classifier):
        return FunctionClassifier(classifier)
    raise TypeError(f"Not a classifier: {classifier!r}")


def combine_classifiers(*classifiers: ClassifierLike) -> CombinedClassifier:
    """Combine classifiers with AND semantics (first rejection wins, scores averaged)."""
    return CombinedClassifier([as_classifier(c) for c in classifiers])


_default_classifier = DefaultClassifier()


def default_block_classifier(
    block: ContentBlock,
    context: Optional[ClassifierContext] = None
) -> ClassifierResult:
    """Classify one block with the default rules."""
    if context is None:
        context = ClassifierContext(index=0, total_blocks=1)
    return _default_classifier.classify(block, context)
