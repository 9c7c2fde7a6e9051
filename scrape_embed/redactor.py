"""
PII Redactor.

Replaces emails, phone numbers, credit cards, SSNs, IPv4 addresses and
caller-supplied patterns with a fixed placeholder before text leaves the
process for an embedding provider.
"""

import re
from typing import Callable, Optional

from .exceptions import ConfigurationError
from .schemas import PiiRedactionConfig, RedactionResult
from .logger import get_module_logger

logger = get_module_logger("redactor")

REDACTED = "[REDACTED]"

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# +1-234-567-8901, (234) 567-8901, 234.567.8901, 234-567-8901
PHONE_PATTERN = re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b")

# Visa, Mastercard, Amex, Discover, grouped 4x4, then any 13-19 digit run
CREDIT_CARD_PATTERN = re.compile(
    r"\b(?:4[0-9]{12}(?:[0-9]{3})?"
    r"|5[1-5][0-9]{14}"
    r"|3[47][0-9]{13}"
    r"|6(?:011|5[0-9]{2})[0-9]{12}"
    r"|(?:[0-9]{4}[-\s]){3}[0-9]{4}"
    r"|[0-9]{13,19})\b"
)

SSN_PATTERN = re.compile(r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b")

_OCTET = r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
IPV4_PATTERN = re.compile(rf"\b{_OCTET}\.{_OCTET}\.{_OCTET}\.{_OCTET}\b")


def _enabled_patterns(config: PiiRedactionConfig) -> list[tuple[str, re.Pattern]]:
    """Detectors in application order."""
    patterns: list[tuple[str, re.Pattern]] = []

    # Credit cards go before phones: the phone pattern matches 10-digit runs inside card numbers
    if config.credit_card:
        patterns.append(("credit_card", CREDIT_CARD_PATTERN))
    if config.email:
        patterns.append(("email", EMAIL_PATTERN))
    if config.phone:
        patterns.append(("phone", PHONE_PATTERN))
    if config.ssn:
        patterns.append(("ssn", SSN_PATTERN))
    if config.ip_address:
        patterns.append(("ip_address", IPV4_PATTERN))

    for i, pattern in enumerate(config.custom_patterns):
        patterns.append((f"custom_{i}", pattern))

    return patterns


def create_pii_redactor(config: PiiRedactionConfig) -> Callable[[str], RedactionResult]:
    """
    Build a redaction function for the enabled detectors.

    Args:
        config: Detector switches and custom patterns

    Returns:
        A function mapping text to a RedactionResult
    """
    patterns = _enabled_patterns(config)

    def redact(text: str) -> RedactionResult:
        redacted_text = text
        total = 0
        by_type: dict[str, int] = {}

        for name, pattern in patterns:
            # Counted on the partially redacted text so earlier detectors' matches are not recounted
            redacted_text, count = pattern.subn(REDACTED, redacted_text)
            if count:
                total += count
                by_type[name] = by_type.get(name, 0) + count

        if total:
            logger.debug(f"Redacted {total} PII matches: {by_type}")

        return RedactionResult(
            text=redacted_text,
            redacted=total > 0,
            redaction_count=total,
            redactions_by_type=by_type,
        )

    return redact


def redact_pii(text: str, config: Optional[PiiRedactionConfig] = None) -> RedactionResult:
    """Redact with every built-in detector enabled unless a config is given."""
    if config is None:
        config = PiiRedactionConfig(email=True, phone=True, credit_card=True, ssn=True, ip_address=True)
    return create_pii_redactor(config)(text)


def contains_pii(
    text: str,
    email: bool = True,
    phone: bool = True,
    credit_card: bool = True,
    ssn: bool = True,
    ip_address: bool = True,
    custom_patterns: Optional[list] = None
) -> bool:
    """Pre-flight check: True if any enabled detector matches. Text is not modified."""
    try:
        config = PiiRedactionConfig(
            email=email,
            phone=phone,
            credit_card=credit_card,
            ssn=ssn,
            ip_address=ip_address,
            custom_patterns=custom_patterns or [],
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid PII configuration: {e}")

    return any(pattern.search(text) for _, pattern in _enabled_patterns(config))
