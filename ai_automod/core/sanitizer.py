"""
PII sanitization.

Strips identifying substrings from user text before it leaves the process
for a third-party AI provider. Replacement runs from the most specific
pattern to the least specific so a card number is never half-eaten by the
phone pattern.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

MAX_CONTENT_LENGTH = 5000
TRUNCATION_SUFFIX = "... [truncated]"

# (pattern, placeholder, counts_as_pii)
_PATTERNS: Tuple[Tuple["re.Pattern[str]", str, bool], ...] = (
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN]", True),
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "[CC]", True),
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]", True),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]", True),
    (re.compile(r"https?://\S+"), "[URL]", False),
)


@dataclass(frozen=True)
class SanitizationResult:
    """Sanitized text plus metrics about what was removed."""
    original_length: int
    sanitized_length: int
    pii_removed: int
    urls_removed: int
    sanitized_content: str


class ContentSanitizer:
    """Replace PII with fixed placeholders and cap content length."""

    def __init__(self, max_length: int = MAX_CONTENT_LENGTH):
        self.max_length = max_length

    def sanitize(self, content: str) -> SanitizationResult:
        """Sanitize content by removing PII and URLs.

        Args:
            content: Raw user text

        Returns:
            SanitizationResult with the sanitized text and removal counts
        """
        if not content:
            return SanitizationResult(0, 0, 0, 0, "")

        sanitized = content
        pii_removed = 0
        urls_removed = 0

        for pattern, placeholder, is_pii in _PATTERNS:
            sanitized, count = pattern.subn(placeholder, sanitized)
            if is_pii:
                pii_removed += count
            else:
                urls_removed += count

        if len(sanitized) > self.max_length:
            sanitized = sanitized[:self.max_length] + TRUNCATION_SUFFIX

        return SanitizationResult(
            original_length=len(content),
            sanitized_length=len(sanitized),
            pii_removed=pii_removed,
            urls_removed=urls_removed,
            sanitized_content=sanitized,
        )

    def sanitize_many(self, posts: List[str]) -> Tuple[List[str], SanitizationResult]:
        """Sanitize a post history in one pass with aggregate metrics.

        Posts are joined with newlines, sanitized together and split back, so
        truncation applies to the history as a whole.
        """
        if not posts:
            return [], SanitizationResult(0, 0, 0, 0, "")

        result = self.sanitize("\n".join(posts))
        return result.sanitized_content.split("\n"), result
