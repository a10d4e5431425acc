"""
Sanitizers applied at the pipeline's text boundaries.

Input side: note text is untrusted and may try to steer the extraction model.
Output side: extracted strings and event titles are rendered and persisted
directly by downstream consumers.
"""

import re

from handoff_patterns.domain.models import BANNED_CLINICAL_TERMS

MAX_INPUT_LENGTH = 5000
MAX_TITLE_LENGTH = 100

REDACTED = "[REDACTED]"

_INJECTION_PATTERNS = (
    re.compile(r"IGNORE.{0,30}PREVIOUS.{0,30}INSTRUCTIONS", re.IGNORECASE),
    re.compile(r"SYSTEM.{0,20}PROMPT", re.IGNORECASE),
    # JSON objects mimicking the extraction output schema
    re.compile(r"\{[^}]*\"category\"[^}]*\}", re.IGNORECASE),
)
_CODE_FENCE = re.compile(r"```")
_UNSAFE_CHARS = re.compile(r"[<>\"';]")
_SQL_COMMENT = re.compile(r"--")


def sanitize_input(text: str, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Truncate note text and strip prompt-injection attempts."""
    sanitized = text[:max_length]
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub(REDACTED, sanitized)
    sanitized = _CODE_FENCE.sub("", sanitized)
    return sanitized.strip()


def sanitize_output(text: str) -> str:
    """Remove angle brackets, quotes, semicolons and SQL comment markers."""
    return _SQL_COMMENT.sub("", _UNSAFE_CHARS.sub("", text)).strip()


def sanitize_title(title: str | None, max_length: int = MAX_TITLE_LENGTH) -> str | None:
    """Sanitized, truncated event title, or None when nothing usable remains."""
    if not title:
        return None
    cleaned = _SQL_COMMENT.sub("", _UNSAFE_CHARS.sub("", title))[:max_length].strip()
    return cleaned or None


def contains_banned_term(text: str) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in BANNED_CLINICAL_TERMS)
