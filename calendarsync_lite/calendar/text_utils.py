"""Text helpers shared by the feed normalizers."""

from __future__ import annotations

import re

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_EMAIL_LINE = re.compile(r"Email:\s*[^\n]*", re.IGNORECASE)
_BLANK_RUN = re.compile(r"\n\s*\n\s*\n")

EMAIL_PLACEHOLDER = "[email removed]"


def sanitize_description(text: str | None) -> str:
    """Strip e-mail addresses and ``Email:`` lines from an event description.

    Blank-line runs left behind are collapsed and the result is trimmed.
    """
    if not text:
        return ""
    sanitized = _EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, text)
    sanitized = _EMAIL_LINE.sub("", sanitized)
    sanitized = _BLANK_RUN.sub("\n\n", sanitized)
    return sanitized.strip()


def normalize_title(title: str) -> str:
    """Casefold and collapse whitespace so cosmetic differences do not split keys."""
    return " ".join(title.casefold().split())


def truncate(text: str, limit: int) -> str:
    """Truncate ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."
