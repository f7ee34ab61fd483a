"""
String normalization helpers shared by identity resolution and importers.

Normalized strings are used as comparison keys only; stored contact fields
keep the value the source supplied.
"""

from __future__ import annotations

import re
import unicodedata


def strip_accents(value: str) -> str:
    """Decompose unicode and drop combining marks ("José" -> "Jose")."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def collapse_whitespace(value: str | None) -> str:
    """Trim and collapse internal runs of whitespace to a single space."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()


def normalize_string(
    value: str | None,
    sort_words: bool = False,
    keep_chars: str = "",
    remove_spaces: bool = True,
) -> str:
    """
    Normalize a string for key generation and fuzzy comparison.

    Args:
        value: String to normalize
        sort_words: If True, sort words alphabetically so "Doe, Jane" and
                   "Jane Doe" normalize identically. Words are kept
                   space-separated in this mode.
        keep_chars: Extra punctuation characters to preserve (e.g. "@.")
        remove_spaces: If True, drop all spaces from the result. Ignored
                      when sort_words is set.

    Returns:
        Lowercase, accent-free string with punctuation removed
    """
    if not value:
        return ""

    normalized = strip_accents(value).lower()

    allowed = re.escape(keep_chars) if keep_chars else ""
    normalized = re.sub(rf"[^a-z0-9{allowed}\s]", " ", normalized)
    normalized = collapse_whitespace(normalized)

    if sort_words:
        return " ".join(sorted(normalized.split()))
    if remove_spaces:
        return normalized.replace(" ", "")
    return normalized
