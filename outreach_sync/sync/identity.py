"""
Identity resolution for contact deduplication.

Pure, deterministic functions: no I/O, no clock. Two candidates with the
same candidate_key are the same Contact.

Key rules:
- Email (trimmed, lowercased) is the primary identity
- Profile URL (no query/fragment, no trailing slash, lowercase host) is
  the fallback when no usable email is present
- Names never merge contacts; name_similarity only feeds the possible
  duplicate report
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from rapidfuzz import fuzz

from outreach_sync.utils.normalization import normalize_string

if TYPE_CHECKING:
    from outreach_sync.sync.models import ContactCandidate

logger = logging.getLogger(__name__)

EMAIL_KEY_PREFIX = "email:"
URL_KEY_PREFIX = "url:"


class ReconcileError(Exception):
    """Raised when a single candidate cannot be reconciled."""

    pass


class MissingIdentity(ReconcileError):
    """Raised when a candidate has neither a usable email nor profile URL."""

    pass


def normalize_email(value: str | None) -> str:
    """
    Normalize an email address for identity matching.

    Returns "" when the value is empty or is not shaped like an address
    (exactly one "@" with text on both sides).

    Example:
        >>> normalize_email("  A@X.com ")
        'a@x.com'
    """
    if not value:
        return ""

    email = value.strip().lower()
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or "@" in domain or " " in email:
        return ""
    return email


def normalize_profile_url(value: str | None) -> str:
    """
    Normalize a profile URL for identity matching.

    Adds https:// when the scheme is missing, lowercases scheme and host,
    drops a leading "www.", strips query string, fragment and trailing
    slashes. The path keeps its case.

    Example:
        >>> normalize_profile_url("HTTPS://www.Example.com/in/jane/?trk=x")
        'https://example.com/in/jane'
    """
    if not value:
        return ""

    raw = value.strip()
    if not raw:
        return ""
    if "://" not in raw:
        raw = f"https://{raw.lstrip('/')}"

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return ""

    host = (parts.hostname or "").lower()
    if not host:
        return ""
    if host.startswith("www."):
        host = host[4:]
    if port:
        host = f"{host}:{port}"

    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), host, path, "", ""))


def candidate_key(candidate: ContactCandidate) -> str:
    """
    Compute the identity key for a candidate.

    Returns:
        "email:<normalized email>" or "url:<normalized profile url>"

    Raises:
        MissingIdentity: If neither field yields a usable value
    """
    email = normalize_email(candidate.email)
    if email:
        return f"{EMAIL_KEY_PREFIX}{email}"

    url = normalize_profile_url(candidate.profile_url)
    if url:
        return f"{URL_KEY_PREFIX}{url}"

    raise MissingIdentity(
        f"Candidate from {candidate.source.value}"
        f"{f' ({candidate.origin})' if candidate.origin else ''} "
        "has no usable email or profile URL"
    )


def name_similarity(name1: str | None, name2: str | None) -> float:
    """
    Similarity of two person names, 0.0 to 1.0.

    Word order and accents are ignored ("Doe, José" ~ "Jose Doe").
    Empty names never match.
    """
    norm1 = normalize_string(name1, sort_words=True)
    norm2 = normalize_string(name2, sort_words=True)
    if not norm1 or not norm2:
        return 0.0
    if norm1 == norm2:
        return 1.0
    return fuzz.token_sort_ratio(norm1, norm2) / 100.0


def same_company(company1: str | None, company2: str | None) -> bool:
    """Loose company equality used alongside name similarity."""
    norm1 = normalize_string(company1)
    norm2 = normalize_string(company2)
    return bool(norm1) and norm1 == norm2
