"""
Typed errors raised by source adapters.

The engine branches on these types: RateLimited shortens the run,
Unauthorized aborts it and disables the schedule key, Unavailable (and
SourceTimeout) and Malformed skip one unit of work.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional

# Characters of raw payload kept on a Malformed error for diagnosis
PAYLOAD_EXCERPT_LENGTH = 200


class SourceError(Exception):
    """Base class for upstream source failures."""

    kind = "source_error"

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class RateLimited(SourceError):
    """Raised when the upstream rate limit is still exceeded after retries."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, source)
        self.retry_after = retry_after


class Unauthorized(SourceError):
    """Raised when the upstream rejects the account's credentials."""

    kind = "unauthorized"


class Unavailable(SourceError):
    """Raised when the upstream cannot serve the request right now."""

    kind = "unavailable"


class SourceTimeout(Unavailable):
    """Raised when a page fetch exceeds its timeout."""

    kind = "timeout"


class Malformed(SourceError):
    """
    Raised when an upstream payload cannot be interpreted.

    Attributes:
        payload_ref: Short stable hash of the raw payload, logged so the
                    payload can be found again in debug logs
        excerpt: Truncated rendering of the raw payload
    """

    kind = "malformed"

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        payload_ref: Optional[str] = None,
        excerpt: str = "",
    ):
        super().__init__(message, source)
        self.payload_ref = payload_ref
        self.excerpt = excerpt

    @classmethod
    def from_payload(
        cls, message: str, payload: Any, source: Optional[str] = None
    ) -> "Malformed":
        """Build a Malformed error carrying a reference to the raw payload."""
        try:
            rendered = json.dumps(payload, sort_keys=True, default=str)
        except (TypeError, ValueError):
            rendered = repr(payload)
        payload_ref = hashlib.sha1(rendered.encode("utf-8")).hexdigest()[:12]
        return cls(
            f"{message} [payload {payload_ref}]",
            source=source,
            payload_ref=payload_ref,
            excerpt=rendered[:PAYLOAD_EXCERPT_LENGTH],
        )
