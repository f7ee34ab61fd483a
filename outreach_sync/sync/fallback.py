"""
Primary/secondary fallback for profile collection.

Two independent source clients composed by a thin policy: read both,
merge both lists when both succeed, fall back to the secondary alone when
the primary is down, and fail only when neither source answered.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from outreach_sync.api.errors import (
    Malformed,
    RateLimited,
    SourceError,
    Unauthorized,
    Unavailable,
)
from outreach_sync.api.source import SourceClient
from outreach_sync.sync.models import ContactCandidate

logger = logging.getLogger(__name__)

# Primary failures that let the secondary stand in
FALLBACK_ERRORS = (Unavailable, RateLimited, Malformed)


class ProfileCollectionError(SourceError):
    """Raised when no configured source could provide profiles."""

    pass


@dataclass
class CollectedProfiles:
    """
    Candidates gathered from the sources, plus what went wrong.

    Attributes:
        candidates: Primary candidates first, then secondary ones
        sources_used: Names of the sources that answered
        errors: Failures of individual sources or pages
        truncated: A source still had pages when the page budget ran out
        pages_fetched: Profile pages requested across both sources
    """

    candidates: list[ContactCandidate] = field(default_factory=list)
    sources_used: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    truncated: bool = False
    pages_fetched: int = 0


class ProfileCollector:
    """
    Collects profile candidates from a primary source with a secondary fallback.

    Usage:
        collector = ProfileCollector(primary, secondary)
        collected = collector.collect("acc_1", max_pages=10)
        reconciler.reconcile("ws_1", collected.candidates)
    """

    def __init__(
        self,
        primary: SourceClient,
        secondary: Optional[SourceClient] = None,
        page_size: int = 100,
    ):
        self.primary = primary
        self.secondary = secondary
        self.page_size = page_size

    def collect(self, account_id: str, max_pages: int) -> CollectedProfiles:
        """
        Page through profiles on both sources.

        Args:
            account_id: Upstream account to read
            max_pages: Page ceiling per source

        Returns:
            CollectedProfiles with merged candidates

        Raises:
            Unauthorized: If the primary rejects the account
            ProfileCollectionError: If every configured source failed
        """
        collected = CollectedProfiles()
        primary_error: Optional[SourceError] = None

        try:
            candidates = self._page_all(self.primary, account_id, max_pages, collected)
        except Unauthorized:
            raise
        except FALLBACK_ERRORS as e:
            primary_error = e
            collected.errors.append(f"{self.primary.name}: {e}")
            logger.warning(f"Primary source failed, using fallback: {e}")
        else:
            collected.candidates.extend(candidates)
            collected.sources_used.append(self.primary.name)

        if self.secondary is not None:
            try:
                candidates = self._page_all(
                    self.secondary, account_id, max_pages, collected
                )
            except SourceError as e:
                collected.errors.append(f"{self.secondary.name}: {e}")
                logger.warning(f"Secondary source failed: {e}")
                if primary_error is not None:
                    raise ProfileCollectionError(
                        f"All profile sources failed: {primary_error}; {e}"
                    ) from e
            else:
                collected.candidates.extend(candidates)
                collected.sources_used.append(self.secondary.name)
        elif primary_error is not None:
            raise ProfileCollectionError(
                f"Primary profile source failed and no fallback is configured: "
                f"{primary_error}"
            ) from primary_error

        logger.info(
            f"Collected {len(collected.candidates)} profile candidates from "
            f"{', '.join(collected.sources_used)}"
        )
        return collected

    def _page_all(
        self,
        source: SourceClient,
        account_id: str,
        max_pages: int,
        collected: CollectedProfiles,
    ) -> list[ContactCandidate]:
        """
        Read every profile page up to max_pages.

        A failure on the first page fails the source; a failure on a later
        page keeps what was read and marks the collection truncated.
        """
        candidates: list[ContactCandidate] = []
        cursor: Optional[str] = None
        for page_number in range(1, max_pages + 1):
            collected.pages_fetched += 1
            try:
                page = source.list_profiles(
                    account_id, cursor=cursor, limit=self.page_size
                )
            except Unauthorized:
                raise
            except SourceError as e:
                if page_number == 1:
                    raise
                collected.errors.append(f"{source.name} page {page_number}: {e}")
                collected.truncated = True
                return candidates

            for rejected in page.rejected:
                collected.errors.append(
                    f"{source.name} page {page_number}: skipped profile "
                    f"{rejected.payload_ref}"
                )
            candidates.extend(page.items)
            cursor = page.next_cursor
            if not cursor:
                return candidates

        collected.truncated = True
        return candidates
