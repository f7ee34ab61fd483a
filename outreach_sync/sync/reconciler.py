"""
Contact reconciliation.

Folds source-tagged ContactCandidates into canonical Contacts. Every
entry point (both APIs, CSV import, manual entry, search extraction)
goes through ContactReconciler.reconcile, so deduplication lives in one
place.

Merge rule, field by field:
- a non-empty value beats an empty one
- among non-empty values the higher-precedence source wins
  (primary-api > secondary-api > manual > extraction > csv); on equal
  precedence the later value wins
- a field last set manually is never overwritten by an automated source,
  and a manual value always applies
"""

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from outreach_sync.storage.db import StoreError, SyncDatabase, VersionConflict
from outreach_sync.sync.identity import (
    EMAIL_KEY_PREFIX,
    URL_KEY_PREFIX,
    MissingIdentity,
    ReconcileError,
    candidate_key,
    name_similarity,
    normalize_email,
    same_company,
)
from outreach_sync.sync.models import (
    API_SOURCES,
    CONTACT_FIELDS,
    SOURCE_PRECEDENCE,
    Contact,
    ContactCandidate,
    SourceTag,
)

logger = logging.getLogger(__name__)

# Name similarity at or above which a new contact is reported as a
# possible duplicate of an existing one at the same company
DUPLICATE_NAME_THRESHOLD = 0.92

# Attempts at the compare-and-set write before the candidate is dropped
MAX_WRITE_ATTEMPTS = 3

# Quality score weights
SCORE_PROFILE_URL = 30
SCORE_TITLE = 15
SCORE_COMPANY = 15
SCORE_API_SOURCE = 20
SCORE_BY_DEGREE = {1: 20, 2: 10}


@dataclass
class PotentialDuplicate:
    """
    A newly created contact whose name closely matches an existing contact
    at the same company. Reported for review, never merged.
    """

    contact: Contact
    existing: Contact
    similarity: float


@dataclass
class ReconcileResult:
    """
    Outcome of one reconcile call.

    Attributes:
        created: Contacts created
        updated: Existing contacts whose merged state changed
        merged: Candidates folded into a contact already represented by an
               existing contact or an earlier candidate in the batch
        unchanged: Existing contacts the batch did not change
        dropped: Candidates discarded (no identity, or write failed)
        errors: One message per dropped candidate
        possible_duplicates: Name-based duplicate report
        contacts: Final stored contact per identity key touched
    """

    created: int = 0
    updated: int = 0
    merged: int = 0
    unchanged: int = 0
    dropped: int = 0
    errors: list[str] = field(default_factory=list)
    possible_duplicates: list[PotentialDuplicate] = field(default_factory=list)
    contacts: dict[str, Contact] = field(default_factory=dict)

    @property
    def synced(self) -> int:
        """Contacts created or updated."""
        return self.created + self.updated

    def summary(self) -> str:
        lines = [
            "Reconcile Summary:",
            f"  Created: {self.created}",
            f"  Updated: {self.updated}",
            f"  Merged duplicates: {self.merged}",
            f"  Unchanged: {self.unchanged}",
        ]
        if self.dropped:
            lines.append(f"  Dropped: {self.dropped}")
        if self.possible_duplicates:
            lines.append(f"  Possible duplicates: {len(self.possible_duplicates)}")
            for dup in self.possible_duplicates:
                lines.append(
                    f"    - {dup.contact.name} ~ {dup.existing.name} "
                    f"({dup.existing.company}, {dup.similarity:.0%})"
                )
        return "\n".join(lines)


def quality_score(contact: Contact) -> int:
    """Score 0-100 from profile URL, title, company, API provenance and degree."""
    score = 0
    if contact.profile_url:
        score += SCORE_PROFILE_URL
    if contact.title:
        score += SCORE_TITLE
    if contact.company:
        score += SCORE_COMPANY
    if contact.sources & API_SOURCES:
        score += SCORE_API_SOURCE
    if contact.connection_degree is not None:
        score += SCORE_BY_DEGREE.get(contact.connection_degree, 0)
    return score


def merge_candidate(contact: Contact, candidate: ContactCandidate) -> Contact:
    """
    Merge one candidate into a contact, field by field.

    Returns a new Contact; the input is not modified.
    """
    merged = copy.deepcopy(contact)
    source = candidate.source
    is_manual = source == SourceTag.MANUAL

    for name in CONTACT_FIELDS:
        value = candidate.value(name)
        if name == "email":
            value = normalize_email(value)
        if not value:
            continue

        current = getattr(merged, name)
        current_source = merged.field_sources.get(name)

        if not is_manual and current and current_source == SourceTag.MANUAL:
            continue
        if (
            is_manual
            or not current
            or current_source is None
            or SOURCE_PRECEDENCE[source] >= SOURCE_PRECEDENCE[current_source]
        ):
            setattr(merged, name, value)
            merged.field_sources[name] = source

    if candidate.connection_degree is not None and (
        merged.connection_degree is None or source in API_SOURCES or is_manual
    ):
        merged.connection_degree = candidate.connection_degree

    merged.sources.add(source)
    merged.quality_score = quality_score(merged)
    return merged


class ContactReconciler:
    """
    Reconciles contact candidates into the store.

    Usage:
        reconciler = ContactReconciler(database=db)
        result = reconciler.reconcile("ws_1", candidates)
        print(result.summary())

        reconciler.apply_manual_edit("ws_1", "jane@x.com", {"title": "CTO"})
    """

    def __init__(self, database: SyncDatabase):
        self.database = database

    def reconcile(
        self, workspace_id: str, candidates: Iterable[ContactCandidate]
    ) -> ReconcileResult:
        """
        Reconcile a batch of candidates.

        A candidate without identity, or one whose write keeps conflicting,
        is dropped and recorded; the rest of the batch proceeds.

        Args:
            workspace_id: Workspace the contacts belong to
            candidates: Candidates from any entry point

        Returns:
            ReconcileResult with counts, errors and the duplicate report
        """
        result = ReconcileResult()

        # Group by identity, keeping batch order within and across groups
        groups: dict[str, list[ContactCandidate]] = {}
        for candidate in candidates:
            try:
                key = candidate_key(candidate)
            except MissingIdentity as e:
                result.dropped += 1
                result.errors.append(str(e))
                logger.warning(f"Dropped candidate: {e}")
                continue
            groups.setdefault(key, []).append(candidate)

        created: list[Contact] = []
        for key, group in groups.items():
            try:
                stored, existed, changed = self._write(workspace_id, key, group)
            except (ReconcileError, StoreError) as e:
                result.dropped += len(group)
                result.errors.append(f"{key}: {e}")
                logger.error(f"Failed to reconcile {key}: {e}")
                continue

            result.contacts[key] = stored
            result.merged += len(group) if existed else len(group) - 1
            if not existed:
                result.created += 1
                created.append(stored)
            elif changed:
                result.updated += 1
            else:
                result.unchanged += 1

        if created:
            result.possible_duplicates = self._find_possible_duplicates(
                workspace_id, created
            )

        logger.info(
            f"Reconciled {sum(len(g) for g in groups.values())} candidates for "
            f"{workspace_id}: {result.created} created, {result.updated} updated, "
            f"{result.merged} merged, {result.dropped} dropped"
        )
        return result

    def _write(
        self, workspace_id: str, key: str, group: list[ContactCandidate]
    ) -> tuple[Contact, bool, bool]:
        """
        Merge a group onto the stored contact and write it, retrying on conflict.

        Returns:
            Tuple of (stored contact, existed before, changed)
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            existing = self.database.get_contact(workspace_id, key)
            merged = existing or Contact(workspace_id=workspace_id, identity_key=key)
            for candidate in group:
                merged = merge_candidate(merged, candidate)

            if existing is not None and merged.snapshot() == existing.snapshot():
                return existing, True, False

            try:
                stored = self.database.upsert_contact(merged)
            except VersionConflict as e:
                logger.debug(
                    f"Contact {key} changed concurrently "
                    f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS}): {e}"
                )
                continue
            return stored, existing is not None, True

        raise ReconcileError(
            f"Contact kept changing concurrently; gave up after "
            f"{MAX_WRITE_ATTEMPTS} attempts"
        )

    def _find_possible_duplicates(
        self, workspace_id: str, created: list[Contact]
    ) -> list[PotentialDuplicate]:
        new_keys = {c.identity_key for c in created}
        existing = [
            c
            for c in self.database.list_contacts(workspace_id)
            if c.identity_key not in new_keys and c.name and c.company
        ]

        duplicates = []
        for contact in created:
            if not contact.name or not contact.company:
                continue
            for other in existing:
                if not same_company(contact.company, other.company):
                    continue
                similarity = name_similarity(contact.name, other.name)
                if similarity >= DUPLICATE_NAME_THRESHOLD:
                    logger.info(
                        f"Possible duplicate: {contact.identity_key} ~ "
                        f"{other.identity_key} ({similarity:.2f})"
                    )
                    duplicates.append(PotentialDuplicate(contact, other, similarity))
        return duplicates

    def apply_manual_edit(
        self, workspace_id: str, identity: str, fields: dict[str, Any]
    ) -> Contact:
        """
        Apply a human edit to a contact.

        Fields set here become sticky against automated sources. The edit
        is merged into the contact the identity names, even when it adds an
        email to a contact keyed by its profile URL.

        Args:
            workspace_id: Workspace of the contact
            identity: Identity key ("email:..."/"url:..."), email address or
                     profile URL of the contact
            fields: Field values to set (name, email, title, company,
                   profile_url, phone, connection_degree)

        Returns:
            The stored contact

        Raises:
            ReconcileError: If a field is unknown or the edit cannot be applied
        """
        unknown = sorted(set(fields) - set(CONTACT_FIELDS) - {"connection_degree"})
        if unknown:
            raise ReconcileError(f"Unknown contact field(s): {', '.join(unknown)}")

        key = lookup_key(identity)
        if key is None:
            raise ReconcileError(f"Cannot identify a contact from '{identity}'")

        values: dict[str, Any] = {
            k: ("" if v is None else v) for k, v in fields.items()
        }
        if identity.startswith(EMAIL_KEY_PREFIX):
            values.setdefault("email", identity[len(EMAIL_KEY_PREFIX):])
        elif identity.startswith(URL_KEY_PREFIX):
            values.setdefault("profile_url", identity[len(URL_KEY_PREFIX):])
        elif "@" in identity:
            values.setdefault("email", identity)
        else:
            values.setdefault("profile_url", identity)
        degree = values.pop("connection_degree", None)

        candidate = ContactCandidate(
            source=SourceTag.MANUAL,
            connection_degree=int(degree) if degree not in (None, "") else None,
            origin="manual edit",
            **{k: str(v) for k, v in values.items()},
        )
        # Keep the identified contact's key when the edit adds an email
        try:
            stored, existed, changed = self._write(workspace_id, key, [candidate])
        except StoreError as e:
            raise ReconcileError(f"{key}: {e}") from e

        if not existed:
            self._find_possible_duplicates(workspace_id, [stored])
        logger.info(
            f"Manual edit of {key}: "
            f"{'created' if not existed else 'updated' if changed else 'unchanged'}"
        )
        return stored


def lookup_key(identity: str) -> Optional[str]:
    """Identity key for an identity key, email or profile URL, or None."""
    if identity.startswith((EMAIL_KEY_PREFIX, URL_KEY_PREFIX)):
        return identity
    kind = "email" if "@" in identity else "profile_url"
    try:
        return candidate_key(
            ContactCandidate(source=SourceTag.MANUAL, **{kind: identity})
        )
    except MissingIdentity:
        return None


def find_contact(
    database: SyncDatabase, workspace_id: str, identity: str
) -> Optional[Contact]:
    """Look up a contact by identity key, email or profile URL."""
    key = lookup_key(identity)
    if key is None:
        return None
    return database.get_contact(workspace_id, key)
