"""
Entry points that turn outside data into ContactCandidates.

Each importer only produces candidates; merging happens in
ContactReconciler, the same path the API sources use.
"""

import csv
import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, TextIO, Union

from outreach_sync.api.source import parse_degree
from outreach_sync.sync.models import CONTACT_FIELDS, ContactCandidate, SourceTag

logger = logging.getLogger(__name__)


class CandidateImportError(Exception):
    """Raised when an import source cannot be read at all."""

    pass


# Accepted header spellings per field, compared after lowercasing and
# replacing "_" and "-" with spaces
HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "full name", "contact name", "display name"),
    "first_name": ("first name", "firstname", "given name"),
    "last_name": ("last name", "lastname", "surname", "family name"),
    "email": ("email", "email address", "e mail", "work email", "mail"),
    "title": ("title", "job title", "headline", "position", "role"),
    "company": ("company", "company name", "organization", "organisation", "employer"),
    "profile_url": (
        "profile url",
        "linkedin",
        "linkedin url",
        "linkedin profile",
        "profile",
        "url",
    ),
    "phone": ("phone", "phone number", "mobile", "telephone", "tel"),
    "connection_degree": ("degree", "connection degree", "connection", "distance"),
}

# Keys accepted from search extraction records
EXTRACTION_KEYS: dict[str, tuple[str, ...]] = {
    "name": ("name", "full_name", "fullName"),
    "email": ("email",),
    "title": ("title", "headline", "occupation"),
    "company": ("company", "current_company", "companyName"),
    "profile_url": ("profile_url", "linkedin_url", "profileUrl", "url"),
    "phone": ("phone",),
    "connection_degree": ("connection_degree", "degree", "network_distance"),
}


@dataclass
class ImportReport:
    """Candidates read from one import, plus per-row problems."""

    candidates: list[ContactCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rows_read: int = 0


def _canonical_header(header: str) -> str:
    return " ".join(header.strip().lower().replace("_", " ").replace("-", " ").split())


def map_headers(headers: Iterable[str]) -> dict[str, str]:
    """
    Map CSV headers to candidate fields.

    Returns:
        Dict of original header -> field name; unrecognized headers are left out
    """
    lookup = {
        alias: field_name
        for field_name, aliases in HEADER_ALIASES.items()
        for alias in aliases
    }
    mapping: dict[str, str] = {}
    taken: set[str] = set()
    for header in headers:
        field_name = lookup.get(_canonical_header(header or ""))
        if field_name and field_name not in taken:
            mapping[header] = field_name
            taken.add(field_name)
    return mapping


def candidates_from_csv(
    source: Union[TextIO, Path, str], source_tag: SourceTag = SourceTag.CSV
) -> ImportReport:
    """
    Read contact candidates from CSV.

    The first row is the header. Rows with extra cells or an unreadable
    connection degree are reported in ImportReport.errors and skipped;
    blank rows are ignored.

    Args:
        source: Open text file, path, or CSV text
        source_tag: Tag recorded on each candidate

    Returns:
        ImportReport with candidates and row errors

    Raises:
        CandidateImportError: If the file cannot be read or has no usable header
    """
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise CandidateImportError(f"Cannot read {source}: {e}") from e
        handle: TextIO = io.StringIO(text)
    elif isinstance(source, str):
        handle = io.StringIO(source)
    else:
        handle = source

    reader = csv.DictReader(handle)
    try:
        headers = reader.fieldnames or []
    except csv.Error as e:
        raise CandidateImportError(f"Invalid CSV header: {e}") from e

    mapping = map_headers(headers)
    identity_fields = {"email", "profile_url"}
    if not identity_fields & set(mapping.values()):
        raise CandidateImportError(
            "CSV has no email or profile URL column "
            f"(found: {', '.join(h for h in headers if h) or 'nothing'})"
        )
    logger.debug(f"CSV header mapping: {mapping}")

    report = ImportReport()
    try:
        for row in reader:
            # Header is line 1
            line = reader.line_num
            if not any((v or "").strip() for k, v in row.items() if k is not None):
                continue
            report.rows_read += 1

            if None in row:
                report.errors.append(f"row {line}: more cells than header columns")
                continue

            values = {
                mapping[h]: (row.get(h) or "").strip() for h in mapping
            }
            try:
                report.candidates.append(
                    _candidate_from_values(values, source_tag, f"row {line}")
                )
            except ValueError as e:
                report.errors.append(f"row {line}: {e}")
    except csv.Error as e:
        report.errors.append(f"line {reader.line_num}: {e}; stopped reading")

    logger.info(
        f"Read {len(report.candidates)} candidates from CSV "
        f"({len(report.errors)} row errors)"
    )
    return report


def _candidate_from_values(
    values: dict[str, Any], source_tag: SourceTag, origin: Optional[str]
) -> ContactCandidate:
    name = str(values.get("name") or "").strip()
    if not name:
        first = str(values.get("first_name") or "").strip()
        last = str(values.get("last_name") or "").strip()
        name = f"{first} {last}".strip()

    raw_degree = values.get("connection_degree")
    degree = parse_degree(raw_degree)
    if raw_degree not in (None, "") and degree is None:
        raise ValueError(f"unrecognized connection degree {raw_degree!r}")

    return ContactCandidate(
        source=source_tag,
        name=name,
        email=str(values.get("email") or "").strip(),
        title=str(values.get("title") or "").strip(),
        company=str(values.get("company") or "").strip(),
        profile_url=str(values.get("profile_url") or "").strip(),
        phone=str(values.get("phone") or "").strip(),
        connection_degree=degree,
        origin=origin,
    )


def candidate_from_manual(fields: dict[str, Any]) -> ContactCandidate:
    """
    Build a manual-entry candidate from form fields.

    Raises:
        ValueError: On unknown field names or an unreadable degree
    """
    allowed = set(CONTACT_FIELDS) | {"first_name", "last_name", "connection_degree"}
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValueError(f"Unknown contact field(s): {', '.join(unknown)}")
    return _candidate_from_values(fields, SourceTag.MANUAL, "manual entry")


def candidates_from_extraction(records: Iterable[Any]) -> ImportReport:
    """
    Convert search-extraction records into candidates.

    Records that are not objects or carry an unreadable degree are
    reported and skipped.
    """
    report = ImportReport()
    for position, record in enumerate(records, start=1):
        report.rows_read += 1
        if not isinstance(record, dict):
            report.errors.append(f"record {position}: not an object")
            continue

        values: dict[str, Any] = {}
        for field_name, keys in EXTRACTION_KEYS.items():
            for key in keys:
                if record.get(key) not in (None, ""):
                    values[field_name] = record[key]
                    break
        if "name" not in values:
            values["first_name"] = record.get("first_name") or record.get("firstName")
            values["last_name"] = record.get("last_name") or record.get("lastName")

        try:
            report.candidates.append(
                _candidate_from_values(
                    values, SourceTag.EXTRACTION, f"record {position}"
                )
            )
        except ValueError as e:
            report.errors.append(f"record {position}: {e}")
    return report
