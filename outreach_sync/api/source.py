"""
The source client contract shared by both upstream adapters.

Pagination is cursor based: upstream data shifts between requests, so
offsets would skip or repeat items.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Protocol, TypeVar

from outreach_sync.api.errors import Malformed
from outreach_sync.sync.models import ContactCandidate, RemoteConversation, RemoteMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """
    One page of a cursor-paginated listing.

    Attributes:
        items: Successfully parsed items, in upstream order
        next_cursor: Cursor for the following page, None when exhausted
        rejected: Items that could not be parsed; the rest of the page is
                 still usable
    """

    items: list[T] = field(default_factory=list)
    next_cursor: Optional[str] = None
    rejected: list[Malformed] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return not self.next_cursor


class SourceClient(Protocol):
    """Paginated read access to one upstream platform API."""

    name: str

    def list_conversations(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[RemoteConversation]: ...

    def list_messages(
        self,
        account_id: str,
        conversation_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page[RemoteMessage]: ...

    def list_profiles(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[ContactCandidate]: ...


def parse_page(
    raw_items: Any,
    parser: Callable[[dict[str, Any]], T],
    next_cursor: Optional[str],
    source: str,
) -> Page[T]:
    """
    Parse raw page items one by one.

    A bad item becomes a Malformed entry in Page.rejected instead of
    failing the page.

    Raises:
        Malformed: If the items container itself is not a list
    """
    if not isinstance(raw_items, list):
        raise Malformed.from_payload(
            f"Expected a list of items, got {type(raw_items).__name__}",
            raw_items,
            source=source,
        )

    page: Page[T] = Page(next_cursor=next_cursor or None)
    for raw in _as_dicts(raw_items, page, source):
        try:
            page.items.append(parser(raw))
        except (KeyError, TypeError, ValueError) as e:
            error = Malformed.from_payload(f"Unparseable item: {e}", raw, source=source)
            logger.debug(f"{source}: rejected item {error.payload_ref}: {error.excerpt}")
            page.rejected.append(error)
    return page


def _as_dicts(
    raw_items: list[Any], page: Page[Any], source: str
) -> Iterable[dict[str, Any]]:
    for raw in raw_items:
        if isinstance(raw, dict):
            yield raw
        else:
            page.rejected.append(
                Malformed.from_payload("Item is not an object", raw, source=source)
            )


# Shared field parsing for the adapters

_DEGREE_WORDS = {
    "1st": 1,
    "first": 1,
    "first_degree": 1,
    "distance_1": 1,
    "2nd": 2,
    "second": 2,
    "second_degree": 2,
    "distance_2": 2,
    "3rd": 3,
    "third": 3,
    "third_degree": 3,
    "distance_3": 3,
}


def parse_degree(value: Any) -> Optional[int]:
    """
    Parse a connection degree from the forms upstreams report.

    Accepts 1/2/3, "2", "2nd", "SECOND_DEGREE", "DISTANCE_2". Anything
    else (including "out_of_network") is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1 <= value <= 3 else None
    text = str(value).strip().lower()
    if text.isdigit():
        return parse_degree(int(text))
    return _DEGREE_WORDS.get(text)


def optional_int(value: Any) -> Optional[int]:
    """Non-negative int or None; raises ValueError on garbage."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer, got {value!r}")
    number = int(value)
    if number < 0:
        raise ValueError(f"Expected a non-negative integer, got {number}")
    return number


def text(value: Any) -> str:
    """Stringify a scalar field, mapping None to ""."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"Expected a scalar, got {type(value).__name__}")
    return str(value).strip()
