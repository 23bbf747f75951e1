"""
Review queue query shapes.

A queue request is one of three explicit configurations instead of a loose
bag of optional filters:

    SkipQuery    no acting user; nothing is read
    SearchQuery  free-text lookup, best-effort ordering, single page
    PageQuery    keyset-paginated scan in a fixed sort order
"""
from __future__ import annotations
import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from recall.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MIN_PAGE_SIZE
from recall.domain.common.errors import InvalidCursorError
from recall.domain.concept.models import Concept

MIN_SEARCH_LENGTH = 2


class QueueView(str, Enum):
    ALL = "all"
    DUE = "due"
    THIN = "thin"
    CONFLICT = "conflict"


class QueueSort(str, Enum):
    RECENT = "recent"
    NEXT_REVIEW = "nextReview"


class QueueMode(str, Enum):
    STANDARD = "standard"
    SEARCH = "search"
    SKIP = "skip"


@dataclass(frozen=True)
class SkipQuery:
    mode = QueueMode.SKIP


@dataclass(frozen=True)
class SearchQuery:
    term: str
    view: QueueView = QueueView.ALL
    page_size: int = DEFAULT_PAGE_SIZE
    mode = QueueMode.SEARCH


@dataclass(frozen=True)
class PageQuery:
    view: QueueView = QueueView.ALL
    sort: QueueSort = QueueSort.NEXT_REVIEW
    cursor: Optional["QueueCursor"] = None
    page_size: int = DEFAULT_PAGE_SIZE
    mode = QueueMode.STANDARD


QueueQuery = Union[SkipQuery, SearchQuery, PageQuery]


@dataclass(frozen=True)
class QueueCursor:
    """Position just after the last row served: its sort key (epoch ms) and id."""
    view: QueueView
    sort: QueueSort
    key: int
    concept_id: str

    def encode(self) -> str:
        payload = json.dumps(
            {"v": self.view.value, "s": self.sort.value, "k": self.key, "i": self.concept_id},
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "QueueCursor":
        padded = token + "=" * (-len(token) % 4)
        try:
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
            return cls(
                view=QueueView(data["v"]),
                sort=QueueSort(data["s"]),
                key=int(data["k"]),
                concept_id=str(data["i"]),
            )
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
            raise InvalidCursorError(f"Malformed cursor: {e}") from e


@dataclass
class QueuePage:
    concepts: List[Concept]
    continue_cursor: Optional[str]
    is_done: bool
    server_time: datetime
    mode: QueueMode = QueueMode.STANDARD


@dataclass(frozen=True)
class ViewThresholds:
    thin: float = 0.0
    conflict: float = 0.0


def clamp_page_size(page_size: Optional[int]) -> int:
    if not page_size:
        return DEFAULT_PAGE_SIZE
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, page_size))


def build_queue_query(
    owner_id: Optional[str],
    view: Optional[str] = None,
    sort: Optional[str] = None,
    search: Optional[str] = None,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None,
) -> QueueQuery:
    """Resolve raw request arguments into exactly one query configuration."""
    if not owner_id:
        return SkipQuery()

    resolved_view = QueueView(view or QueueView.ALL.value)
    size = clamp_page_size(page_size)

    term = (search or "").strip()
    if len(term) >= MIN_SEARCH_LENGTH:
        return SearchQuery(term=term, view=resolved_view, page_size=size)

    resolved_sort = QueueSort(sort or QueueSort.NEXT_REVIEW.value)
    decoded = None
    if cursor:
        decoded = QueueCursor.decode(cursor)
        if decoded.view is not resolved_view or decoded.sort is not resolved_sort:
            raise InvalidCursorError("Cursor was issued for a different view or sort order.")
    return PageQuery(view=resolved_view, sort=resolved_sort, cursor=decoded, page_size=size)


def matches_view(concept: Concept, view: QueueView, now: datetime, thresholds: ViewThresholds) -> bool:
    """In-memory twin of the SQL view predicates; used where results are not SQL-filtered."""
    if view is QueueView.ALL:
        return True
    if view is QueueView.DUE:
        due_at = (concept.card.next_review if concept.card else None) or concept.created_at
        return due_at <= now
    if view is QueueView.THIN:
        return concept.thin_score is not None and concept.thin_score > thresholds.thin
    if view is QueueView.CONFLICT:
        return concept.conflict_score is not None and concept.conflict_score > thresholds.conflict
    return True
