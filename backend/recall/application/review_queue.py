"""Review queue: paged concept listings, search, and next-item selection."""
from __future__ import annotations
import random
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from recall.core.clock import Clock, SystemClock, to_millis
from recall.core.config import MAX_REVIEW_CANDIDATES, MAX_SEARCH_RESULTS
from recall.domain.concept.models import Concept, Phrasing
from recall.domain.concept.selection import select_phrasing_for_concept
from recall.domain.review.queue import (
    PageQuery,
    QueueCursor,
    QueueMode,
    QueuePage,
    QueueQuery,
    QueueSort,
    SearchQuery,
    SkipQuery,
    ViewThresholds,
    matches_view,
)
from recall.domain.review.shuffle import get_shuffle_seed, shuffle_with_seed
from recall.domain.review.stats import CardStats
from recall.domain.scheduling.models import SchedulerParameters
from recall.domain.scheduling.scheduler import DEFAULT_PARAMETERS, get_retrievability
from recall.persistence.interfaces.concept_repository import ConceptRepository

URGENT_TIER_WINDOW = 0.05


@dataclass
class ReviewItem:
    concept: Concept
    phrasing: Phrasing
    options: List[str]
    retrievability: float
    selection_reason: str


def _sort_key(concept: Concept, sort: QueueSort) -> int:
    if sort is QueueSort.RECENT:
        return to_millis(concept.created_at)
    due_at = concept.card.next_review if concept.card else None
    return to_millis(due_at or concept.created_at)


class ReviewQueueSelector:
    def __init__(
        self,
        repo: ConceptRepository,
        clock: Optional[Clock] = None,
        thresholds: ViewThresholds = ViewThresholds(),
        params: SchedulerParameters = DEFAULT_PARAMETERS,
    ):
        self._repo = repo
        self._clock = clock or SystemClock()
        self._thresholds = thresholds
        self._params = params

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def select(self, owner_id: Optional[str], query: QueueQuery) -> QueuePage:
        now = self._clock.now()

        if isinstance(query, SkipQuery):
            return QueuePage(concepts=[], continue_cursor=None, is_done=True, server_time=now, mode=QueueMode.SKIP)

        if isinstance(query, SearchQuery):
            limit = min(query.page_size, MAX_SEARCH_RESULTS)
            found = self._repo.search(owner_id, query.term, limit)
            concepts = [c for c in found if matches_view(c, query.view, now, self._thresholds)]
            return QueuePage(concepts=concepts, continue_cursor=None, is_done=True, server_time=now, mode=QueueMode.SEARCH)

        if not isinstance(query, PageQuery):
            raise TypeError(f"Unsupported queue query: {query!r}")

        concepts, has_more = self._repo.list_page(
            owner_id,
            query.view,
            query.sort,
            query.cursor,
            query.page_size,
            now,
            self._thresholds,
        )
        continue_cursor = None
        if has_more and concepts:
            last = concepts[-1]
            continue_cursor = QueueCursor(
                view=query.view,
                sort=query.sort,
                key=_sort_key(last, query.sort),
                concept_id=last.id,
            ).encode()
        return QueuePage(
            concepts=concepts,
            continue_cursor=continue_cursor,
            is_done=continue_cursor is None,
            server_time=now,
            mode=QueueMode.STANDARD,
        )

    # ------------------------------------------------------------------
    # Review session
    # ------------------------------------------------------------------
    def next_review_item(self, owner_id: str) -> Optional[ReviewItem]:
        """The most urgent due concept (or, failing that, a new one) with a phrasing to show."""
        now = self._clock.now()
        candidates = self._repo.list_due_candidates(owner_id, now, MAX_REVIEW_CANDIDATES)
        if not candidates:
            candidates = self._repo.list_new_candidates(owner_id, MAX_REVIEW_CANDIDATES)
        if not candidates:
            return None

        scored = [
            (get_retrievability(c.card, now, self._params) if c.card else -1.0, c)
            for c in candidates
        ]
        scored.sort(key=lambda pair: pair[0])

        lowest = scored[0][0]
        urgent = [pair for pair in scored if pair[0] - lowest <= URGENT_TIER_WINDOW]
        rest = scored[len(urgent):]
        random.Random(f"{owner_id}:{to_millis(now)}").shuffle(urgent)

        for retrievability, concept in urgent + rest:
            decision = select_phrasing_for_concept(
                self._repo.get_phrasings(concept.id),
                canonical_phrasing_id=concept.canonical_phrasing_id,
            )
            if decision.phrasing is None:
                continue
            phrasing = decision.phrasing
            logger.debug(
                "Next review for owner={}: concept={} phrasing={} ({})",
                owner_id, concept.id, phrasing.id, decision.reason,
            )
            return ReviewItem(
                concept=concept,
                phrasing=phrasing,
                options=shuffle_with_seed(phrasing.options, get_shuffle_seed(phrasing.id, owner_id)),
                retrievability=retrievability,
                selection_reason=decision.reason,
            )
        return None

    def due_count(self, owner_id: str) -> int:
        return self._repo.count_due(owner_id, self._clock.now())

    def card_stats(self, owner_id: str) -> CardStats:
        return self._repo.get_card_stats(owner_id, self._clock.now())
