"""Abstract repository interface for the Concept aggregate (concepts, phrasings, interactions)."""
from __future__ import annotations
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from recall.domain.concept.models import Concept, Interaction, Phrasing
from recall.domain.review.queue import QueueCursor, QueueSort, QueueView, ViewThresholds
from recall.domain.review.stats import CardStats


class ConceptTransaction(ABC):
    """Reads and writes bound to one atomic store transaction."""

    @abstractmethod
    def get_concept(self, concept_id: str) -> Optional[Concept]:
        ...

    @abstractmethod
    def get_phrasing(self, phrasing_id: str) -> Optional[Phrasing]:
        ...

    @abstractmethod
    def insert_concept(self, concept: Concept) -> str:
        ...

    @abstractmethod
    def insert_phrasing(self, phrasing: Phrasing) -> str:
        ...

    @abstractmethod
    def insert_interaction(self, interaction: Interaction) -> str:
        """Append an interaction row. Existing rows are never updated."""
        ...

    @abstractmethod
    def patch_concept(self, concept_id: str, fields: dict, expected_version: Optional[int] = None) -> bool:
        """
        Apply ``fields`` and bump the version. A ``card`` key carries a whole
        CardState. With ``expected_version`` the patch only applies if the stored
        version still matches; returns False otherwise.
        """
        ...

    @abstractmethod
    def patch_phrasing(self, phrasing_id: str, fields: dict) -> None:
        ...

    @abstractmethod
    def apply_stats_delta(self, owner_id: str, delta: Dict[str, int], now: datetime) -> None:
        """Add ``delta`` to the owner's card counters, creating the row if needed. Counters never go below zero."""
        ...


class ConceptRepository(ABC):

    @abstractmethod
    def transaction(self) -> AbstractContextManager[ConceptTransaction]:
        """Commit on normal exit, roll back on any exception."""
        ...

    @abstractmethod
    def get_by_id(self, concept_id: str) -> Optional[Concept]:
        ...

    @abstractmethod
    def list_titles(self, owner_id: str) -> Set[str]:
        """Normalised (trimmed, lower-cased) titles of the owner's concepts."""
        ...

    @abstractmethod
    def list_page(
        self,
        owner_id: str,
        view: QueueView,
        sort: QueueSort,
        cursor: Optional[QueueCursor],
        limit: int,
        now: datetime,
        thresholds: ViewThresholds,
    ) -> Tuple[List[Concept], bool]:
        """Up to ``limit`` matching concepts strictly after ``cursor``, plus whether more remain."""
        ...

    @abstractmethod
    def search(self, owner_id: str, term: str, limit: int) -> List[Concept]:
        ...

    @abstractmethod
    def list_due_candidates(self, owner_id: str, now: datetime, limit: int) -> List[Concept]:
        """Due concepts with at least one phrasing, soonest first."""
        ...

    @abstractmethod
    def list_new_candidates(self, owner_id: str, limit: int) -> List[Concept]:
        """Never-graded concepts with at least one phrasing, oldest first."""
        ...

    @abstractmethod
    def count_due(self, owner_id: str, now: datetime) -> int:
        ...

    @abstractmethod
    def get_phrasings(self, concept_id: str, include_archived: bool = False) -> List[Phrasing]:
        """Phrasings of a concept, newest first."""
        ...

    @abstractmethod
    def list_interactions(self, concept_id: str, limit: int) -> List[Interaction]:
        """Most recent interactions first."""
        ...

    @abstractmethod
    def get_card_stats(self, owner_id: str, now: datetime) -> CardStats:
        """Stored counters plus the owner's earliest review after ``now``."""
        ...
