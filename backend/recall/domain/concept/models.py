"""Concept domain models: pure Python, no DB or HTTP dependencies."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from recall.domain.scheduling.models import CardState

PHRASING_TYPES = {"multiple-choice", "true-false", "cloze", "short-answer"}


@dataclass
class Phrasing:
    id: str
    concept_id: str
    owner_id: str
    question: str
    type: str  # multiple-choice | true-false | cloze | short-answer
    correct_answer: str
    created_at: datetime
    updated_at: datetime
    explanation: Optional[str] = None
    options: List[str] = field(default_factory=list)
    attempt_count: int = 0
    correct_count: int = 0
    last_attempted_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.archived_at is None


@dataclass
class Concept:
    id: str
    owner_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    card: Optional[CardState] = None  # None until first scheduled
    phrasing_count: int = 0
    canonical_phrasing_id: Optional[str] = None
    conflict_score: Optional[float] = None
    thin_score: Optional[float] = None
    quality_score: Optional[float] = None
    attempt_count: int = 0
    correct_count: int = 0
    version: int = 0


@dataclass(frozen=True)
class Interaction:
    """Append-only audit record of one graded attempt. Never updated or deleted."""
    id: str
    owner_id: str
    concept_id: str
    user_answer: str
    is_correct: bool
    attempted_at: datetime
    phrasing_id: Optional[str] = None
    time_spent: Optional[int] = None  # milliseconds
    session_id: Optional[str] = None
    context: Optional[dict] = None
