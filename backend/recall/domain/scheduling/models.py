"""Scheduling value types: a concept's embedded memory state, passed in and out of the scheduler."""
from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from fsrs import Rating

DEFAULT_DIFFICULTY = 5.0


class MemoryState(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


@dataclass(frozen=True)
class SchedulerParameters:
    # None keeps the fsrs library's published default weights.
    weights: Optional[Tuple[float, ...]] = None
    desired_retention: float = 0.9
    maximum_interval: int = 365  # days
    learning_steps: Tuple[float, ...] = (1.0, 10.0)  # minutes
    relearning_steps: Tuple[float, ...] = (10.0,)  # minutes
    min_stability: float = 0.1
    lapse_stability_ceiling: float = 0.9
    default_difficulty: float = DEFAULT_DIFFICULTY

    def __post_init__(self):
        if self.weights is not None and not self.weights:
            raise ValueError("weights must be omitted or non-empty.")
        if not self.learning_steps or not self.relearning_steps:
            raise ValueError("At least one learning and one relearning step is required.")
        if any(step <= 0 for step in (*self.learning_steps, *self.relearning_steps)):
            raise ValueError("Learning and relearning steps must be positive minute counts.")
        if not 0 < self.desired_retention < 1:
            raise ValueError("desired_retention must lie strictly between 0 and 1.")
        if not 0 < self.lapse_stability_ceiling < 1:
            raise ValueError("lapse_stability_ceiling must lie strictly between 0 and 1.")
        if self.min_stability <= 0:
            raise ValueError("min_stability must be positive.")
        if self.maximum_interval < 1:
            raise ValueError("maximum_interval must be at least one day.")


@dataclass(frozen=True)
class CardState:
    state: MemoryState = MemoryState.NEW
    stability: float = 0.0
    difficulty: float = DEFAULT_DIFFICULTY
    next_review: Optional[datetime] = None
    last_reviewed: Optional[datetime] = None
    reps: int = 0
    lapses: int = 0
    step: int = 0
    scheduled_days: float = 0.0
    elapsed_days: float = 0.0

    def evolve(self, **changes) -> "CardState":
        return replace(self, **changes)


@dataclass(frozen=True)
class DbFields:
    """The subset of a grading outcome surfaced to callers and interaction logs."""
    next_review: datetime
    scheduled_days: float
    state: MemoryState


@dataclass(frozen=True)
class ScheduleResult:
    new_state: CardState
    db_fields: DbFields
    rating: Rating = Rating.Good
