"""Per-owner card counters and the deltas that keep them current."""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from recall.domain.scheduling.models import MemoryState

STAT_FIELDS = ("total_cards", "new_count", "learning_count", "mature_count", "due_now_count")

_BUCKETS = {
    MemoryState.NEW: "new_count",
    MemoryState.LEARNING: "learning_count",
    MemoryState.RELEARNING: "learning_count",
    MemoryState.REVIEW: "mature_count",
}


@dataclass(frozen=True)
class CardStats:
    total_cards: int = 0
    new_count: int = 0
    learning_count: int = 0
    mature_count: int = 0
    due_now_count: int = 0
    next_review_time: Optional[datetime] = None


def creation_delta(count: int) -> Dict[str, int]:
    """Every created concept starts new."""
    if count <= 0:
        return {}
    return {"total_cards": count, "new_count": count}


def state_transition_delta(old: MemoryState, new: MemoryState) -> Dict[str, int]:
    old_bucket, new_bucket = _BUCKETS[old], _BUCKETS[new]
    if old_bucket == new_bucket:
        return {}
    return {old_bucket: -1, new_bucket: 1}


def review_delta(
    old_state: MemoryState,
    new_state: MemoryState,
    old_next_review: Optional[datetime],
    new_next_review: Optional[datetime],
    now: datetime,
) -> Dict[str, int]:
    """
    Counter changes for one graded attempt. The due counter only moves when
    both schedules are known, so a first grading never touches it.
    """
    delta = state_transition_delta(old_state, new_state)
    if old_next_review is not None and new_next_review is not None:
        was_due = old_next_review <= now
        is_due_now = new_next_review <= now
        if was_due and not is_due_now:
            delta["due_now_count"] = -1
        elif is_due_now and not was_due:
            delta["due_now_count"] = 1
    return delta
