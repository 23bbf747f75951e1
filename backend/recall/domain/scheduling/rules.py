"""Invariant checks for CardState: a card failing these must never be scheduled or persisted."""
from __future__ import annotations
import math

from recall.domain.common.result import Result
from recall.domain.scheduling.models import CardState, MemoryState

MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0


def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def validate_card_state(card: CardState) -> Result[CardState]:
    """
    Returns Result.ok(card) or Result.fail(reason).
    New cards may carry zero stability; every other state needs a positive
    stability and a next_review timestamp.
    """
    if not isinstance(card.state, MemoryState):
        return Result.fail(f"Unknown memory state {card.state!r}.")

    if not _is_finite(card.stability) or card.stability < 0:
        return Result.fail(f"Stability must be a finite non-negative number, got {card.stability!r}.")

    if not _is_finite(card.difficulty) or not MIN_DIFFICULTY <= card.difficulty <= MAX_DIFFICULTY:
        return Result.fail(
            f"Difficulty must lie within [{MIN_DIFFICULTY}, {MAX_DIFFICULTY}], got {card.difficulty!r}."
        )

    if card.reps < 0 or card.lapses < 0 or card.step < 0:
        return Result.fail("reps, lapses and step must be non-negative.")

    if card.state is not MemoryState.NEW:
        if card.stability <= 0:
            return Result.fail(f"A '{card.state.value}' card must have positive stability.")
        if card.next_review is None:
            return Result.fail(f"A '{card.state.value}' card must have a next_review timestamp.")

    return Result.ok(card)
