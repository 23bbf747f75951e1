"""
Review scheduler: a pure adapter over the fsrs library, no I/O, no clock reads.

    new --any--> learning --correct (last step)--> review --correct--> review
                 |    ^                              |
                 +----+ incorrect (back to step 0)   +--incorrect--> relearning --correct--> review
                                                                      ^    |
                                                                      +----+ incorrect

Grading is boolean: correct is rated Good, incorrect is rated Again.
fsrs owns the memory model (stability, difficulty, retrievability and the
interval); this module maps CardState to fsrs.Card and back, keeps the
counters fsrs does not track (reps, lapses, elapsed days), and bounds the
stability penalty on a failed answer.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from functools import lru_cache

from fsrs import Card, Rating, Scheduler, State

from recall.domain.common.errors import InvalidStateError
from recall.domain.scheduling.models import (
    CardState,
    DbFields,
    MemoryState,
    ScheduleResult,
    SchedulerParameters,
)
from recall.domain.scheduling.rules import validate_card_state

DEFAULT_PARAMETERS = SchedulerParameters()

_SECONDS_PER_DAY = 86400.0

_TO_FSRS_STATE = {
    MemoryState.LEARNING: State.Learning,
    MemoryState.REVIEW: State.Review,
    MemoryState.RELEARNING: State.Relearning,
}
_FROM_FSRS_STATE = {fsrs_state: state for state, fsrs_state in _TO_FSRS_STATE.items()}

# A failed answer in these states counts as a lapse.
_LAPSING_STATES = (MemoryState.REVIEW, MemoryState.RELEARNING)


@lru_cache(maxsize=8)
def build_scheduler(params: SchedulerParameters = DEFAULT_PARAMETERS) -> Scheduler:
    """fsrs Scheduler for ``params``. Fuzzing stays off so grading is deterministic."""
    options = dict(
        desired_retention=params.desired_retention,
        learning_steps=tuple(timedelta(minutes=m) for m in params.learning_steps),
        relearning_steps=tuple(timedelta(minutes=m) for m in params.relearning_steps),
        maximum_interval=params.maximum_interval,
        enable_fuzzing=False,
    )
    if params.weights is not None:
        options["parameters"] = params.weights
    return Scheduler(**options)


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------
def initialize_card(now: datetime, params: SchedulerParameters = DEFAULT_PARAMETERS) -> CardState:
    """A never-graded card. ``now`` is accepted so callers never read the clock themselves."""
    return CardState(
        state=MemoryState.NEW,
        stability=0.0,
        difficulty=params.default_difficulty,
        next_review=None,
        last_reviewed=None,
        reps=0,
        lapses=0,
    )


def schedule_next_review(
    card: CardState,
    correct: bool,
    now: datetime,
    params: SchedulerParameters = DEFAULT_PARAMETERS,
) -> ScheduleResult:
    """
    Grade ``card`` at ``now`` and return the next state plus the fields callers persist.
    Raises InvalidStateError if ``card`` violates the scheduling invariants.
    """
    validation = validate_card_state(card)
    if not validation.is_success:
        raise InvalidStateError(validation.error)

    rating = Rating.Good if correct else Rating.Again
    reviewed, _ = build_scheduler(params).review_card(to_fsrs_card(card, now), rating, review_datetime=now)

    stability = reviewed.stability
    lapses = card.lapses
    if not correct and card.state is not MemoryState.NEW:
        stability = _penalized_stability(card.stability, stability, params)
        if card.state in _LAPSING_STATES:
            lapses += 1

    new_state = CardState(
        state=_FROM_FSRS_STATE[reviewed.state],
        stability=stability,
        difficulty=reviewed.difficulty,
        next_review=reviewed.due,
        last_reviewed=now,
        reps=card.reps + 1,
        lapses=lapses,
        step=reviewed.step or 0,
        scheduled_days=(reviewed.due - now).total_seconds() / _SECONDS_PER_DAY,
        elapsed_days=_elapsed_days(card.last_reviewed, now),
    )
    return ScheduleResult(
        new_state=new_state,
        db_fields=DbFields(
            next_review=new_state.next_review,
            scheduled_days=new_state.scheduled_days,
            state=new_state.state,
        ),
        rating=rating,
    )


def get_retrievability(card: CardState, now: datetime, params: SchedulerParameters = DEFAULT_PARAMETERS) -> float:
    """Recall probability at ``now``; -1 for cards that were never graded (highest priority)."""
    if card.state is MemoryState.NEW or card.reps == 0 or card.stability <= 0 or card.last_reviewed is None:
        return -1.0
    return build_scheduler(params).get_card_retrievability(to_fsrs_card(card, now), now)


def is_due(card: CardState, now: datetime) -> bool:
    if card.next_review is None:
        return True
    return card.next_review <= now


# ------------------------------------------------------------------
# fsrs mapping
# ------------------------------------------------------------------
def to_fsrs_card(card: CardState, now: datetime) -> Card:
    # card_id is fixed: fsrs would otherwise derive one from the wall clock.
    if card.state is MemoryState.NEW:
        return Card(card_id=0, state=State.Learning, step=0, due=now)
    return Card(
        card_id=0,
        state=_TO_FSRS_STATE[card.state],
        step=None if card.state is MemoryState.REVIEW else card.step,
        stability=card.stability,
        difficulty=card.difficulty,
        due=card.next_review,
        last_review=card.last_reviewed,
    )


def _penalized_stability(before: float, computed: float, params: SchedulerParameters) -> float:
    """Post-failure stability: below ``before`` unless already at the floor."""
    capped = min(computed, before * params.lapse_stability_ceiling)
    return min(before, max(params.min_stability, capped))


def _elapsed_days(last_reviewed: datetime | None, now: datetime) -> float:
    if last_reviewed is None:
        return 0.0
    return max(0.0, (now - last_reviewed).total_seconds() / _SECONDS_PER_DAY)
