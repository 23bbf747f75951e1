"""
Interaction recording: the single write path for scheduling state.

One call loads the concept, grades it, patches the concept and phrasing
counters, and appends an interaction row, all in one store transaction.
Calls for the same concept are serialised in-process by a per-concept lock;
writers in other processes are caught by the version check on the patch.
"""
from __future__ import annotations
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, Optional

from loguru import logger

from recall.core.clock import Clock, SystemClock, to_millis
from recall.core.config import RECORD_MAX_ATTEMPTS, RECORD_RETRY_DELAY_SECONDS
from recall.domain.common.errors import NotFoundError, TransientStoreError
from recall.domain.concept.models import Interaction
from recall.domain.review.stats import review_delta
from recall.domain.scheduling.models import MemoryState, SchedulerParameters
from recall.domain.scheduling.scheduler import DEFAULT_PARAMETERS, initialize_card, schedule_next_review
from recall.persistence.interfaces.concept_repository import ConceptRepository


@dataclass(frozen=True)
class RecordInteractionCommand:
    owner_id: str
    concept_id: str
    user_answer: str
    is_correct: bool
    phrasing_id: Optional[str] = None
    time_spent: Optional[int] = None  # milliseconds
    session_id: Optional[str] = None


@dataclass(frozen=True)
class RecordOutcome:
    next_review: datetime
    scheduled_days: float
    new_state: MemoryState


class KeyedLock:
    """
    One lock per key, alive only while some caller holds or waits on it.
    Each entry is [lock, users]; the last user out removes it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class InteractionRecorder:
    def __init__(
        self,
        repo: ConceptRepository,
        clock: Optional[Clock] = None,
        params: SchedulerParameters = DEFAULT_PARAMETERS,
        max_attempts: int = RECORD_MAX_ATTEMPTS,
        retry_delay: float = RECORD_RETRY_DELAY_SECONDS,
    ):
        self._repo = repo
        self._clock = clock or SystemClock()
        self._params = params
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._locks = KeyedLock()

    def record(self, cmd: RecordInteractionCommand) -> RecordOutcome:
        """
        Grade one attempt and persist it. Raises NotFoundError for unknown or
        foreign concepts/phrasings, InvalidStateError for corrupt scheduling
        state, and TransientStoreError once retries are exhausted.
        """
        attempt = 1
        while True:
            try:
                with self._locks.hold(cmd.concept_id):
                    return self._record_once(cmd)
            except TransientStoreError as e:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Giving up recording concept={} after {} attempts: {}",
                        cmd.concept_id, attempt, e,
                    )
                    raise
                logger.warning(
                    "Retrying recording concept={} (attempt {}/{}): {}",
                    cmd.concept_id, attempt, self._max_attempts, e,
                )
                time.sleep(self._retry_delay * attempt)
                attempt += 1

    def _record_once(self, cmd: RecordInteractionCommand) -> RecordOutcome:
        now = self._clock.now()
        with self._repo.transaction() as tx:
            concept = tx.get_concept(cmd.concept_id)
            if concept is None or concept.owner_id != cmd.owner_id:
                raise NotFoundError(f"Concept '{cmd.concept_id}' not found.")

            phrasing = None
            if cmd.phrasing_id:
                phrasing = tx.get_phrasing(cmd.phrasing_id)
                if (
                    phrasing is None
                    or phrasing.concept_id != concept.id
                    or phrasing.owner_id != cmd.owner_id
                    or not phrasing.is_active
                ):
                    raise NotFoundError(f"Phrasing '{cmd.phrasing_id}' not found for concept '{concept.id}'.")

            card = concept.card or initialize_card(now, self._params)
            result = schedule_next_review(card, cmd.is_correct, now, self._params)

            applied = tx.patch_concept(
                concept.id,
                {
                    "card": result.new_state,
                    "attempt_count": concept.attempt_count + 1,
                    "correct_count": concept.correct_count + int(cmd.is_correct),
                    "updated_at": now,
                },
                expected_version=concept.version,
            )
            if not applied:
                raise TransientStoreError(f"Concept '{concept.id}' was modified concurrently.")

            tx.apply_stats_delta(
                cmd.owner_id,
                review_delta(card.state, result.new_state.state, card.next_review, result.new_state.next_review, now),
                now,
            )

            if phrasing is not None:
                tx.patch_phrasing(
                    phrasing.id,
                    {
                        "attempt_count": phrasing.attempt_count + 1,
                        "correct_count": phrasing.correct_count + int(cmd.is_correct),
                        "last_attempted_at": now,
                        "updated_at": now,
                    },
                )

            fields = result.db_fields
            context = {
                "scheduled_days": fields.scheduled_days,
                "next_review": to_millis(fields.next_review),
                "fsrs_state": fields.state.value,
            }
            if cmd.session_id:
                context["session_id"] = cmd.session_id

            tx.insert_interaction(Interaction(
                id=str(uuid.uuid4()),
                owner_id=cmd.owner_id,
                concept_id=concept.id,
                phrasing_id=cmd.phrasing_id,
                user_answer=cmd.user_answer,
                is_correct=cmd.is_correct,
                attempted_at=now,
                time_spent=cmd.time_spent,
                session_id=cmd.session_id,
                context=context,
            ))

        logger.debug(
            "Recorded concept={} correct={} state={} next_review={}",
            concept.id, cmd.is_correct, fields.state.value, fields.next_review.isoformat(),
        )
        return RecordOutcome(
            next_review=fields.next_review,
            scheduled_days=fields.scheduled_days,
            new_state=fields.state,
        )
