"""Domain service: pure construction and bookkeeping for concepts and phrasings."""
from __future__ import annotations
import math
import uuid
from datetime import datetime
from typing import Optional

from recall.domain.common.result import Result
from recall.domain.concept.models import Concept, Phrasing
from recall.domain.concept.rules import compute_thin_score, validate_concept_content, validate_phrasing_content
from recall.domain.scheduling.models import SchedulerParameters
from recall.domain.scheduling.scheduler import DEFAULT_PARAMETERS, initialize_card


def _new_id() -> str:
    return str(uuid.uuid4())


class ConceptDomainService:
    """
    No I/O and no clock reads: ``now`` is always passed in.
    The application layer calls these and then persists via the repository.
    """

    def __init__(self, target_phrasings: int, params: SchedulerParameters = DEFAULT_PARAMETERS):
        self._target = target_phrasings
        self._params = params

    def create_concept(self, owner_id: str, data: dict, now: datetime) -> Result[Concept]:
        """A fresh concept in the ``new`` state, due immediately."""
        validation = validate_concept_content(data)
        if not validation.is_success:
            return Result.fail(validation.error)

        content = validation.value
        return Result.ok(Concept(
            id=_new_id(),
            owner_id=owner_id,
            title=content["title"],
            description=content["description"],
            card=initialize_card(now, self._params),
            thin_score=compute_thin_score(0, self._target),
            created_at=now,
            updated_at=now,
        ))

    def create_phrasing(self, concept: Concept, data: dict, now: datetime) -> Result[Phrasing]:
        validation = validate_phrasing_content(data)
        if not validation.is_success:
            return Result.fail(validation.error)

        content = validation.value
        return Result.ok(Phrasing(
            id=_new_id(),
            concept_id=concept.id,
            owner_id=concept.owner_id,
            question=content["question"],
            type=content["type"],
            options=content["options"],
            correct_answer=content["correct_answer"],
            explanation=content["explanation"],
            created_at=now,
            updated_at=now,
        ))

    def phrasing_count_fields(self, phrasing_count: int, now: datetime) -> dict:
        """Concept fields that follow from a new active phrasing count."""
        count = max(0, phrasing_count)
        return {
            "phrasing_count": count,
            "thin_score": compute_thin_score(count, self._target),
            "updated_at": now,
        }

    @staticmethod
    def validate_signal(name: str, value: Optional[float]) -> Result[Optional[float]]:
        if value is None:
            return Result.ok(None)
        if not math.isfinite(value) or value < 0:
            return Result.fail(f"'{name}' must be a finite, non-negative number.")
        return Result.ok(float(value))
