"""Dependency injection container: wires implementations to interfaces."""
from __future__ import annotations
from functools import lru_cache

from recall.application.concept_app_service import ConceptAppService
from recall.application.interaction_recorder import InteractionRecorder
from recall.application.review_queue import ReviewQueueSelector
from recall.core.clock import Clock, SystemClock
from recall.core.config import (
    CONFLICT_SCORE_THRESHOLD,
    RECORD_MAX_ATTEMPTS,
    RECORD_RETRY_DELAY_SECONDS,
    TARGET_PHRASINGS_PER_CONCEPT,
    THIN_SCORE_THRESHOLD,
    build_scheduler_parameters,
)
from recall.domain.concept.service import ConceptDomainService
from recall.domain.review.queue import ViewThresholds
from recall.domain.scheduling.models import SchedulerParameters
from recall.persistence.repositories.sqlite.sqlite_concept_repository import SqliteConceptRepository


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


@lru_cache(maxsize=1)
def get_scheduler_parameters() -> SchedulerParameters:
    return build_scheduler_parameters()


@lru_cache(maxsize=1)
def get_concept_repo() -> SqliteConceptRepository:
    return SqliteConceptRepository()


@lru_cache(maxsize=1)
def get_concept_app_service() -> ConceptAppService:
    return ConceptAppService(
        repo=get_concept_repo(),
        domain=ConceptDomainService(TARGET_PHRASINGS_PER_CONCEPT, get_scheduler_parameters()),
        clock=get_clock(),
    )


@lru_cache(maxsize=1)
def get_interaction_recorder() -> InteractionRecorder:
    return InteractionRecorder(
        repo=get_concept_repo(),
        clock=get_clock(),
        params=get_scheduler_parameters(),
        max_attempts=RECORD_MAX_ATTEMPTS,
        retry_delay=RECORD_RETRY_DELAY_SECONDS,
    )


@lru_cache(maxsize=1)
def get_review_queue_selector() -> ReviewQueueSelector:
    return ReviewQueueSelector(
        repo=get_concept_repo(),
        clock=get_clock(),
        thresholds=ViewThresholds(thin=THIN_SCORE_THRESHOLD, conflict=CONFLICT_SCORE_THRESHOLD),
        params=get_scheduler_parameters(),
    )
