"""Application service: orchestrates validate, domain op, persist for concept management."""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from recall.core.clock import Clock, SystemClock
from recall.domain.common.errors import NotFoundError
from recall.domain.common.result import Result
from recall.domain.concept.models import Concept, Interaction, Phrasing
from recall.domain.concept.rules import normalize_title
from recall.domain.concept.service import ConceptDomainService
from recall.domain.review.stats import creation_delta
from recall.persistence.interfaces.concept_repository import ConceptRepository, ConceptTransaction

SIGNAL_FIELDS = ("conflict_score", "thin_score", "quality_score")


@dataclass
class ConceptDetail:
    concept: Concept
    phrasings: List[Phrasing]


def _owned(tx: ConceptTransaction, owner_id: str, concept_id: str) -> Concept:
    concept = tx.get_concept(concept_id)
    if concept is None or concept.owner_id != owner_id:
        raise NotFoundError(f"Concept '{concept_id}' not found.")
    return concept


def _owned_phrasing(tx: ConceptTransaction, concept: Concept, phrasing_id: str) -> Phrasing:
    phrasing = tx.get_phrasing(phrasing_id)
    if phrasing is None or phrasing.concept_id != concept.id:
        raise NotFoundError(f"Phrasing '{phrasing_id}' not found for concept '{concept.id}'.")
    return phrasing


class ConceptAppService:
    def __init__(self, repo: ConceptRepository, domain: ConceptDomainService, clock: Optional[Clock] = None):
        self._repo = repo
        self._domain = domain
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # CREATE
    # ------------------------------------------------------------------
    def create_concepts(self, owner_id: str, items: List[dict]) -> Result[List[str]]:
        """Create concepts, skipping short titles and titles the owner already has."""
        if not items:
            return Result.fail("At least one concept is required.")

        now = self._clock.now()
        seen = self._repo.list_titles(owner_id)
        created: List[Concept] = []
        for item in items:
            result = self._domain.create_concept(owner_id, item, now)
            if not result.is_success:
                logger.debug("Skipping concept for owner={}: {}", owner_id, result.error)
                continue
            key = normalize_title(result.value.title)
            if key in seen:
                logger.debug("Skipping duplicate concept title {!r} for owner={}", result.value.title, owner_id)
                continue
            seen.add(key)
            created.append(result.value)

        with self._repo.transaction() as tx:
            for concept in created:
                tx.insert_concept(concept)
            if created:
                tx.apply_stats_delta(owner_id, creation_delta(len(created)), now)

        logger.info("Created {} of {} concept(s) for owner={}", len(created), len(items), owner_id)
        return Result.ok([c.id for c in created])

    def add_phrasings(self, owner_id: str, concept_id: str, items: List[dict]) -> Result[List[Phrasing]]:
        if not items:
            return Result.fail("At least one phrasing is required.")

        now = self._clock.now()
        with self._repo.transaction() as tx:
            concept = _owned(tx, owner_id, concept_id)
            phrasings = []
            for item in items:
                result = self._domain.create_phrasing(concept, item, now)
                if not result.is_success:
                    return Result.fail(result.error)
                phrasings.append(result.value)

            for phrasing in phrasings:
                tx.insert_phrasing(phrasing)
            tx.patch_concept(
                concept.id,
                self._domain.phrasing_count_fields(concept.phrasing_count + len(phrasings), now),
            )
        return Result.ok(phrasings)

    # ------------------------------------------------------------------
    # READ
    # ------------------------------------------------------------------
    def get_concept_detail(self, owner_id: str, concept_id: str) -> ConceptDetail:
        concept = self._repo.get_by_id(concept_id)
        if concept is None or concept.owner_id != owner_id:
            raise NotFoundError(f"Concept '{concept_id}' not found.")
        return ConceptDetail(concept=concept, phrasings=self._repo.get_phrasings(concept_id))

    def list_interactions(self, owner_id: str, concept_id: str, limit: int = 50) -> List[Interaction]:
        concept = self._repo.get_by_id(concept_id)
        if concept is None or concept.owner_id != owner_id:
            raise NotFoundError(f"Concept '{concept_id}' not found.")
        return self._repo.list_interactions(concept_id, max(1, limit))

    # ------------------------------------------------------------------
    # UPDATE
    # ------------------------------------------------------------------
    def set_canonical_phrasing(self, owner_id: str, concept_id: str, phrasing_id: Optional[str]) -> Result[str]:
        now = self._clock.now()
        with self._repo.transaction() as tx:
            concept = _owned(tx, owner_id, concept_id)
            if phrasing_id is not None:
                phrasing = _owned_phrasing(tx, concept, phrasing_id)
                if not phrasing.is_active:
                    return Result.fail("An archived phrasing cannot be canonical.")
            tx.patch_concept(concept.id, {"canonical_phrasing_id": phrasing_id, "updated_at": now})
        return Result.ok(concept_id)

    def archive_phrasing(self, owner_id: str, concept_id: str, phrasing_id: str) -> Result[bool]:
        """Archive a phrasing. Archiving an already archived phrasing changes nothing."""
        now = self._clock.now()
        with self._repo.transaction() as tx:
            concept = _owned(tx, owner_id, concept_id)
            phrasing = _owned_phrasing(tx, concept, phrasing_id)
            if not phrasing.is_active:
                return Result.ok(False)

            tx.patch_phrasing(phrasing.id, {"archived_at": now, "updated_at": now})
            fields = self._domain.phrasing_count_fields(concept.phrasing_count - 1, now)
            if concept.canonical_phrasing_id == phrasing.id:
                fields["canonical_phrasing_id"] = None
            tx.patch_concept(concept.id, fields)
        return Result.ok(True)

    def apply_signals(self, owner_id: str, concept_id: str, signals: dict) -> Result[str]:
        """Write advisory scores. Only the keys present in ``signals`` are touched."""
        fields = {}
        for name, value in signals.items():
            if name not in SIGNAL_FIELDS:
                return Result.fail(f"'{name}' is not a concept signal. Must be one of {list(SIGNAL_FIELDS)}.")
            validated = self._domain.validate_signal(name, value)
            if not validated.is_success:
                return Result.fail(validated.error)
            fields[name] = validated.value
        if not fields:
            return Result.fail("No signals provided.")

        fields["updated_at"] = self._clock.now()
        with self._repo.transaction() as tx:
            concept = _owned(tx, owner_id, concept_id)
            tx.patch_concept(concept.id, fields)
        return Result.ok(concept_id)
