"""Concept management service tests."""
import pytest

from recall.application.concept_app_service import ConceptAppService
from recall.domain.common.errors import NotFoundError
from recall.domain.scheduling.models import MemoryState

from conftest import START

OWNER = "user-1"

MC = {"question": "2 + 2?", "type": "multiple-choice", "options": ["4", "5", "22"], "correct_answer": "4"}
TF = {"question": "The sky is green.", "type": "true-false", "options": ["True", "False"], "correct_answer": "False"}


@pytest.fixture
def svc(repo, domain, clock):
    return ConceptAppService(repo, domain, clock=clock)


@pytest.fixture
def concept_id(svc):
    return svc.create_concepts(OWNER, [{"title": "Basic arithmetic"}]).value[0]


# ------------------------------------------------------------------
# CREATE
# ------------------------------------------------------------------
def test_create_concepts_start_new(svc, repo):
    result = svc.create_concepts(OWNER, [{"title": "  Plate tectonics  ", "description": "Crust"}])
    assert result.is_success
    concept = repo.get_by_id(result.value[0])
    assert concept.title == "Plate tectonics"
    assert concept.description == "Crust"
    assert concept.card.state is MemoryState.NEW
    assert concept.created_at == START
    assert concept.thin_score == 5.0
    assert repo.count_due(OWNER, START) == 0  # no phrasings yet


def test_create_skips_short_and_duplicate_titles(svc, repo):
    svc.create_concepts(OWNER, [{"title": "Plate tectonics"}])
    result = svc.create_concepts(OWNER, [
        {"title": "plate TECTONICS"},
        {"title": "abc"},
        {"title": "Volcano types"},
        {"title": "volcano types "},
    ])
    assert result.is_success
    assert len(result.value) == 1
    assert repo.get_by_id(result.value[0]).title == "Volcano types"


def test_create_requires_items(svc):
    assert not svc.create_concepts(OWNER, []).is_success


def test_created_concepts_are_counted_as_new(svc, repo):
    svc.create_concepts(OWNER, [{"title": "Plate tectonics"}, {"title": "Volcano types"}, {"title": "abc"}])
    stats = repo.get_card_stats(OWNER, START)
    assert stats.total_cards == 2
    assert stats.new_count == 2
    assert stats.learning_count == stats.mature_count == 0


# ------------------------------------------------------------------
# Phrasings
# ------------------------------------------------------------------
def test_add_phrasings_updates_count_and_thin_score(svc, repo, concept_id):
    result = svc.add_phrasings(OWNER, concept_id, [MC, TF])
    assert result.is_success
    concept = repo.get_by_id(concept_id)
    assert concept.phrasing_count == 2
    assert concept.thin_score == 3.0

    detail = svc.get_concept_detail(OWNER, concept_id)
    assert {p.question for p in detail.phrasings} == {"2 + 2?", "The sky is green."}


def test_thin_score_clears_at_target(svc, repo, concept_id):
    svc.add_phrasings(OWNER, concept_id, [MC] * 5)
    assert repo.get_by_id(concept_id).thin_score is None


def test_invalid_phrasing_rejects_whole_batch(svc, repo, concept_id):
    bad = {"question": "Pick one", "type": "multiple-choice", "options": ["a"], "correct_answer": "a"}
    result = svc.add_phrasings(OWNER, concept_id, [MC, bad])
    assert not result.is_success
    assert repo.get_by_id(concept_id).phrasing_count == 0
    assert repo.get_phrasings(concept_id) == []


def test_add_phrasings_to_foreign_concept_is_not_found(svc, concept_id):
    with pytest.raises(NotFoundError):
        svc.add_phrasings("intruder", concept_id, [MC])


def test_archive_is_idempotent_and_clears_canonical(svc, repo, concept_id):
    first, second = svc.add_phrasings(OWNER, concept_id, [MC, TF]).value
    assert svc.set_canonical_phrasing(OWNER, concept_id, first.id).is_success
    assert repo.get_by_id(concept_id).canonical_phrasing_id == first.id

    assert svc.archive_phrasing(OWNER, concept_id, first.id).value is True
    assert svc.archive_phrasing(OWNER, concept_id, first.id).value is False

    concept = repo.get_by_id(concept_id)
    assert concept.phrasing_count == 1
    assert concept.thin_score == 4.0
    assert concept.canonical_phrasing_id is None
    assert [p.id for p in repo.get_phrasings(concept_id)] == [second.id]
    assert len(repo.get_phrasings(concept_id, include_archived=True)) == 2


def test_archived_phrasing_cannot_be_canonical(svc, concept_id):
    [phrasing] = svc.add_phrasings(OWNER, concept_id, [MC]).value
    svc.archive_phrasing(OWNER, concept_id, phrasing.id)
    assert not svc.set_canonical_phrasing(OWNER, concept_id, phrasing.id).is_success


def test_canonical_can_be_cleared(svc, repo, concept_id):
    [phrasing] = svc.add_phrasings(OWNER, concept_id, [MC]).value
    svc.set_canonical_phrasing(OWNER, concept_id, phrasing.id)
    assert svc.set_canonical_phrasing(OWNER, concept_id, None).is_success
    assert repo.get_by_id(concept_id).canonical_phrasing_id is None


def test_canonical_from_other_concept_is_not_found(svc, concept_id):
    other = svc.create_concepts(OWNER, [{"title": "Another concept"}]).value[0]
    [phrasing] = svc.add_phrasings(OWNER, other, [MC]).value
    with pytest.raises(NotFoundError):
        svc.set_canonical_phrasing(OWNER, concept_id, phrasing.id)


# ------------------------------------------------------------------
# Signals
# ------------------------------------------------------------------
def test_apply_signals_touches_only_given_scores(svc, repo, concept_id):
    assert svc.apply_signals(OWNER, concept_id, {"conflict_score": 0.7}).is_success
    concept = repo.get_by_id(concept_id)
    assert concept.conflict_score == 0.7
    assert concept.thin_score == 5.0

    assert svc.apply_signals(OWNER, concept_id, {"conflict_score": None, "quality_score": 2}).is_success
    concept = repo.get_by_id(concept_id)
    assert concept.conflict_score is None
    assert concept.quality_score == 2.0


@pytest.mark.parametrize("signals", [{}, {"conflict_score": -1}, {"mood": 3}, {"quality_score": float("inf")}])
def test_apply_signals_rejects_bad_input(svc, concept_id, signals):
    assert not svc.apply_signals(OWNER, concept_id, signals).is_success


# ------------------------------------------------------------------
# Reads
# ------------------------------------------------------------------
def test_detail_of_foreign_concept_is_not_found(svc, concept_id):
    with pytest.raises(NotFoundError):
        svc.get_concept_detail("intruder", concept_id)
    with pytest.raises(NotFoundError):
        svc.list_interactions("intruder", concept_id)


def test_list_interactions_empty_for_fresh_concept(svc, concept_id):
    assert svc.list_interactions(OWNER, concept_id) == []
