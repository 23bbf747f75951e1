"""Review queue tests: keyset paging, views, search and next-item selection."""
from datetime import timedelta

import pytest

from recall.application.review_queue import ReviewQueueSelector
from recall.core.clock import to_millis
from recall.domain.common.errors import InvalidCursorError
from recall.domain.review.queue import (
    PageQuery,
    QueueCursor,
    QueueMode,
    QueueSort,
    QueueView,
    SearchQuery,
    SkipQuery,
    ViewThresholds,
    build_queue_query,
    clamp_page_size,
)
from recall.domain.review.shuffle import get_shuffle_seed, shuffle_with_seed
from recall.domain.scheduling.models import MemoryState

from conftest import START

OWNER = "user-1"


def _make(repo, domain, title, created_at, next_review=None, owner=OWNER, thin=None, conflict=None, options=None):
    concept = domain.create_concept(owner, {"title": title}, created_at).value
    with repo.transaction() as tx:
        tx.insert_concept(concept)
        fields = {"thin_score": thin, "conflict_score": conflict}
        if next_review is not None:
            fields["card"] = concept.card.evolve(
                state=MemoryState.REVIEW,
                stability=5.0,
                next_review=next_review,
                last_reviewed=created_at,
                reps=1,
                scheduled_days=5.0,
            )
        if options is not None:
            phrasing = domain.create_phrasing(
                concept,
                {
                    "question": f"{title}?",
                    "type": "multiple-choice",
                    "options": options,
                    "correct_answer": options[0],
                },
                created_at,
            ).value
            tx.insert_phrasing(phrasing)
            fields.update(domain.phrasing_count_fields(1, created_at))
            fields["thin_score"] = thin
        tx.patch_concept(concept.id, fields)
    return repo.get_by_id(concept.id)


def _drain(selector, view="all", sort="recent", page_size=10):
    ids, pages, cursor = [], 0, None
    while True:
        page = selector.select(OWNER, build_queue_query(OWNER, view=view, sort=sort, cursor=cursor, page_size=page_size))
        ids.extend(c.id for c in page.concepts)
        pages += 1
        if page.is_done:
            assert page.continue_cursor is None
            return ids, pages
        cursor = page.continue_cursor
        assert pages < 50


@pytest.fixture
def selector(repo, clock):
    return ReviewQueueSelector(repo, clock=clock, thresholds=ViewThresholds())


@pytest.fixture
def population(repo, domain, clock):
    """23 concepts, several sharing a created_at so ties are broken by id."""
    concepts = []
    for i in range(23):
        created_at = START - timedelta(hours=i // 3)
        next_review = None
        if i % 4 == 1:
            next_review = START + timedelta(days=i)  # future
        elif i % 4 == 2:
            next_review = START - timedelta(days=i)  # overdue
        concepts.append(_make(
            repo, domain, f"Concept number {i:02d}", created_at,
            next_review=next_review,
            thin=1.0 if i % 5 == 0 else None,
            conflict=2.0 if i % 7 == 0 else None,
        ))
    return concepts


def _due_key(c):
    return to_millis((c.card.next_review if c.card else None) or c.created_at)


# ------------------------------------------------------------------
# Query building
# ------------------------------------------------------------------
def test_anonymous_caller_gets_skip_page(selector):
    query = build_queue_query(None, view="due")
    assert isinstance(query, SkipQuery)
    page = selector.select(None, query)
    assert page.concepts == []
    assert page.is_done
    assert page.continue_cursor is None
    assert page.mode is QueueMode.SKIP


def test_search_needs_two_characters():
    assert isinstance(build_queue_query(OWNER, search=" a "), PageQuery)
    query = build_queue_query(OWNER, search="  ab ")
    assert isinstance(query, SearchQuery)
    assert query.term == "ab"


def test_defaults_and_page_size_clamp():
    query = build_queue_query(OWNER)
    assert query.view is QueueView.ALL
    assert query.sort is QueueSort.NEXT_REVIEW
    assert query.page_size == 25
    assert clamp_page_size(3) == 10
    assert clamp_page_size(1000) == 100
    assert clamp_page_size(None) == 25


def test_unknown_view_is_rejected():
    with pytest.raises(ValueError):
        build_queue_query(OWNER, view="everything")


def test_cursor_encodes_and_decodes():
    cursor = QueueCursor(view=QueueView.DUE, sort=QueueSort.NEXT_REVIEW, key=1234, concept_id="abc")
    assert QueueCursor.decode(cursor.encode()) == cursor


@pytest.mark.parametrize("token", ["not-a-cursor", "e30", "!!!"])
def test_malformed_cursor_rejected(token):
    with pytest.raises(InvalidCursorError):
        build_queue_query(OWNER, cursor=token)


# ------------------------------------------------------------------
# Paging
# ------------------------------------------------------------------
@pytest.mark.parametrize("sort", ["recent", "nextReview"])
def test_paging_enumerates_every_concept_once(selector, population, sort):
    ids, pages = _drain(selector, sort=sort)
    assert len(ids) == len(set(ids)) == 23
    assert pages == 3

    if sort == "recent":
        expected = sorted(population, key=lambda c: (to_millis(c.created_at), c.id), reverse=True)
    else:
        expected = sorted(population, key=lambda c: (_due_key(c), c.id))
    assert ids == [c.id for c in expected]


def test_due_view_pages_only_due_concepts(selector, population, clock):
    ids, _ = _drain(selector, view="due", sort="nextReview")
    expected = sorted(
        (c for c in population if _due_key(c) <= to_millis(clock.now())),
        key=lambda c: (_due_key(c), c.id),
    )
    assert ids == [c.id for c in expected]
    assert all(not (c.card.next_review and c.card.next_review > clock.now()) for c in population if c.id in ids)


@pytest.mark.parametrize("view, attr", [("thin", "thin_score"), ("conflict", "conflict_score")])
def test_signal_views(selector, population, view, attr):
    ids, _ = _drain(selector, view=view)
    expected = {c.id for c in population if getattr(c, attr) is not None and getattr(c, attr) > 0}
    assert set(ids) == expected
    assert len(ids) == len(expected)


def test_other_owners_are_invisible(selector, repo, domain, population):
    stranger = _make(repo, domain, "Somebody else's concept", START, owner="user-2")
    ids, _ = _drain(selector)
    assert stranger.id not in ids


def test_cursor_for_other_view_is_rejected(selector, population):
    page = selector.select(OWNER, build_queue_query(OWNER, view="all", sort="recent", page_size=10))
    assert page.continue_cursor
    with pytest.raises(InvalidCursorError):
        build_queue_query(OWNER, view="due", sort="recent", cursor=page.continue_cursor)
    with pytest.raises(InvalidCursorError):
        build_queue_query(OWNER, view="all", sort="nextReview", cursor=page.continue_cursor)


def test_short_final_page_is_done(selector, repo, domain):
    for i in range(4):
        _make(repo, domain, f"Tiny list item {i}", START - timedelta(minutes=i))
    page = selector.select(OWNER, build_queue_query(OWNER, page_size=10))
    assert len(page.concepts) == 4
    assert page.is_done
    assert page.continue_cursor is None
    assert page.mode is QueueMode.STANDARD
    assert page.server_time == START


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------
def test_search_matches_title_case_insensitively(selector, repo, domain):
    photo = _make(repo, domain, "Photosynthesis light reactions", START)
    _make(repo, domain, "Krebs cycle overview", START)
    page = selector.select(OWNER, build_queue_query(OWNER, search="PHOTO"))
    assert [c.id for c in page.concepts] == [photo.id]
    assert page.mode is QueueMode.SEARCH
    assert page.is_done
    assert page.continue_cursor is None


def test_search_applies_view_filter(selector, repo, domain, clock):
    due = _make(repo, domain, "Mitosis phases", START - timedelta(days=1))
    _make(repo, domain, "Mitosis checkpoints", START, next_review=START + timedelta(days=3))
    page = selector.select(OWNER, build_queue_query(OWNER, view="due", search="mitosis"))
    assert [c.id for c in page.concepts] == [due.id]


def test_search_treats_wildcards_literally(selector, repo, domain):
    _make(repo, domain, "Percent signs in SQL", START)
    page = selector.select(OWNER, build_queue_query(OWNER, search="%%"))
    assert page.concepts == []


# ------------------------------------------------------------------
# Next review item / due count
# ------------------------------------------------------------------
def test_next_review_item_prefers_due_over_new(selector, repo, domain):
    _make(repo, domain, "Brand new concept", START, options=["a", "b"])
    due = _make(repo, domain, "Overdue concept", START - timedelta(days=10),
                next_review=START - timedelta(days=1), options=["x", "y", "z"])

    item = selector.next_review_item(OWNER)
    assert item.concept.id == due.id
    assert 0 < item.retrievability < 1
    assert item.selection_reason == "least-seen"
    assert sorted(item.options) == ["x", "y", "z"]
    assert item.options == shuffle_with_seed(["x", "y", "z"], get_shuffle_seed(item.phrasing.id, OWNER))


def test_next_review_item_falls_back_to_new(selector, repo, domain):
    new = _make(repo, domain, "Brand new concept", START, options=["a", "b"])
    _make(repo, domain, "Scheduled for later", START, next_review=START + timedelta(days=2), options=["c", "d"])

    item = selector.next_review_item(OWNER)
    assert item.concept.id == new.id
    assert item.retrievability == -1


def test_next_review_item_never_offers_future_concepts(selector, repo, domain):
    _make(repo, domain, "Scheduled for later", START, next_review=START + timedelta(days=2), options=["c", "d"])
    _make(repo, domain, "No phrasings at all", START)
    assert selector.next_review_item(OWNER) is None


def test_next_review_item_is_deterministic_for_fixed_time(selector, repo, domain):
    for i in range(5):
        _make(repo, domain, f"Equally overdue {i}", START - timedelta(days=5),
              next_review=START - timedelta(days=1), options=["p", "q"])
    first = selector.next_review_item(OWNER)
    second = selector.next_review_item(OWNER)
    assert first.concept.id == second.concept.id


def test_due_count_ignores_concepts_without_phrasings(selector, repo, domain):
    _make(repo, domain, "Due with phrasing", START - timedelta(days=2),
          next_review=START - timedelta(hours=1), options=["a", "b"])
    _make(repo, domain, "New with phrasing", START, options=["a", "b"])
    _make(repo, domain, "Due without phrasing", START - timedelta(days=2), next_review=START - timedelta(hours=1))
    _make(repo, domain, "Future with phrasing", START, next_review=START + timedelta(days=1), options=["a", "b"])
    assert selector.due_count(OWNER) == 2
    assert selector.due_count("nobody") == 0
