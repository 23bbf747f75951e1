"""Concept listing, management and audit API endpoints."""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from recall.api.auth import get_current_user, optional_current_user
from recall.application.concept_app_service import ConceptAppService, ConceptDetail
from recall.application.review_queue import ReviewQueueSelector
from recall.container import get_concept_app_service, get_review_queue_selector
from recall.core.clock import to_millis
from recall.domain.concept.models import Concept, Interaction, Phrasing
from recall.domain.review.queue import QueuePage, build_queue_query
from recall.domain.scheduling.models import CardState

router = APIRouter(tags=["concepts"])


# ------------------------------------------------------------------
# Pydantic schemas
# ------------------------------------------------------------------
class ConceptContentBody(BaseModel):
    title: str
    description: Optional[str] = None


class CreateConceptsBody(BaseModel):
    concepts: List[ConceptContentBody]


class PhrasingBody(BaseModel):
    question: str
    type: str
    correct_answer: str
    options: List[str] = []
    explanation: Optional[str] = None


class AddPhrasingsBody(BaseModel):
    phrasings: List[PhrasingBody]


class CanonicalBody(BaseModel):
    phrasing_id: Optional[str] = None


class SignalsBody(BaseModel):
    conflict_score: Optional[float] = None
    thin_score: Optional[float] = None
    quality_score: Optional[float] = None


# ------------------------------------------------------------------
# Serializers
# ------------------------------------------------------------------
def _serialize_card(card: Optional[CardState]) -> Optional[dict]:
    if card is None:
        return None
    return {
        "state": card.state.value,
        "stability": card.stability,
        "difficulty": card.difficulty,
        "next_review": to_millis(card.next_review),
        "last_reviewed": to_millis(card.last_reviewed),
        "reps": card.reps,
        "lapses": card.lapses,
        "scheduled_days": card.scheduled_days,
    }


def serialize_concept(c: Concept) -> dict:
    return {
        "id": c.id,
        "title": c.title,
        "description": c.description,
        "fsrs": _serialize_card(c.card),
        "phrasing_count": c.phrasing_count,
        "canonical_phrasing_id": c.canonical_phrasing_id,
        "conflict_score": c.conflict_score,
        "thin_score": c.thin_score,
        "quality_score": c.quality_score,
        "attempt_count": c.attempt_count,
        "correct_count": c.correct_count,
        "created_at": to_millis(c.created_at),
        "updated_at": to_millis(c.updated_at),
    }


def serialize_phrasing(p: Phrasing, options: Optional[List[str]] = None) -> dict:
    return {
        "id": p.id,
        "concept_id": p.concept_id,
        "question": p.question,
        "type": p.type,
        "options": p.options if options is None else options,
        "correct_answer": p.correct_answer,
        "explanation": p.explanation,
        "attempt_count": p.attempt_count,
        "correct_count": p.correct_count,
        "last_attempted_at": to_millis(p.last_attempted_at),
        "created_at": to_millis(p.created_at),
    }


def _serialize_interaction(i: Interaction) -> dict:
    return {
        "id": i.id,
        "concept_id": i.concept_id,
        "phrasing_id": i.phrasing_id,
        "user_answer": i.user_answer,
        "is_correct": i.is_correct,
        "attempted_at": to_millis(i.attempted_at),
        "time_spent": i.time_spent,
        "session_id": i.session_id,
        "context": i.context,
    }


def _serialize_page(page: QueuePage) -> dict:
    return {
        "concepts": [serialize_concept(c) for c in page.concepts],
        "continue_cursor": page.continue_cursor,
        "is_done": page.is_done,
        "server_time": to_millis(page.server_time),
        "mode": page.mode.value,
    }


def _serialize_detail(detail: ConceptDetail) -> dict:
    data = serialize_concept(detail.concept)
    data["phrasings"] = [serialize_phrasing(p) for p in detail.phrasings]
    return data


# ------------------------------------------------------------------
# Health check
# ------------------------------------------------------------------
@router.get("/health")
def health():
    return {"status": "ok"}


# ------------------------------------------------------------------
# Concept endpoints
# ------------------------------------------------------------------
@router.get("/concepts/")
def list_concepts(
    view: Optional[str] = None,
    sort: Optional[str] = None,
    search: Optional[str] = None,
    cursor: Optional[str] = None,
    page_size: Optional[int] = Query(default=None, ge=1),
    selector: ReviewQueueSelector = Depends(get_review_queue_selector),
    current_user: Optional[dict] = Depends(optional_current_user),
):
    owner_id = current_user["sub"] if current_user else None
    try:
        query = build_queue_query(owner_id, view=view, sort=sort, search=search, cursor=cursor, page_size=page_size)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _serialize_page(selector.select(owner_id, query))


@router.post("/concepts/", status_code=status.HTTP_201_CREATED)
def create_concepts(
    body: CreateConceptsBody,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    result = svc.create_concepts(current_user["sub"], [c.model_dump() for c in body.concepts])
    if not result.is_success:
        raise HTTPException(status_code=400, detail=result.error)
    return {"concept_ids": result.value}


@router.get("/concepts/{concept_id}")
def get_concept(
    concept_id: str,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    return _serialize_detail(svc.get_concept_detail(current_user["sub"], concept_id))


@router.get("/concepts/{concept_id}/interactions")
def list_interactions(
    concept_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    return [_serialize_interaction(i) for i in svc.list_interactions(current_user["sub"], concept_id, limit)]


# ------------------------------------------------------------------
# Phrasing endpoints
# ------------------------------------------------------------------
@router.post("/concepts/{concept_id}/phrasings", status_code=status.HTTP_201_CREATED)
def add_phrasings(
    concept_id: str,
    body: AddPhrasingsBody,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    result = svc.add_phrasings(current_user["sub"], concept_id, [p.model_dump() for p in body.phrasings])
    if not result.is_success:
        raise HTTPException(status_code=400, detail=result.error)
    return [serialize_phrasing(p) for p in result.value]


@router.post("/concepts/{concept_id}/phrasings/{phrasing_id}/archive")
def archive_phrasing(
    concept_id: str,
    phrasing_id: str,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    result = svc.archive_phrasing(current_user["sub"], concept_id, phrasing_id)
    if not result.is_success:
        raise HTTPException(status_code=400, detail=result.error)
    return {"archived": result.value}


@router.put("/concepts/{concept_id}/canonical")
def set_canonical(
    concept_id: str,
    body: CanonicalBody,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    result = svc.set_canonical_phrasing(current_user["sub"], concept_id, body.phrasing_id)
    if not result.is_success:
        raise HTTPException(status_code=400, detail=result.error)
    return _serialize_detail(svc.get_concept_detail(current_user["sub"], concept_id))


@router.put("/concepts/{concept_id}/signals")
def apply_signals(
    concept_id: str,
    body: SignalsBody,
    svc: ConceptAppService = Depends(get_concept_app_service),
    current_user: dict = Depends(get_current_user),
):
    result = svc.apply_signals(current_user["sub"], concept_id, body.model_dump(exclude_unset=True))
    if not result.is_success:
        raise HTTPException(status_code=400, detail=result.error)
    return _serialize_detail(svc.get_concept_detail(current_user["sub"], concept_id))
