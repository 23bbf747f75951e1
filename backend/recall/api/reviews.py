"""Review session API: grade attempts, fetch the next item to review, and report card counts."""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from recall.api.auth import get_current_user
from recall.api.concepts import serialize_concept, serialize_phrasing
from recall.application.interaction_recorder import InteractionRecorder, RecordInteractionCommand
from recall.application.review_queue import ReviewQueueSelector
from recall.container import get_interaction_recorder, get_review_queue_selector
from recall.core.clock import to_millis

router = APIRouter(tags=["reviews"])


class InteractionBody(BaseModel):
    concept_id: str
    user_answer: str
    is_correct: bool
    phrasing_id: Optional[str] = None
    time_spent: Optional[int] = None
    session_id: Optional[str] = None


@router.post("/interactions")
def record_interaction(
    body: InteractionBody,
    recorder: InteractionRecorder = Depends(get_interaction_recorder),
    current_user: dict = Depends(get_current_user),
):
    outcome = recorder.record(RecordInteractionCommand(owner_id=current_user["sub"], **body.model_dump()))
    return {
        "next_review": to_millis(outcome.next_review),
        "scheduled_days": outcome.scheduled_days,
        "new_state": outcome.new_state.value,
    }


@router.get("/reviews/next")
def next_review(
    selector: ReviewQueueSelector = Depends(get_review_queue_selector),
    current_user: dict = Depends(get_current_user),
):
    item = selector.next_review_item(current_user["sub"])
    if item is None:
        return None
    return {
        "concept": serialize_concept(item.concept),
        "phrasing": serialize_phrasing(item.phrasing, options=item.options),
        "retrievability": item.retrievability,
        "selection_reason": item.selection_reason,
    }


@router.get("/reviews/due-count")
def due_count(
    selector: ReviewQueueSelector = Depends(get_review_queue_selector),
    current_user: dict = Depends(get_current_user),
):
    return {"due_count": selector.due_count(current_user["sub"])}


@router.get("/reviews/stats")
def card_stats(
    selector: ReviewQueueSelector = Depends(get_review_queue_selector),
    current_user: dict = Depends(get_current_user),
):
    stats = selector.card_stats(current_user["sub"])
    return {
        "total_cards": stats.total_cards,
        "new_count": stats.new_count,
        "learning_count": stats.learning_count,
        "mature_count": stats.mature_count,
        "due_now_count": stats.due_now_count,
        "next_review_time": to_millis(stats.next_review_time),
    }
