"""Business rules for the Concept domain: content validation and phrasing bookkeeping."""
from __future__ import annotations
from typing import Optional

from recall.domain.common.result import Result
from recall.domain.concept.models import PHRASING_TYPES

MIN_TITLE_LENGTH = 5


def normalize_title(title: str) -> str:
    return (title or "").strip().lower()


def validate_concept_content(data: dict) -> Result[dict]:
    """Validates that a concept has a usable title. Returns the trimmed payload."""
    title = (data.get("title") or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        return Result.fail(f"Concept 'title' must be at least {MIN_TITLE_LENGTH} characters.")
    description = (data.get("description") or "").strip() or None
    return Result.ok({"title": title, "description": description})


def validate_phrasing_content(data: dict) -> Result[dict]:
    question = (data.get("question") or "").strip()
    if not question:
        return Result.fail("Phrasing 'question' is required and cannot be empty.")

    kind = data.get("type")
    if kind not in PHRASING_TYPES:
        return Result.fail(f"'{kind}' is not a valid phrasing type. Must be one of {sorted(PHRASING_TYPES)}.")

    options = list(data.get("options") or [])
    correct_answer = (data.get("correct_answer") or "").strip()
    if not correct_answer:
        return Result.fail("Phrasing 'correct_answer' is required.")
    if kind in {"multiple-choice", "true-false"}:
        if len(options) < 2:
            return Result.fail(f"A '{kind}' phrasing needs at least two options.")
        if correct_answer not in options:
            return Result.fail("Phrasing 'correct_answer' must be one of its options.")

    return Result.ok({
        "question": question,
        "type": kind,
        "options": options,
        "correct_answer": correct_answer,
        "explanation": (data.get("explanation") or "").strip() or None,
    })


def compute_thin_score(phrasing_count: int, target: int) -> Optional[float]:
    """How many phrasings a concept is short of ``target``; None once it has enough."""
    count = max(0, phrasing_count)
    if count >= target:
        return None
    return float(target - count)
