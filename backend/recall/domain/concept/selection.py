"""Phrasing selection policy: which rendering of a concept to show next."""
from __future__ import annotations
import random as _random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from recall.domain.concept.models import Phrasing

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class SelectionDecision:
    phrasing: Optional[Phrasing]
    reason: str  # canonical | least-seen | random | none


def select_phrasing_for_concept(
    phrasings: List[Phrasing],
    canonical_phrasing_id: Optional[str] = None,
    exclude_phrasing_id: Optional[str] = None,
    prefer_least_seen: bool = True,
    random: Optional[Callable[[], float]] = None,
) -> SelectionDecision:
    active = [
        p for p in phrasings
        if p.is_active and p.id != exclude_phrasing_id
    ]
    if not active:
        return SelectionDecision(phrasing=None, reason="none")

    if canonical_phrasing_id:
        for phrasing in active:
            if phrasing.id == canonical_phrasing_id:
                return SelectionDecision(phrasing=phrasing, reason="canonical")

    if prefer_least_seen:
        least_seen = min(
            active,
            key=lambda p: (p.attempt_count, p.last_attempted_at or _EPOCH, p.created_at),
        )
        return SelectionDecision(phrasing=least_seen, reason="least-seen")

    draw = (random or _random.random)()
    index = min(len(active) - 1, int(draw * len(active)))
    return SelectionDecision(phrasing=active[index], reason="random")
