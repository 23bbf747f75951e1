"""
Seeded shuffling for answer options.

The same question shows the same option order to the same user on every
attempt, while different users see different orders.
"""
from __future__ import annotations
import random
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

ANONYMOUS = "anonymous"


def get_shuffle_seed(question_id: str, user_id: Optional[str] = None) -> str:
    return f"{question_id}-{user_id or ANONYMOUS}"


def shuffle_with_seed(items: Sequence[T], seed: str) -> List[T]:
    """Fisher-Yates over a string-seeded PRNG. Returns a new list; ``items`` is untouched."""
    result = list(items)
    if len(result) <= 1:
        return result

    rng = random.Random(seed)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randrange(i + 1)
        result[i], result[j] = result[j], result[i]
    return result
