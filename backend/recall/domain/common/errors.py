"""Domain exceptions: raised for conditions the normal Result flow must not absorb."""
from __future__ import annotations


class RecallError(Exception):
    """Base class for all domain errors."""


class InvalidStateError(RecallError):
    """A card's scheduling fields violate the model invariants. Never retried."""


class NotFoundError(RecallError):
    """Referenced concept or phrasing is missing or not owned by the caller."""


class TransientStoreError(RecallError):
    """Store busy, locked, or a conditional patch lost a race. Safe to retry."""


class InvalidCursorError(RecallError):
    """Continuation token is malformed or was issued for another query."""
