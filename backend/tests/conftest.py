"""Shared fixtures: a throwaway SQLite store and a controllable clock."""
from datetime import datetime, timedelta, timezone

import pytest

from recall.core.clock import Clock
from recall.domain.concept.service import ConceptDomainService
from recall.persistence.db import init_db
from recall.persistence.repositories.sqlite.sqlite_concept_repository import SqliteConceptRepository

START = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    def __init__(self, now: datetime = START):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "recall.db")
    init_db(path)
    return path


@pytest.fixture
def repo(db_path):
    return SqliteConceptRepository(db_path)


@pytest.fixture
def domain():
    return ConceptDomainService(target_phrasings=5)
