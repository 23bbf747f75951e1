"""SQLite implementation of ConceptRepository."""
from __future__ import annotations
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Set, Tuple

from loguru import logger

from recall.core.clock import from_millis, to_millis
from recall.domain.common.errors import TransientStoreError
from recall.domain.concept.models import Concept, Interaction, Phrasing
from recall.domain.review.queue import QueueCursor, QueueSort, QueueView, ViewThresholds
from recall.domain.review.stats import STAT_FIELDS, CardStats
from recall.domain.scheduling.models import DEFAULT_DIFFICULTY, CardState, MemoryState
from recall.persistence.db import get_connection
from recall.persistence.interfaces.concept_repository import ConceptRepository, ConceptTransaction

# Columns a patch may touch; keys come from application code, never from requests.
_CONCEPT_PATCHABLE = {
    "title", "description",
    "fsrs_state", "stability", "difficulty", "next_review", "last_reviewed",
    "reps", "lapses", "step", "scheduled_days", "elapsed_days",
    "phrasing_count", "canonical_phrasing_id",
    "conflict_score", "thin_score", "quality_score",
    "attempt_count", "correct_count", "updated_at",
}
_PHRASING_PATCHABLE = {
    "attempt_count", "correct_count", "last_attempted_at", "archived_at", "updated_at",
}

_DUE_KEY = "COALESCE(next_review, created_at)"

_TRANSIENT_MESSAGES = ("database is locked", "database is busy", "database table is locked")


# ------------------------------------------------------------------
# Row mapping
# ------------------------------------------------------------------
def card_to_row(card: CardState) -> dict:
    return {
        "fsrs_state": card.state.value,
        "stability": card.stability,
        "difficulty": card.difficulty,
        "next_review": to_millis(card.next_review),
        "last_reviewed": to_millis(card.last_reviewed),
        "reps": card.reps,
        "lapses": card.lapses,
        "step": card.step,
        "scheduled_days": card.scheduled_days,
        "elapsed_days": card.elapsed_days,
    }


def _row_to_card(row) -> Optional[CardState]:
    if row["fsrs_state"] is None:
        return None
    return CardState(
        state=MemoryState(row["fsrs_state"]),
        stability=row["stability"] if row["stability"] is not None else 0.0,
        difficulty=row["difficulty"] if row["difficulty"] is not None else DEFAULT_DIFFICULTY,
        next_review=from_millis(row["next_review"]),
        last_reviewed=from_millis(row["last_reviewed"]),
        reps=row["reps"],
        lapses=row["lapses"],
        step=row["step"],
        scheduled_days=row["scheduled_days"],
        elapsed_days=row["elapsed_days"],
    )


def _row_to_concept(row) -> Concept:
    return Concept(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        description=row["description"],
        card=_row_to_card(row),
        phrasing_count=row["phrasing_count"],
        canonical_phrasing_id=row["canonical_phrasing_id"],
        conflict_score=row["conflict_score"],
        thin_score=row["thin_score"],
        quality_score=row["quality_score"],
        attempt_count=row["attempt_count"],
        correct_count=row["correct_count"],
        version=row["version"],
        created_at=from_millis(row["created_at"]),
        updated_at=from_millis(row["updated_at"]),
    )


def _row_to_phrasing(row) -> Phrasing:
    return Phrasing(
        id=row["id"],
        concept_id=row["concept_id"],
        owner_id=row["owner_id"],
        question=row["question"],
        explanation=row["explanation"],
        type=row["type"],
        options=json.loads(row["options"] or "[]"),
        correct_answer=row["correct_answer"],
        attempt_count=row["attempt_count"],
        correct_count=row["correct_count"],
        last_attempted_at=from_millis(row["last_attempted_at"]),
        created_at=from_millis(row["created_at"]),
        updated_at=from_millis(row["updated_at"]),
        archived_at=from_millis(row["archived_at"]),
    )


def _row_to_interaction(row) -> Interaction:
    return Interaction(
        id=row["id"],
        owner_id=row["owner_id"],
        concept_id=row["concept_id"],
        phrasing_id=row["phrasing_id"],
        user_answer=row["user_answer"],
        is_correct=bool(row["is_correct"]),
        attempted_at=from_millis(row["attempted_at"]),
        time_spent=row["time_spent"],
        session_id=row["session_id"],
        context=json.loads(row["context"]) if row["context"] else None,
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _is_transient(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


def _to_columns(fields: dict) -> dict:
    """Expand a ``card`` entry into its columns and store datetimes as epoch ms."""
    columns = {}
    for name, value in fields.items():
        if name == "card":
            columns.update(card_to_row(value))
        elif isinstance(value, datetime):
            columns[name] = to_millis(value)
        elif isinstance(value, MemoryState):
            columns[name] = value.value
        else:
            columns[name] = value
    return columns


def _assignments(columns: dict, allowed: set) -> str:
    unknown = set(columns) - allowed
    if unknown:
        raise ValueError(f"Cannot patch column(s): {sorted(unknown)}")
    return ", ".join(f"{column} = :{column}" for column in columns)


# ------------------------------------------------------------------
# Transaction
# ------------------------------------------------------------------
class SqliteConceptTransaction(ConceptTransaction):
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get_concept(self, concept_id: str) -> Optional[Concept]:
        row = self._conn.execute("SELECT * FROM concepts WHERE id = ?", (concept_id,)).fetchone()
        return _row_to_concept(row) if row else None

    def get_phrasing(self, phrasing_id: str) -> Optional[Phrasing]:
        row = self._conn.execute("SELECT * FROM phrasings WHERE id = ?", (phrasing_id,)).fetchone()
        return _row_to_phrasing(row) if row else None

    def insert_concept(self, concept: Concept) -> str:
        params = {
            "id": concept.id,
            "owner_id": concept.owner_id,
            "title": concept.title,
            "description": concept.description,
            "phrasing_count": concept.phrasing_count,
            "canonical_phrasing_id": concept.canonical_phrasing_id,
            "conflict_score": concept.conflict_score,
            "thin_score": concept.thin_score,
            "quality_score": concept.quality_score,
            "attempt_count": concept.attempt_count,
            "correct_count": concept.correct_count,
            "created_at": to_millis(concept.created_at),
            "updated_at": to_millis(concept.updated_at),
            **(card_to_row(concept.card) if concept.card else {}),
        }
        columns = ", ".join(params)
        placeholders = ", ".join(f":{c}" for c in params)
        self._conn.execute(f"INSERT INTO concepts ({columns}) VALUES ({placeholders})", params)
        return concept.id

    def insert_phrasing(self, phrasing: Phrasing) -> str:
        self._conn.execute(
            """
            INSERT INTO phrasings (
                id, concept_id, owner_id, question, explanation, type, options,
                correct_answer, attempt_count, correct_count, last_attempted_at,
                created_at, updated_at, archived_at
            ) VALUES (
                :id, :concept_id, :owner_id, :question, :explanation, :type, :options,
                :correct_answer, :attempt_count, :correct_count, :last_attempted_at,
                :created_at, :updated_at, :archived_at
            )
            """,
            {
                "id": phrasing.id,
                "concept_id": phrasing.concept_id,
                "owner_id": phrasing.owner_id,
                "question": phrasing.question,
                "explanation": phrasing.explanation,
                "type": phrasing.type,
                "options": json.dumps(phrasing.options),
                "correct_answer": phrasing.correct_answer,
                "attempt_count": phrasing.attempt_count,
                "correct_count": phrasing.correct_count,
                "last_attempted_at": to_millis(phrasing.last_attempted_at),
                "created_at": to_millis(phrasing.created_at),
                "updated_at": to_millis(phrasing.updated_at),
                "archived_at": to_millis(phrasing.archived_at),
            },
        )
        return phrasing.id

    def insert_interaction(self, interaction: Interaction) -> str:
        self._conn.execute(
            """
            INSERT INTO interactions (
                id, owner_id, concept_id, phrasing_id, user_answer, is_correct,
                attempted_at, time_spent, session_id, context
            ) VALUES (
                :id, :owner_id, :concept_id, :phrasing_id, :user_answer, :is_correct,
                :attempted_at, :time_spent, :session_id, :context
            )
            """,
            {
                "id": interaction.id,
                "owner_id": interaction.owner_id,
                "concept_id": interaction.concept_id,
                "phrasing_id": interaction.phrasing_id,
                "user_answer": interaction.user_answer,
                "is_correct": int(interaction.is_correct),
                "attempted_at": to_millis(interaction.attempted_at),
                "time_spent": interaction.time_spent,
                "session_id": interaction.session_id,
                "context": json.dumps(interaction.context) if interaction.context else None,
            },
        )
        return interaction.id

    def patch_concept(self, concept_id: str, fields: dict, expected_version: Optional[int] = None) -> bool:
        columns = _to_columns(fields)
        sql = f"UPDATE concepts SET {_assignments(columns, _CONCEPT_PATCHABLE)}, version = version + 1 WHERE id = :_id"
        params = {**columns, "_id": concept_id}
        if expected_version is not None:
            sql += " AND version = :_expected_version"
            params["_expected_version"] = expected_version
        cur = self._conn.execute(sql, params)
        return cur.rowcount > 0

    def patch_phrasing(self, phrasing_id: str, fields: dict) -> None:
        columns = _to_columns(fields)
        self._conn.execute(
            f"UPDATE phrasings SET {_assignments(columns, _PHRASING_PATCHABLE)} WHERE id = :_id",
            {**columns, "_id": phrasing_id},
        )

    def apply_stats_delta(self, owner_id: str, delta: Dict[str, int], now: datetime) -> None:
        unknown = set(delta) - set(STAT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown stat counter(s): {sorted(unknown)}")
        self._conn.execute(
            "INSERT OR IGNORE INTO user_stats (owner_id, last_calculated) VALUES (?, ?)",
            (owner_id, to_millis(now)),
        )
        assignments = ", ".join(f"{name} = MAX(0, {name} + :{name})" for name in STAT_FIELDS)
        self._conn.execute(
            f"UPDATE user_stats SET {assignments}, last_calculated = :_now WHERE owner_id = :_owner_id",
            {**{name: delta.get(name, 0) for name in STAT_FIELDS}, "_now": to_millis(now), "_owner_id": owner_id},
        )


# ------------------------------------------------------------------
# Repository
# ------------------------------------------------------------------
class SqliteConceptRepository(ConceptRepository):

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self._db_path)

    @contextmanager
    def transaction(self) -> Iterator[SqliteConceptTransaction]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield SqliteConceptTransaction(conn)
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if _is_transient(e):
                logger.warning("SQLite transaction aborted: {}", e)
                raise TransientStoreError(str(e)) from e
            raise
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetch_concepts(self, sql: str, params) -> List[Concept]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [_row_to_concept(r) for r in rows]

    def get_by_id(self, concept_id: str) -> Optional[Concept]:
        concepts = self._fetch_concepts("SELECT * FROM concepts WHERE id = ?", (concept_id,))
        return concepts[0] if concepts else None

    def list_titles(self, owner_id: str) -> Set[str]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT title FROM concepts WHERE owner_id = ?", (owner_id,)).fetchall()
        finally:
            conn.close()
        return {r["title"].strip().lower() for r in rows}

    def list_page(
        self,
        owner_id: str,
        view: QueueView,
        sort: QueueSort,
        cursor: Optional[QueueCursor],
        limit: int,
        now: datetime,
        thresholds: ViewThresholds,
    ) -> Tuple[List[Concept], bool]:
        clauses = ["owner_id = :owner_id"]
        params = {"owner_id": owner_id, "limit": limit + 1}

        if view is QueueView.DUE:
            clauses.append(f"{_DUE_KEY} <= :now")
            params["now"] = to_millis(now)
        elif view is QueueView.THIN:
            clauses.append("thin_score IS NOT NULL AND thin_score > :thin")
            params["thin"] = thresholds.thin
        elif view is QueueView.CONFLICT:
            clauses.append("conflict_score IS NOT NULL AND conflict_score > :conflict")
            params["conflict"] = thresholds.conflict

        if sort is QueueSort.RECENT:
            key, order, after = "created_at", "DESC", "<"
        else:
            key, order, after = _DUE_KEY, "ASC", ">"

        if cursor is not None:
            clauses.append(f"({key} {after} :cursor_key OR ({key} = :cursor_key AND id {after} :cursor_id))")
            params["cursor_key"] = cursor.key
            params["cursor_id"] = cursor.concept_id

        sql = (
            f"SELECT * FROM concepts WHERE {' AND '.join(clauses)} "
            f"ORDER BY {key} {order}, id {order} LIMIT :limit"
        )
        concepts = self._fetch_concepts(sql, params)
        has_more = len(concepts) > limit
        return concepts[:limit], has_more

    def search(self, owner_id: str, term: str, limit: int) -> List[Concept]:
        pattern = f"%{_escape_like(term)}%"
        return self._fetch_concepts(
            """
            SELECT * FROM concepts
            WHERE owner_id = ?
              AND (title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (owner_id, pattern, pattern, limit),
        )

    def list_due_candidates(self, owner_id: str, now: datetime, limit: int) -> List[Concept]:
        return self._fetch_concepts(
            """
            SELECT * FROM concepts
            WHERE owner_id = ? AND phrasing_count > 0
              AND fsrs_state IS NOT NULL AND fsrs_state != 'new'
              AND next_review <= ?
            ORDER BY next_review ASC, id ASC
            LIMIT ?
            """,
            (owner_id, to_millis(now), limit),
        )

    def list_new_candidates(self, owner_id: str, limit: int) -> List[Concept]:
        return self._fetch_concepts(
            """
            SELECT * FROM concepts
            WHERE owner_id = ? AND phrasing_count > 0
              AND (fsrs_state IS NULL OR fsrs_state = 'new')
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (owner_id, limit),
        )

    def count_due(self, owner_id: str, now: datetime) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT COUNT(*) FROM concepts WHERE owner_id = ? AND phrasing_count > 0 AND {_DUE_KEY} <= ?",
                (owner_id, to_millis(now)),
            ).fetchone()
        finally:
            conn.close()
        return row[0]

    def get_phrasings(self, concept_id: str, include_archived: bool = False) -> List[Phrasing]:
        sql = "SELECT * FROM phrasings WHERE concept_id = ?"
        if not include_archived:
            sql += " AND archived_at IS NULL"
        sql += " ORDER BY created_at DESC, id DESC"
        conn = self._connect()
        try:
            rows = conn.execute(sql, (concept_id,)).fetchall()
        finally:
            conn.close()
        return [_row_to_phrasing(r) for r in rows]

    def list_interactions(self, concept_id: str, limit: int) -> List[Interaction]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM interactions WHERE concept_id = ? ORDER BY attempted_at DESC, id DESC LIMIT ?",
                (concept_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_interaction(r) for r in rows]

    def get_card_stats(self, owner_id: str, now: datetime) -> CardStats:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM user_stats WHERE owner_id = ?", (owner_id,)).fetchone()
            upcoming = conn.execute(
                "SELECT MIN(next_review) FROM concepts WHERE owner_id = ? AND next_review > ?",
                (owner_id, to_millis(now)),
            ).fetchone()
        finally:
            conn.close()
        next_review_time = from_millis(upcoming[0])
        if row is None:
            return CardStats(next_review_time=next_review_time)
        return CardStats(
            **{name: row[name] for name in STAT_FIELDS},
            next_review_time=next_review_time,
        )
