"""
SQLite persistence for notepath.

Tables:
- ``LearningPaths``: one row per generated path, full aggregate as JSON.
- ``NoteProgress``: mastery level, last-studied time and study count per note.
- ``NoteEmbeddings``: precomputed note vectors for the similarity cache.

Each store opens a short-lived connection per operation.
"""

import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from notepath.learning_path import LearningPath, MasteryLevel
from notepath.utils import blob_to_embedding, embedding_to_blob

logger = logging.getLogger(__name__)

# =========================================================================
# Schema constants
# =========================================================================

_CREATE_LEARNING_PATHS = """\
CREATE TABLE IF NOT EXISTS LearningPaths (
    id            TEXT    PRIMARY KEY,
    goal_note_id  TEXT    NOT NULL,
    payload       TEXT    NOT NULL,
    created_at    TIMESTAMP,
    updated_at    TIMESTAMP
);
"""

_CREATE_LEARNING_PATHS_GOAL_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_paths_goal ON LearningPaths(goal_note_id);
"""

_CREATE_NOTE_PROGRESS = """\
CREATE TABLE IF NOT EXISTS NoteProgress (
    note_id        TEXT    PRIMARY KEY,
    mastery_level  TEXT    NOT NULL DEFAULT 'not_started'
                           CHECK(mastery_level IN
                                 ('not_started','in_progress','completed')),
    last_studied   TIMESTAMP,
    study_count    INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_NOTE_EMBEDDINGS = """\
CREATE TABLE IF NOT EXISTS NoteEmbeddings (
    note_id     TEXT    PRIMARY KEY,
    note_path   TEXT    NOT NULL,
    embedding   BLOB    NOT NULL,
    dim         INTEGER NOT NULL,
    updated_at  TIMESTAMP
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =========================================================================
# Connection helper
# =========================================================================


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with WAL mode and row-factory enabled."""
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def migrate_db(db_path: str) -> None:
    """Create (or verify) every notepath table."""
    conn = get_connection(db_path)
    try:
        conn.execute(_CREATE_LEARNING_PATHS)
        conn.execute(_CREATE_LEARNING_PATHS_GOAL_INDEX)
        conn.execute(_CREATE_NOTE_PROGRESS)
        conn.execute(_CREATE_NOTE_EMBEDDINGS)
        conn.commit()
        logger.info("Migration OK at %s", os.path.abspath(db_path))
    finally:
        conn.close()


# =========================================================================
# Lock-retry helper
# =========================================================================

_SQLITE_LOCK_RETRIES = 5
_SQLITE_LOCK_BASE_DELAY = 0.1


def _retry_on_lock(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Wrap *fn* with SQLite-lock retry."""
    for attempt in range(1, _SQLITE_LOCK_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower() and attempt < _SQLITE_LOCK_RETRIES:
                delay = _SQLITE_LOCK_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "SQLite locked (attempt %d/%d), retrying in %.2fs",
                    attempt, _SQLITE_LOCK_RETRIES, delay,
                )
                time.sleep(delay)
            else:
                raise


# =========================================================================
# Path store
# =========================================================================


class SqlitePathStore:
    """Stores whole ``LearningPath`` aggregates as JSON payloads."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        migrate_db(db_path)

    def save(self, path: LearningPath) -> None:
        """Insert or replace *path*."""
        conn = get_connection(self.db_path)
        try:
            def _do_save() -> None:
                conn.execute(
                    """
                    INSERT INTO LearningPaths
                        (id, goal_note_id, payload, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        goal_note_id = excluded.goal_note_id,
                        payload      = excluded.payload,
                        updated_at   = excluded.updated_at
                    """,
                    (
                        path.id,
                        path.goal_note_id,
                        path.model_dump_json(),
                        path.created_at.isoformat(),
                        path.updated_at.isoformat(),
                    ),
                )
                conn.commit()

            _retry_on_lock(_do_save)
        finally:
            conn.close()
        logger.debug("Saved path %s (%d node(s)).", path.id, len(path.nodes))

    def find_by_id(self, path_id: str) -> Optional[LearningPath]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM LearningPaths WHERE id = ?", (path_id,)
            ).fetchone()
        finally:
            conn.close()
        return LearningPath.model_validate_json(row["payload"]) if row else None

    def find_by_goal_note(self, goal_note_id: str) -> Optional[LearningPath]:
        """Most recently updated path for *goal_note_id*."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT payload FROM LearningPaths
                WHERE goal_note_id = ?
                ORDER BY updated_at DESC, rowid DESC
                LIMIT 1
                """,
                (goal_note_id,),
            ).fetchone()
        finally:
            conn.close()
        return LearningPath.model_validate_json(row["payload"]) if row else None

    def find_all(self) -> List[LearningPath]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT payload FROM LearningPaths ORDER BY updated_at DESC"
            ).fetchall()
        finally:
            conn.close()
        return [LearningPath.model_validate_json(r["payload"]) for r in rows]

    def delete(self, path_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            def _do_delete() -> int:
                cur = conn.execute("DELETE FROM LearningPaths WHERE id = ?", (path_id,))
                conn.commit()
                return cur.rowcount

            deleted = _retry_on_lock(_do_delete)
        finally:
            conn.close()
        return deleted > 0

    def exists(self, path_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM LearningPaths WHERE id = ?", (path_id,)
            ).fetchone()
        finally:
            conn.close()
        return row is not None


# =========================================================================
# Progress store
# =========================================================================


class SqliteProgressStore:
    """Per-note mastery level, last-studied time and study count."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        migrate_db(db_path)

    def _write(self, sql: str, params: tuple) -> None:
        conn = get_connection(self.db_path)
        try:
            def _do_write() -> None:
                conn.execute(sql, params)
                conn.commit()

            _retry_on_lock(_do_write)
        finally:
            conn.close()

    def get_progress(self, note_id: str) -> MasteryLevel:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT mastery_level FROM NoteProgress WHERE note_id = ?", (note_id,)
            ).fetchone()
        finally:
            conn.close()
        return MasteryLevel.from_string(row["mastery_level"] if row else None)

    def update_progress(self, note_id: str, level: MasteryLevel) -> None:
        self._write(
            """
            INSERT INTO NoteProgress (note_id, mastery_level) VALUES (?, ?)
            ON CONFLICT(note_id) DO UPDATE SET mastery_level = excluded.mastery_level
            """,
            (note_id, MasteryLevel(level).value),
        )

    def get_last_studied(self, note_id: str) -> Optional[datetime]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT last_studied FROM NoteProgress WHERE note_id = ?", (note_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None or row["last_studied"] is None:
            return None
        return datetime.fromisoformat(row["last_studied"])

    def update_last_studied(
        self, note_id: str, when: Optional[datetime] = None
    ) -> None:
        stamp = (when or datetime.now(timezone.utc)).isoformat()
        self._write(
            """
            INSERT INTO NoteProgress (note_id, last_studied) VALUES (?, ?)
            ON CONFLICT(note_id) DO UPDATE SET last_studied = excluded.last_studied
            """,
            (note_id, stamp),
        )

    def increment_study_count(self, note_id: str) -> None:
        self._write(
            """
            INSERT INTO NoteProgress (note_id, study_count) VALUES (?, 1)
            ON CONFLICT(note_id) DO UPDATE SET study_count = study_count + 1
            """,
            (note_id,),
        )

    def get_study_count(self, note_id: str) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT study_count FROM NoteProgress WHERE note_id = ?", (note_id,)
            ).fetchone()
        finally:
            conn.close()
        return int(row["study_count"]) if row else 0

    def get_bulk_progress(self, note_ids: Iterable[str]) -> Dict[str, MasteryLevel]:
        """Mastery for each id; ids never recorded map to not started."""
        ids = list(dict.fromkeys(note_ids))
        result = {nid: MasteryLevel.NOT_STARTED for nid in ids}
        if not ids:
            return result
        conn = get_connection(self.db_path)
        try:
            placeholders = ",".join("?" * len(ids))
            rows = conn.execute(
                f"SELECT note_id, mastery_level FROM NoteProgress "
                f"WHERE note_id IN ({placeholders})",
                ids,
            ).fetchall()
        finally:
            conn.close()
        for r in rows:
            result[r["note_id"]] = MasteryLevel.from_string(r["mastery_level"])
        return result

    def reset_progress(self, note_id: str) -> None:
        self._write(
            """
            UPDATE NoteProgress
            SET mastery_level = 'not_started', last_studied = NULL
            WHERE note_id = ?
            """,
            (note_id,),
        )

    def reset_all_progress(self) -> None:
        self._write(
            "UPDATE NoteProgress SET mastery_level = 'not_started', last_studied = NULL",
            (),
        )


# =========================================================================
# Note embeddings
# =========================================================================


def save_note_embeddings(
    conn: sqlite3.Connection,
    records: Iterable[Tuple[str, str, np.ndarray]],
) -> int:
    """Upsert ``(note_id, note_path, vector)`` rows; returns the row count."""
    now = _now_iso()
    rows = [
        (note_id, note_path, embedding_to_blob(vec), int(np.asarray(vec).size), now)
        for note_id, note_path, vec in records
    ]

    def _do_insert() -> None:
        conn.executemany(
            """
            INSERT INTO NoteEmbeddings (note_id, note_path, embedding, dim, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(note_id) DO UPDATE SET
                note_path  = excluded.note_path,
                embedding  = excluded.embedding,
                dim        = excluded.dim,
                updated_at = excluded.updated_at
            """,
            rows,
        )
        conn.commit()

    _retry_on_lock(_do_insert)
    logger.info("Stored %d note embedding(s).", len(rows))
    return len(rows)


def load_note_embeddings(
    conn: sqlite3.Connection,
) -> List[Tuple[str, str, np.ndarray]]:
    """All stored ``(note_id, note_path, vector)`` rows, ordered by note id."""
    rows = conn.execute(
        "SELECT note_id, note_path, embedding, dim FROM NoteEmbeddings ORDER BY note_id"
    ).fetchall()
    records = []
    for r in rows:
        vec = blob_to_embedding(r["embedding"])
        if vec.shape[0] != r["dim"]:
            logger.warning(
                "⚠ Embedding for %s has %d values, expected %d; skipped.",
                r["note_id"], vec.shape[0], r["dim"],
            )
            continue
        records.append((r["note_id"], r["note_path"], vec))
    return records


def embeddings_loader(db_path: str):
    """Zero-argument loader for ``CachedSimilarityIndex``."""

    def _load() -> List[Tuple[str, str, np.ndarray]]:
        conn = get_connection(db_path)
        try:
            return load_note_embeddings(conn)
        finally:
            conn.close()

    return _load
