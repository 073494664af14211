"""
pytest suite for SQLite persistence and the progress use case.
"""

import os
import sqlite3
import sys
from datetime import datetime, timezone

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from notepath.db import (
    SqlitePathStore,
    SqliteProgressStore,
    embeddings_loader,
    get_connection,
    load_note_embeddings,
    migrate_db,
    save_note_embeddings,
)
from notepath.learning_path import LearningNode, LearningPath, MasteryLevel
from notepath.models import KnowledgeGapItem
from notepath.progress import next_recommended_nodes, reset_path_progress, update_progress
from notepath.relations import DependencyRelation
from notepath.similarity_index import CachedSimilarityIndex


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture()
def tmp_db(tmp_path):
    """Return a DB path inside a temporary directory."""
    return str(tmp_path / "test_notepath.db")


def _sample_path(path_id="path-1", goal="g"):
    nodes = [
        LearningNode(note_id="a", note_path="a.md", estimated_minutes=10),
        LearningNode(
            note_id="b", note_path="b.md",
            dependencies=[DependencyRelation.prerequisite("a", "b", 0.7)],
        ),
        LearningNode(note_id=goal, note_path=f"{goal}.md"),
    ]
    return LearningPath.create(
        id=path_id,
        goal_note_id=goal,
        goal_note_title="Goal",
        nodes=nodes,
        knowledge_gaps=[KnowledgeGapItem(concept="Sets", priority="high")],
        total_analyzed_notes=7,
    )


class TestMigration:
    """Schema creation."""

    def test_tables_created(self, tmp_db):
        migrate_db(tmp_db)
        migrate_db(tmp_db)  # idempotent
        conn = get_connection(tmp_db)
        try:
            names = {
                r["name"] for r in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
            }
        finally:
            conn.close()
        assert {"LearningPaths", "NoteProgress", "NoteEmbeddings"} <= names

    def test_mastery_check_constraint(self, tmp_db):
        migrate_db(tmp_db)
        conn = get_connection(tmp_db)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO NoteProgress (note_id, mastery_level) VALUES ('x', 'bogus')"
                )
        finally:
            conn.close()


class TestPathStore:
    """Round-trips and lookups."""

    def test_save_and_find(self, tmp_db):
        store = SqlitePathStore(tmp_db)
        path = _sample_path()
        store.save(path)
        loaded = store.find_by_id("path-1")
        assert loaded == path
        assert loaded.get_node("b").dependencies[0].source_id == "a"
        assert loaded.knowledge_gaps[0].priority == "high"
        assert store.exists("path-1")
        assert store.find_by_id("missing") is None

    def test_save_is_upsert(self, tmp_db):
        store = SqlitePathStore(tmp_db)
        path = _sample_path()
        store.save(path)
        store.save(path.mark_node_completed("a"))
        assert len(store.find_all()) == 1
        assert store.find_by_id("path-1").get_node("a").is_completed()

    def test_find_by_goal_returns_latest(self, tmp_db):
        store = SqlitePathStore(tmp_db)
        old = _sample_path("path-old")
        new = _sample_path("path-new").mark_node_in_progress("a")
        store.save(old)
        store.save(new)
        assert store.find_by_goal_note("g").id == "path-new"
        assert store.find_by_goal_note("nobody") is None

    def test_delete(self, tmp_db):
        store = SqlitePathStore(tmp_db)
        store.save(_sample_path())
        assert store.delete("path-1") is True
        assert store.delete("path-1") is False
        assert not store.exists("path-1")


class TestProgressStore:
    """Per-note progress rows."""

    def test_defaults(self, tmp_db):
        store = SqliteProgressStore(tmp_db)
        assert store.get_progress("x") is MasteryLevel.NOT_STARTED
        assert store.get_last_studied("x") is None
        assert store.get_study_count("x") == 0

    def test_update_and_bulk(self, tmp_db):
        store = SqliteProgressStore(tmp_db)
        store.update_progress("a", MasteryLevel.COMPLETED)
        store.update_progress("b", MasteryLevel.IN_PROGRESS)
        bulk = store.get_bulk_progress(["a", "b", "c"])
        assert bulk == {
            "a": MasteryLevel.COMPLETED,
            "b": MasteryLevel.IN_PROGRESS,
            "c": MasteryLevel.NOT_STARTED,
        }

    def test_last_studied_and_count(self, tmp_db):
        store = SqliteProgressStore(tmp_db)
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        store.update_last_studied("a", when)
        store.increment_study_count("a")
        store.increment_study_count("a")
        assert store.get_last_studied("a") == when
        assert store.get_study_count("a") == 2
        assert store.get_progress("a") is MasteryLevel.NOT_STARTED

    def test_reset(self, tmp_db):
        store = SqliteProgressStore(tmp_db)
        store.update_progress("a", MasteryLevel.COMPLETED)
        store.update_progress("b", MasteryLevel.COMPLETED)
        store.reset_progress("a")
        assert store.get_progress("a") is MasteryLevel.NOT_STARTED
        assert store.get_progress("b") is MasteryLevel.COMPLETED
        store.reset_all_progress()
        assert store.get_progress("b") is MasteryLevel.NOT_STARTED


class TestNoteEmbeddings:
    """Vector table and the cache loader."""

    def test_save_load_roundtrip(self, tmp_db):
        migrate_db(tmp_db)
        conn = get_connection(tmp_db)
        try:
            vecs = np.eye(3, dtype=np.float32)
            n = save_note_embeddings(conn, [
                ("b", "b.md", vecs[1]), ("a", "a.md", vecs[0]),
            ])
            save_note_embeddings(conn, [("a", "a2.md", vecs[2])])
            records = load_note_embeddings(conn)
        finally:
            conn.close()
        assert n == 2
        assert [r[0] for r in records] == ["a", "b"]
        assert records[0][1] == "a2.md"
        np.testing.assert_array_equal(records[0][2], vecs[2])

    def test_loader_feeds_cache(self, tmp_db):
        migrate_db(tmp_db)
        conn = get_connection(tmp_db)
        try:
            save_note_embeddings(conn, [("a", "a.md", np.array([1.0, 0.0]))])
        finally:
            conn.close()
        cache = CachedSimilarityIndex(embeddings_loader(tmp_db))
        hits = cache.search(np.array([1.0, 0.0]), threshold=0.5)
        assert [h.note_id for h in hits] == ["a"]


class TestUpdateProgress:
    """Progress use case over real stores."""

    def test_update_persists_everywhere(self, tmp_db):
        paths, progress = SqlitePathStore(tmp_db), SqliteProgressStore(tmp_db)
        paths.save(_sample_path())
        result = update_progress(paths, progress, "path-1", "a", MasteryLevel.COMPLETED)
        assert result.success
        assert result.statistics.completed_nodes == 1
        assert result.next_recommended == ["b", "g"]
        assert paths.find_by_id("path-1").get_node("a").is_completed()
        assert progress.get_progress("a") is MasteryLevel.COMPLETED
        assert progress.get_last_studied("a") is not None
        assert progress.get_study_count("a") == 1

    def test_start_after_complete_keeps_store_completed(self, tmp_db):
        paths, progress = SqlitePathStore(tmp_db), SqliteProgressStore(tmp_db)
        paths.save(_sample_path())
        update_progress(paths, progress, "path-1", "a", MasteryLevel.COMPLETED)
        result = update_progress(paths, progress, "path-1", "a", MasteryLevel.IN_PROGRESS)
        assert result.success
        assert paths.find_by_id("path-1").get_node("a").is_completed()
        assert progress.get_progress("a") is MasteryLevel.COMPLETED
        assert progress.get_study_count("a") == 1

    def test_in_progress_recommended_first(self, tmp_db):
        paths, progress = SqlitePathStore(tmp_db), SqliteProgressStore(tmp_db)
        paths.save(_sample_path())
        result = update_progress(paths, progress, "path-1", "a", MasteryLevel.IN_PROGRESS)
        assert result.next_recommended == ["a", "b", "g"]

    def test_missing_path_and_node(self, tmp_db):
        paths, progress = SqlitePathStore(tmp_db), SqliteProgressStore(tmp_db)
        assert not update_progress(paths, progress, "nope", "a", MasteryLevel.COMPLETED).success
        paths.save(_sample_path())
        result = update_progress(paths, progress, "path-1", "zzz", MasteryLevel.COMPLETED)
        assert result.success is False
        assert "zzz" in result.error

    def test_reset_path(self, tmp_db):
        paths, progress = SqlitePathStore(tmp_db), SqliteProgressStore(tmp_db)
        paths.save(_sample_path())
        update_progress(paths, progress, "path-1", "a", MasteryLevel.COMPLETED)
        result = reset_path_progress(paths, progress, "path-1")
        assert result.success
        assert result.statistics.completed_nodes == 0
        assert progress.get_progress("a") is MasteryLevel.NOT_STARTED

    def test_next_recommended_limit(self):
        nodes = [LearningNode(note_id=f"n{i}", note_path=f"n{i}.md") for i in range(6)]
        path = LearningPath.create(id="p", goal_note_id="n5", nodes=nodes)
        assert next_recommended_nodes(path) == ["n0", "n1", "n2"]
