"""
pytest suite for relations, mastery levels, learning nodes and paths.
"""

import os
import sys
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from notepath.learning_path import (
    LearningNode,
    LearningPath,
    MasteryLevel,
    merge_knowledge_gaps,
)
from notepath.models import KnowledgeGapItem, NoteData, PathStatistics
from notepath.relations import (
    DependencyRelation,
    DependencyType,
    LinkDirection,
    build_prerequisite_index,
    derive_link_relations,
    link_to_relation,
)


# =========================================================================
# Helpers
# =========================================================================


def _node(note_id, deps=(), minutes=15):
    return LearningNode(
        note_id=note_id,
        note_path=f"{note_id}.md",
        dependencies=[DependencyRelation.prerequisite(s, note_id) for s in deps],
        estimated_minutes=minutes,
    )


def _path(*nodes):
    return LearningPath.create(id="p1", goal_note_id=nodes[-1].note_id, nodes=nodes)


class TestDependencyRelation:
    """Relation invariants and helpers."""

    def test_self_reference_rejected(self):
        with pytest.raises(ValidationError):
            DependencyRelation.prerequisite("a", "a")

    def test_confidence_clamped(self):
        assert DependencyRelation.prerequisite("a", "b", 1.7).confidence == 1.0
        assert DependencyRelation.prerequisite("a", "b", -0.2).confidence == 0.0

    def test_inverse_keeps_type_and_confidence(self):
        rel = DependencyRelation.optional("a", "b", 0.4).inverse()
        assert (rel.source_id, rel.target_id) == ("b", "a")
        assert rel.type is DependencyType.OPTIONAL
        assert rel.confidence == 0.4

    def test_from_dict_parses_type(self):
        rel = DependencyRelation.from_dict(
            {"sourceId": "a", "targetId": "b", "type": "PREREQUISITE"}
        )
        assert rel.is_prerequisite()
        assert DependencyRelation.from_dict(
            {"source_id": "a", "target_id": "b", "type": "weird"}
        ).is_related()

    def test_equals_ignores_confidence(self):
        a = DependencyRelation.prerequisite("a", "b", 0.3)
        b = DependencyRelation.prerequisite("a", "b", 0.9)
        assert a.equals(b)
        assert not a.equals(DependencyRelation.related("a", "b", 0.3))

    def test_display(self):
        assert DependencyRelation.prerequisite("a", "b").to_display_string() == (
            "a → b (prerequisite)"
        )


class TestLinkMapping:
    """The named link → prerequisite convention."""

    def setup_method(self):
        self.notes = [
            NoteData(id="A", path="A.md", links=["B"]),
            NoteData(id="B", path="B.md", links=["C"]),
            NoteData(id="C", path="C.md"),
        ]

    def test_linker_first(self):
        rel = link_to_relation("A", "B", LinkDirection.LINKER_FIRST)
        assert (rel.source_id, rel.target_id) == ("A", "B")
        index = build_prerequisite_index(self.notes, LinkDirection.LINKER_FIRST)
        assert index == {"A": [], "B": ["A"], "C": ["B"]}

    def test_linked_first(self):
        rel = link_to_relation("A", "B", "linked_first")
        assert (rel.source_id, rel.target_id) == ("B", "A")
        index = build_prerequisite_index(self.notes, LinkDirection.LINKED_FIRST)
        assert index == {"A": ["B"], "B": ["C"], "C": []}

    def test_derive_stays_inside_node_set(self):
        rels = derive_link_relations(self.notes, ["B", "C"])
        assert [(r.source_id, r.target_id) for r in rels] == [("B", "C")]
        assert rels[0].confidence == 0.7

    def test_declared_backlink_yields_edge(self):
        notes = [
            NoteData(id="X", path="X.md"),
            NoteData(id="C", path="C.md", backlinks=["X"]),
        ]
        assert build_prerequisite_index(notes)["C"] == ["X"]
        rels = derive_link_relations(notes, ["X", "C"])
        assert [(r.source_id, r.target_id) for r in rels] == [("X", "C")]

    def test_backlink_and_link_not_doubled(self):
        notes = [
            NoteData(id="A", path="A.md", links=["B"]),
            NoteData(id="B", path="B.md", backlinks=["A"]),
        ]
        rels = derive_link_relations(notes, ["A", "B"])
        assert [(r.source_id, r.target_id) for r in rels] == [("A", "B")]


class TestMasteryLevel:
    """State machine transitions."""

    def test_transitions(self):
        level = MasteryLevel.NOT_STARTED
        assert level.start_learning() is MasteryLevel.IN_PROGRESS
        assert level.complete() is MasteryLevel.COMPLETED
        assert MasteryLevel.IN_PROGRESS.reset() is MasteryLevel.NOT_STARTED

    def test_start_does_not_regress_completed(self):
        assert MasteryLevel.COMPLETED.start_learning() is MasteryLevel.COMPLETED

    def test_from_string(self):
        assert MasteryLevel.from_string("Completed") is MasteryLevel.COMPLETED
        assert MasteryLevel.from_string("bogus") is MasteryLevel.NOT_STARTED
        assert MasteryLevel.from_string(None) is MasteryLevel.NOT_STARTED

    def test_progress_percent_and_label(self):
        assert [m.progress_percent() for m in MasteryLevel] == [0, 50, 100]
        assert MasteryLevel.IN_PROGRESS.label == "In Progress"


class TestLearningNode:
    """Node value semantics."""

    def test_title_defaults_to_id(self):
        assert _node("graphs").title == "graphs"

    def test_transitions_return_new_values(self):
        node = _node("n")
        started = node.start_learning()
        assert node.is_not_started()
        assert started.is_in_progress()
        assert started.last_studied is not None
        reset = started.complete().reset()
        assert reset.is_not_started()
        assert reset.last_studied is None

    def test_requires_id_and_path(self):
        with pytest.raises(ValidationError):
            LearningNode(note_id="", note_path="x.md")


class TestLearningPath:
    """Aggregate behaviour."""

    def test_create_numbers_from_one(self):
        path = _path(_node("a"), _node("b"), _node("c"))
        assert [n.order for n in path.nodes] == [1, 2, 3]

    def test_remove_keeps_order_contiguous(self):
        path = _path(_node("a"), _node("b"), _node("c")).remove_node("b")
        assert [(n.note_id, n.order) for n in path.nodes] == [("a", 1), ("c", 2)]

    def test_add_node_appends_or_replaces(self):
        path = _path(_node("a"), _node("b"))
        path = path.add_node(_node("c"))
        assert path.get_node("c").order == 3
        path = path.add_node(_node("a", minutes=40))
        assert path.get_node("a").order == 1
        assert path.get_node("a").estimated_minutes == 40
        assert len(path.nodes) == 3

    def test_set_nodes_renumbers(self):
        path = _path(_node("a")).set_nodes([_node("z"), _node("y")])
        assert [(n.note_id, n.order) for n in path.nodes] == [("z", 1), ("y", 2)]

    def test_update_progress(self):
        path = _path(_node("a"), _node("b"))
        before = path.updated_at
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        updated = path.update_node_progress("a", MasteryLevel.COMPLETED, now=when)
        assert updated.get_node("a").is_completed()
        assert updated.get_node("a").last_studied == when
        assert path.get_node("a").is_not_started()
        assert updated.updated_at >= before

    def test_update_unknown_node(self):
        with pytest.raises(KeyError):
            _path(_node("a")).mark_node_completed("zzz")

    def test_current_node_and_completion(self):
        path = _path(_node("a"), _node("b"))
        assert path.get_current_node().note_id == "a"
        path = path.mark_node_completed("a")
        assert path.get_current_node().note_id == "b"
        path = path.mark_node_completed("b")
        assert path.get_current_node() is None
        assert path.is_completed()
        assert not path.reset_all_progress().is_completed()

    def test_statistics(self):
        path = _path(_node("a", minutes=10), _node("b", minutes=20), _node("c", minutes=30))
        path = path.mark_node_completed("a").mark_node_in_progress("b")
        stats = path.get_statistics()
        assert stats.total_nodes == 3
        assert stats.completed_nodes == 1
        assert stats.in_progress_nodes == 1
        assert stats.not_started_nodes == 1
        assert stats.estimated_minutes == pytest.approx(40.0)
        assert stats.progress_percent() == 33
        assert stats.remaining_nodes() == 2

    def test_empty_statistics(self):
        stats = LearningPath.create(id="p", goal_note_id="g").get_statistics()
        assert stats.is_empty()
        assert stats.progress_percent() == 0
        assert not stats.is_completed()

    def test_circular_dependency_check(self):
        assert not _path(_node("a"), _node("b", deps=["a"])).has_circular_dependency()
        cyclic = _path(_node("a", deps=["b"]), _node("b", deps=["a"]))
        assert cyclic.has_circular_dependency()

    def test_json_round_trip(self):
        path = _path(_node("a"), _node("b", deps=["a"])).mark_node_completed("a")
        path = path.model_copy(update={"knowledge_gaps": (
            KnowledgeGapItem(concept="Sets", priority="high"),
        )})
        restored = LearningPath.model_validate_json(path.model_dump_json())
        assert restored == path


class TestStatisticsAndGaps:
    """Derived values."""

    def test_display_and_hours(self):
        stats = PathStatistics.from_nodes(4, 1, 1, minutes_per_node=20)
        assert stats.estimated_minutes == 60
        assert stats.estimated_hours() == 1.0
        assert stats.to_display_string() == "1/4 (25%) - Est. 1.0h"

    def test_merge_first_wins(self):
        merged = merge_knowledge_gaps(
            [KnowledgeGapItem(concept="Sets", priority="high")],
            [KnowledgeGapItem(concept="Sets", priority="low"),
             KnowledgeGapItem(concept="Logic")],
        )
        assert [(g.concept, g.priority) for g in merged] == [
            ("Sets", "high"), ("Logic", "medium"),
        ]
