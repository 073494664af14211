"""
pytest suite for the dependency graph analyzer.

Graphs are tiny hand-built DiGraphs; no I/O.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from notepath.dependency_analyzer import (
    build_graph,
    cycle_tolerant_sort,
    detect_cycle,
    find_path_to_goal,
    get_ancestors,
    get_descendants,
    get_levels,
    topological_sort,
)
from notepath.errors import CircularDependency, GoalNotFound
from notepath.relations import DependencyRelation


# =========================================================================
# Helpers
# =========================================================================


def _graph(nodes, edges):
    rels = [DependencyRelation.prerequisite(s, t) for s, t in edges]
    return build_graph(nodes, rels)


DIAMOND = (["a", "b", "c", "d"], [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")])
TRIANGLE = (["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])


class TestBuildGraph:
    """Graph construction from relations."""

    def test_isolated_nodes_kept(self):
        G = _graph(["x", "y"], [])
        assert set(G.nodes) == {"x", "y"}
        assert G.number_of_edges() == 0

    def test_only_prerequisites_become_edges(self):
        rels = [
            DependencyRelation.prerequisite("a", "b"),
            DependencyRelation.related("b", "c"),
            DependencyRelation.optional("a", "c"),
        ]
        G = build_graph(["a", "b", "c"], rels)
        assert list(G.edges) == [("a", "b")]

    def test_unknown_endpoints_dropped(self):
        G = _graph(["a", "b"], [("a", "b"), ("a", "zzz"), ("qqq", "b")])
        assert list(G.edges) == [("a", "b")]

    def test_duplicate_edges_collapse(self):
        G = _graph(["a", "b"], [("a", "b"), ("a", "b")])
        assert G.number_of_edges() == 1


class TestTopologicalSort:
    """Kahn ordering with lexicographic ties."""

    def test_diamond(self):
        order = topological_sort(_graph(*DIAMOND))
        assert order[0] == "a"
        assert order[-1] == "d"
        assert order == ["a", "b", "c", "d"]

    def test_every_edge_respected(self):
        nodes = ["n1", "n2", "n3", "n4", "n5", "n6"]
        edges = [("n6", "n1"), ("n5", "n2"), ("n1", "n3"), ("n2", "n3"), ("n3", "n4")]
        order = topological_sort(_graph(nodes, edges))
        assert sorted(order) == sorted(nodes)
        for u, v in edges:
            assert order.index(u) < order.index(v)

    def test_deterministic_tie_break(self):
        order = topological_sort(_graph(["z", "m", "a"], []))
        assert order == ["a", "m", "z"]

    def test_cycle_raises(self):
        with pytest.raises(CircularDependency):
            topological_sort(_graph(*TRIANGLE))


class TestDetectCycle:
    """Cycle detection agrees with sort failure."""

    def test_triangle_has_cycle(self):
        assert detect_cycle(_graph(*TRIANGLE)) is True

    def test_diamond_has_no_cycle(self):
        assert detect_cycle(_graph(*DIAMOND)) is False

    def test_cycle_iff_sort_fails(self):
        for nodes, edges in (DIAMOND, TRIANGLE, (["a", "b"], [("a", "b"), ("b", "a")])):
            G = _graph(nodes, edges)
            try:
                topological_sort(G)
                sort_failed = False
            except CircularDependency:
                sort_failed = True
            assert detect_cycle(G) is sort_failed


class TestCycleTolerantSort:
    """Fallback ordering never fails."""

    def test_triangle_contains_each_once(self):
        order = cycle_tolerant_sort(_graph(*TRIANGLE))
        assert sorted(order) == ["a", "b", "c"]
        assert order == cycle_tolerant_sort(_graph(*TRIANGLE))

    def test_acyclic_part_comes_first(self):
        G = _graph(["root", "a", "b"], [("root", "a"), ("a", "b"), ("b", "a")])
        order = cycle_tolerant_sort(G)
        assert order == ["root", "a", "b"]

    def test_matches_strict_sort_when_acyclic(self):
        G = _graph(*DIAMOND)
        assert cycle_tolerant_sort(G) == topological_sort(G)


class TestTraversal:
    """Ancestors, descendants and goal paths."""

    def test_ancestors_and_descendants(self):
        G = _graph(*DIAMOND)
        assert get_ancestors(G, "d") == {"a", "b", "c"}
        assert get_descendants(G, "a") == {"b", "c", "d"}
        assert get_ancestors(G, "a") == set()

    def test_unknown_node_is_empty(self):
        G = _graph(*DIAMOND)
        assert get_ancestors(G, "nope") == set()
        assert get_descendants(G, "nope") == set()

    def test_path_to_goal_excludes_unrelated(self):
        G = _graph(["a", "b", "goal", "x", "y"], [("a", "b"), ("b", "goal"), ("x", "y")])
        assert find_path_to_goal(G, "goal") == ["a", "b", "goal"]

    def test_goal_is_last(self):
        G = _graph(*DIAMOND)
        path = find_path_to_goal(G, "c")
        assert path == ["a", "c"]

    def test_missing_goal_raises(self):
        with pytest.raises(GoalNotFound):
            find_path_to_goal(_graph(*DIAMOND), "missing")


class TestLevels:
    """Level partitioning."""

    def test_diamond_levels(self):
        assert get_levels(_graph(*DIAMOND)) == [["a"], ["b", "c"], ["d"]]

    def test_levels_partition_and_respect_edges(self):
        nodes, edges = ["p", "q", "r", "s", "t"], [("p", "r"), ("q", "r"), ("r", "t")]
        levels = get_levels(_graph(nodes, edges))
        flat = [n for level in levels for n in level]
        assert sorted(flat) == sorted(nodes)
        level_of = {n: i for i, level in enumerate(levels) for n in level}
        for u, v in edges:
            assert level_of[u] < level_of[v]

    def test_cycle_raises(self):
        with pytest.raises(CircularDependency):
            get_levels(_graph(*TRIANGLE))
