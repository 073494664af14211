"""
Dependency graph analysis: ordering, cycle detection, traversal, levels.

Graphs are ``networkx.DiGraph`` instances whose edges mean "must be
learned before".  Every ordering is deterministic: ties between
available nodes are broken lexicographically by note id.
"""

import heapq
import logging
from typing import Dict, Iterable, List, Set

import networkx as nx

from notepath.errors import CircularDependency, GoalNotFound
from notepath.relations import DependencyRelation

logger = logging.getLogger(__name__)


# =========================================================================
# Construction
# =========================================================================


def build_graph(
    node_ids: Iterable[str],
    relations: Iterable[DependencyRelation],
) -> nx.DiGraph:
    """Build a prerequisite graph over *node_ids*.

    Every id becomes a node (isolated or not).  Only ``prerequisite``
    relations whose endpoints are both known add an edge; the rest are
    dropped.  Duplicate edges collapse.
    """
    G = nx.DiGraph()
    G.add_nodes_from(node_ids)

    dropped = 0
    for rel in relations:
        if not rel.is_prerequisite():
            continue
        if rel.source_id in G and rel.target_id in G:
            G.add_edge(rel.source_id, rel.target_id, confidence=rel.confidence)
        else:
            dropped += 1

    if dropped:
        logger.debug("build_graph: dropped %d relation(s) to unknown ids.", dropped)
    return G


# =========================================================================
# Ordering
# =========================================================================


def topological_sort(G: nx.DiGraph) -> List[str]:
    """Kahn's algorithm with lexicographic tie-breaking.

    Raises:
        CircularDependency: if the graph contains a cycle.
    """
    try:
        return list(nx.lexicographical_topological_sort(G))
    except nx.NetworkXUnfeasible as exc:
        raise CircularDependency("Graph contains a cycle; cannot order it.") from exc


def detect_cycle(G: nx.DiGraph) -> bool:
    """True iff the graph contains a directed cycle."""
    try:
        cycle = nx.find_cycle(G, orientation="original")
    except nx.NetworkXNoCycle:
        return False
    logger.debug("Cycle found: %s", [u for u, _, _ in cycle])
    return True


def cycle_tolerant_sort(G: nx.DiGraph) -> List[str]:
    """Kahn's algorithm that never fails.

    Proceeds like :func:`topological_sort`; once no zero in-degree node
    is left, the remaining (cyclic) nodes are appended in their original
    insertion order.
    """
    in_degree: Dict[str, int] = {n: G.in_degree(n) for n in G.nodes}
    ready = [n for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)

    order: List[str] = []
    placed: Set[str] = set()
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        placed.add(node)
        for succ in G.successors(node):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, succ)

    leftovers = [n for n in G.nodes if n not in placed]
    if leftovers:
        logger.warning(
            "⚠ %d node(s) on cycles appended in original order: %s",
            len(leftovers), leftovers,
        )
    return order + leftovers


def get_levels(G: nx.DiGraph) -> List[List[str]]:
    """Partition the graph into layers of mutually independent nodes.

    Each level is sorted; every node sits in a later level than all of
    its direct prerequisites.

    Raises:
        CircularDependency: if the graph contains a cycle.
    """
    try:
        return [sorted(level) for level in nx.topological_generations(G)]
    except nx.NetworkXUnfeasible as exc:
        raise CircularDependency("Graph contains a cycle; cannot level it.") from exc


# =========================================================================
# Traversal
# =========================================================================


def get_ancestors(G: nx.DiGraph, node_id: str) -> Set[str]:
    """Every node from which *node_id* is reachable (start excluded)."""
    if node_id not in G:
        return set()
    return set(nx.ancestors(G, node_id))


def get_descendants(G: nx.DiGraph, node_id: str) -> Set[str]:
    """Every node reachable from *node_id* (start excluded)."""
    if node_id not in G:
        return set()
    return set(nx.descendants(G, node_id))


def goal_subgraph(G: nx.DiGraph, goal_id: str) -> nx.DiGraph:
    """Induced subgraph on the goal and its ancestors.

    Raises:
        GoalNotFound: if *goal_id* is not a node of *G*.
    """
    if goal_id not in G:
        raise GoalNotFound(goal_id)
    keep = get_ancestors(G, goal_id) | {goal_id}
    return G.subgraph(keep).copy()


def find_path_to_goal(G: nx.DiGraph, goal_id: str) -> List[str]:
    """Ordered prerequisites of *goal_id*, ending with the goal itself.

    Raises:
        GoalNotFound: if the goal is not in the graph.
        CircularDependency: if the goal's ancestry contains a cycle.
    """
    return topological_sort(goal_subgraph(G, goal_id))
