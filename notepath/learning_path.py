"""
The learning path aggregate: mastery states, nodes and the path itself.

All three are immutable; every "mutation" returns a new value.  A path
keeps its node ``order`` contiguous and 1-based after any structural
change, and recomputes statistics on every call rather than storing them.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from notepath.models import DEFAULT_MINUTES_PER_NODE, KnowledgeGapItem, PathStatistics
from notepath.relations import DependencyRelation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================================================
# Mastery level
# =========================================================================


class MasteryLevel(str, Enum):
    """NOT_STARTED → IN_PROGRESS → COMPLETED, with ``reset`` from anywhere."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "MasteryLevel":
        """Lenient parse; unknown or empty values mean not started."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NOT_STARTED

    def is_not_started(self) -> bool:
        return self is MasteryLevel.NOT_STARTED

    def is_in_progress(self) -> bool:
        return self is MasteryLevel.IN_PROGRESS

    def is_completed(self) -> bool:
        return self is MasteryLevel.COMPLETED

    def start_learning(self) -> "MasteryLevel":
        # Completed work is never regressed by starting again.
        if self is MasteryLevel.COMPLETED:
            return self
        return MasteryLevel.IN_PROGRESS

    def complete(self) -> "MasteryLevel":
        return MasteryLevel.COMPLETED

    def reset(self) -> "MasteryLevel":
        return MasteryLevel.NOT_STARTED

    def progress_percent(self) -> int:
        return {
            MasteryLevel.NOT_STARTED: 0,
            MasteryLevel.IN_PROGRESS: 50,
            MasteryLevel.COMPLETED: 100,
        }[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


# =========================================================================
# Learning node
# =========================================================================


class LearningNode(BaseModel):
    """One note's place in a path, with its progress."""

    model_config = ConfigDict(frozen=True)

    note_id: str = Field(min_length=1)
    note_path: str = Field(min_length=1)
    title: str = ""
    order: int = 0
    mastery_level: MasteryLevel = MasteryLevel.NOT_STARTED
    dependencies: Tuple[DependencyRelation, ...] = ()
    last_studied: Optional[datetime] = None
    estimated_minutes: int = Field(default=DEFAULT_MINUTES_PER_NODE, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _default_title(cls, data):
        if isinstance(data, dict) and not data.get("title"):
            data = {**data, "title": data.get("note_id", "")}
        return data

    def is_completed(self) -> bool:
        return self.mastery_level.is_completed()

    def is_in_progress(self) -> bool:
        return self.mastery_level.is_in_progress()

    def is_not_started(self) -> bool:
        return self.mastery_level.is_not_started()

    def get_prerequisites(self) -> List[DependencyRelation]:
        return [d for d in self.dependencies if d.is_prerequisite()]

    def has_prerequisites(self) -> bool:
        return any(d.is_prerequisite() for d in self.dependencies)

    def start_learning(self, now: Optional[datetime] = None) -> "LearningNode":
        return self.model_copy(update={
            "mastery_level": self.mastery_level.start_learning(),
            "last_studied": now or _utcnow(),
        })

    def complete(self, now: Optional[datetime] = None) -> "LearningNode":
        return self.model_copy(update={
            "mastery_level": self.mastery_level.complete(),
            "last_studied": now or _utcnow(),
        })

    def reset(self) -> "LearningNode":
        return self.model_copy(update={
            "mastery_level": self.mastery_level.reset(),
            "last_studied": None,
        })

    def with_order(self, order: int) -> "LearningNode":
        return self.model_copy(update={"order": order})

    def with_dependencies(
        self, dependencies: Iterable[DependencyRelation]
    ) -> "LearningNode":
        return self.model_copy(update={"dependencies": tuple(dependencies)})

    def to_display_string(self) -> str:
        return f"[{self.mastery_level.label}] {self.order}. {self.title}"


# =========================================================================
# Learning path (aggregate root)
# =========================================================================


def _renumber(nodes: Iterable[LearningNode]) -> Tuple[LearningNode, ...]:
    return tuple(node.with_order(i) for i, node in enumerate(nodes, start=1))


def merge_knowledge_gaps(
    *groups: Iterable[KnowledgeGapItem],
) -> List[KnowledgeGapItem]:
    """Concatenate gap lists, keeping the first item seen for each concept."""
    merged: Dict[str, KnowledgeGapItem] = {}
    for group in groups:
        for gap in group:
            key = gap.concept.strip()
            if key not in merged:
                merged[key] = gap
    return list(merged.values())


class LearningPath(BaseModel):
    """Ordered nodes toward a goal note, plus the gaps found on the way."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    goal_note_id: str = Field(min_length=1)
    goal_note_title: str = ""
    nodes: Tuple[LearningNode, ...] = ()
    knowledge_gaps: Tuple[KnowledgeGapItem, ...] = ()
    total_analyzed_notes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        id: str,
        goal_note_id: str,
        goal_note_title: str = "",
        nodes: Sequence[LearningNode] = (),
        knowledge_gaps: Sequence[KnowledgeGapItem] = (),
        total_analyzed_notes: int = 0,
    ) -> "LearningPath":
        now = _utcnow()
        return cls(
            id=id,
            goal_note_id=goal_note_id,
            goal_note_title=goal_note_title or goal_note_id,
            nodes=_renumber(nodes),
            knowledge_gaps=tuple(merge_knowledge_gaps(knowledge_gaps)),
            total_analyzed_notes=total_analyzed_notes,
            created_at=now,
            updated_at=now,
        )

    def _with_nodes(self, nodes: Iterable[LearningNode]) -> "LearningPath":
        return self.model_copy(
            update={"nodes": tuple(nodes), "updated_at": _utcnow()}
        )

    # --- structure -------------------------------------------------------

    def add_node(self, node: LearningNode) -> "LearningPath":
        """Replace the node with the same note id, or append it at the end."""
        for i, existing in enumerate(self.nodes):
            if existing.note_id == node.note_id:
                nodes = list(self.nodes)
                nodes[i] = node.with_order(existing.order)
                return self._with_nodes(nodes)
        return self._with_nodes(
            self.nodes + (node.with_order(len(self.nodes) + 1),)
        )

    def remove_node(self, note_id: str) -> "LearningPath":
        return self._with_nodes(
            _renumber(n for n in self.nodes if n.note_id != note_id)
        )

    def set_nodes(self, nodes: Sequence[LearningNode]) -> "LearningPath":
        return self._with_nodes(_renumber(nodes))

    # --- progress --------------------------------------------------------

    def update_node_progress(
        self,
        note_id: str,
        mastery_level: MasteryLevel,
        now: Optional[datetime] = None,
    ) -> "LearningPath":
        """Apply the node transition matching *mastery_level*.

        Raises:
            KeyError: if *note_id* is not part of this path.
        """
        if self.get_node(note_id) is None:
            raise KeyError(f"Node '{note_id}' not found in path '{self.id}'")

        def transition(node: LearningNode) -> LearningNode:
            if node.note_id != note_id:
                return node
            if mastery_level.is_completed():
                return node.complete(now)
            if mastery_level.is_in_progress():
                return node.start_learning(now)
            return node.reset()

        return self._with_nodes(transition(n) for n in self.nodes)

    def mark_node_completed(self, note_id: str) -> "LearningPath":
        return self.update_node_progress(note_id, MasteryLevel.COMPLETED)

    def mark_node_in_progress(self, note_id: str) -> "LearningPath":
        return self.update_node_progress(note_id, MasteryLevel.IN_PROGRESS)

    def reset_node(self, note_id: str) -> "LearningPath":
        return self.update_node_progress(note_id, MasteryLevel.NOT_STARTED)

    def reset_all_progress(self) -> "LearningPath":
        return self._with_nodes(n.reset() for n in self.nodes)

    # --- queries ---------------------------------------------------------

    def get_node(self, note_id: str) -> Optional[LearningNode]:
        return next((n for n in self.nodes if n.note_id == note_id), None)

    def get_node_by_order(self, order: int) -> Optional[LearningNode]:
        return next((n for n in self.nodes if n.order == order), None)

    def get_current_node(self) -> Optional[LearningNode]:
        """First node in order that is not completed."""
        return next((n for n in self.nodes if not n.is_completed()), None)

    def get_completed_nodes(self) -> List[LearningNode]:
        return [n for n in self.nodes if n.is_completed()]

    def get_in_progress_nodes(self) -> List[LearningNode]:
        return [n for n in self.nodes if n.is_in_progress()]

    def get_not_started_nodes(self) -> List[LearningNode]:
        return [n for n in self.nodes if n.is_not_started()]

    def get_statistics(self) -> PathStatistics:
        total_minutes = sum(n.estimated_minutes for n in self.nodes)
        avg = (
            total_minutes / len(self.nodes)
            if self.nodes else DEFAULT_MINUTES_PER_NODE
        )
        return PathStatistics.from_nodes(
            len(self.nodes),
            len(self.get_completed_nodes()),
            len(self.get_in_progress_nodes()),
            avg,
        )

    def is_completed(self) -> bool:
        return bool(self.nodes) and all(n.is_completed() for n in self.nodes)

    def is_empty(self) -> bool:
        return not self.nodes

    def has_circular_dependency(self) -> bool:
        """DFS cycle check over the nodes' own prerequisite relations."""
        adjacency: Dict[str, List[str]] = {n.note_id: [] for n in self.nodes}
        for node in self.nodes:
            for dep in node.get_prerequisites():
                if dep.source_id in adjacency and dep.target_id in adjacency:
                    adjacency[dep.source_id].append(dep.target_id)

        unvisited, on_stack, done = 0, 1, 2
        state = dict.fromkeys(adjacency, unvisited)
        for start in adjacency:
            if state[start] != unvisited:
                continue
            state[start] = on_stack
            stack = [(start, iter(adjacency[start]))]
            while stack:
                current, children = stack[-1]
                for child in children:
                    if state[child] == on_stack:
                        return True
                    if state[child] == unvisited:
                        state[child] = on_stack
                        stack.append((child, iter(adjacency[child])))
                        break
                else:
                    state[current] = done
                    stack.pop()
        return False

    def to_display_string(self) -> str:
        return f"{self.goal_note_title} - {self.get_statistics().to_display_string()}"
