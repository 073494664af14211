"""
Pydantic models for notepath.

Collaborator payloads: notes from the note source, semantic search hits.
Language-model payloads: concept extraction, learning-path analysis.
Derived values: knowledge-gap items, path statistics.

Models that mirror language-model JSON accept both the camelCase keys
the prompts ask for and snake_case field names.
"""

import math
import posixpath
from collections import Counter
from typing import Dict, Iterable, List, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Importance = Literal["essential", "helpful", "optional"]
Priority = Literal["high", "medium", "low"]

DEFAULT_MINUTES_PER_NODE = 15


# =========================================================================
# Collaborator payloads
# =========================================================================


class NoteData(BaseModel):
    """A single note as handed over by the note source."""

    id: str = Field(min_length=1)
    path: str = Field(min_length=1)
    basename: str = ""
    content: str = ""
    links: List[str] = Field(default_factory=list)
    backlinks: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_basename(self) -> "NoteData":
        if not self.basename:
            stem = posixpath.splitext(posixpath.basename(self.path))[0]
            self.basename = stem or self.id
        return self

    @property
    def folder(self) -> str:
        return posixpath.dirname(self.path)


def prompt_titles(notes: Iterable[NoteData]) -> Dict[str, str]:
    """Note id → the title shown to the language model.

    Notes sharing a basename are shown by their extension-less path so
    the model can tell them apart.
    """
    notes = list({n.id: n for n in notes}.values())
    counts = Counter(n.basename for n in notes)
    return {
        n.id: (
            posixpath.splitext(n.path)[0] if counts[n.basename] > 1 else n.basename
        )
        for n in notes
    }


class SemanticSearchResult(BaseModel):
    """One hit from a similarity/semantic search."""

    model_config = ConfigDict(frozen=True)

    note_id: str
    note_path: str
    similarity: float


# =========================================================================
# Language-model payloads
# =========================================================================


class _ModelPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PrerequisiteConcept(_ModelPayload):
    """A concept the goal note builds on, as judged by the model."""

    concept: str
    description: str = ""
    importance: Importance = "helpful"

    @field_validator("importance", mode="before")
    @classmethod
    def _normalise_importance(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in ("essential", "helpful", "optional"):
                return "helpful"
        return value if value is not None else "helpful"


class ConceptExtraction(_ModelPayload):
    """Result of asking the model which concepts the goal depends on."""

    main_topic: str = ""
    prerequisites: List[PrerequisiteConcept] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)

    @field_validator("prerequisites", mode="after")
    @classmethod
    def _drop_blank_concepts(cls, value: List[PrerequisiteConcept]):
        return [p for p in value if p.concept.strip()]

    @field_validator("keywords", mode="after")
    @classmethod
    def _drop_blank_keywords(cls, value: List[str]):
        return [k for k in value if k.strip()]


class KnowledgeGapItem(_ModelPayload):
    """A concept needed for the goal but absent from the note set."""

    model_config = ConfigDict(frozen=True)

    concept: str = Field(min_length=1)
    reason: str = ""
    priority: Priority = "medium"
    suggested_resources: List[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _normalise_priority(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in ("high", "medium", "low"):
                return "medium"
        return value if value is not None else "medium"


class LearningPathAnalysis(_ModelPayload):
    """The model's proposed order, time estimates and gaps (keyed by title)."""

    learning_order: List[str]
    estimated_minutes: Dict[str, float] = Field(default_factory=dict)
    knowledge_gaps: List[KnowledgeGapItem] = Field(default_factory=list)

    @field_validator("knowledge_gaps", mode="before")
    @classmethod
    def _accept_plain_string_gaps(cls, value):
        # Older prompt revisions answered with a bare list of concept names.
        if not isinstance(value, list):
            return value
        gaps = []
        for item in value:
            if isinstance(item, str):
                item = {"concept": item}
            if isinstance(item, dict) and not str(item.get("concept") or "").strip():
                continue
            gaps.append(item)
        return gaps

    @field_validator("estimated_minutes", mode="before")
    @classmethod
    def _drop_non_numeric_estimates(cls, value):
        if not isinstance(value, dict):
            return value
        return {
            k: v for k, v in value.items()
            if isinstance(v, (int, float)) and not isinstance(v, bool)
            and (isinstance(v, int) or math.isfinite(v))
        }


# =========================================================================
# Derived values
# =========================================================================


class PathStatistics(BaseModel):
    """Progress counters for a path; computed on demand, never stored."""

    model_config = ConfigDict(frozen=True)

    total_nodes: int = 0
    completed_nodes: int = 0
    in_progress_nodes: int = 0
    not_started_nodes: int = 0
    estimated_minutes: float = 0.0

    @classmethod
    def from_nodes(
        cls,
        total: int,
        completed: int,
        in_progress: int,
        minutes_per_node: float = DEFAULT_MINUTES_PER_NODE,
    ) -> "PathStatistics":
        """Derive not-started count and remaining time from raw counts."""
        remaining = total - completed
        return cls(
            total_nodes=total,
            completed_nodes=completed,
            in_progress_nodes=in_progress,
            not_started_nodes=total - completed - in_progress,
            estimated_minutes=remaining * minutes_per_node,
        )

    def progress_percent(self) -> int:
        if self.total_nodes == 0:
            return 0
        return round(self.completed_nodes / self.total_nodes * 100)

    def remaining_nodes(self) -> int:
        return self.total_nodes - self.completed_nodes

    def estimated_hours(self) -> float:
        return round(self.estimated_minutes / 60, 1)

    def is_completed(self) -> bool:
        return self.total_nodes > 0 and self.completed_nodes == self.total_nodes

    def is_empty(self) -> bool:
        return self.total_nodes == 0

    def to_display_string(self) -> str:
        return (
            f"{self.completed_nodes}/{self.total_nodes} "
            f"({self.progress_percent()}%) - Est. {self.estimated_hours()}h"
        )


def suggested_resources_for(concept: str) -> List[str]:
    """Generic search hints for a concept that has no note yet."""
    return [
        f'Search "{concept}" in an encyclopedia',
        f'"{concept}" introductory tutorial',
        f'"{concept}" textbook chapter or lecture notes',
    ]
