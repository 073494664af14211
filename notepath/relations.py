"""
Dependency relations between notes, and the mapping from note links to them.

A ``DependencyRelation`` reads "``source_id`` must be learned before
``target_id``" when its type is ``prerequisite``.  ``related`` and
``optional`` relations are carried along as metadata only.

How a wiki-style link translates into a prerequisite is a convention,
not a fact about the notes, so it lives in exactly one place:
``link_to_relation`` (edge derivation) and ``build_prerequisite_index``
(which neighbours the backward traversal follows).  Both take a
``LinkDirection``:

- ``LINKER_FIRST``: "A links to B" ⇒ A is a prerequisite of B.  Walking
  back from a goal follows its *backlinks*.
- ``LINKED_FIRST``: "A links to B" ⇒ B is a prerequisite of A (to read A
  you must know B).  Walking back from a goal follows its *outgoing* links.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notepath.models import NoteData

logger = logging.getLogger(__name__)

DEFAULT_LINK_CONFIDENCE = 0.7


class DependencyType(str, Enum):
    PREREQUISITE = "prerequisite"
    RELATED = "related"
    OPTIONAL = "optional"

    @classmethod
    def parse(cls, value: str) -> "DependencyType":
        """Case-insensitive parse; anything unrecognised is ``RELATED``."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.RELATED


class DependencyRelation(BaseModel):
    """Immutable directed relation between two notes."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    type: DependencyType = DependencyType.PREREQUISITE
    confidence: float = 1.0

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> DependencyType:
        if isinstance(value, DependencyType):
            return value
        return DependencyType.parse(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return max(0.0, min(1.0, float(value)))

    @model_validator(mode="after")
    def _reject_self_reference(self) -> "DependencyRelation":
        if self.source_id == self.target_id:
            raise ValueError("Self-reference dependency is not allowed")
        return self

    # --- factories -------------------------------------------------------

    @classmethod
    def prerequisite(
        cls, source_id: str, target_id: str, confidence: float = 1.0
    ) -> "DependencyRelation":
        return cls(
            source_id=source_id,
            target_id=target_id,
            type=DependencyType.PREREQUISITE,
            confidence=confidence,
        )

    @classmethod
    def related(
        cls, source_id: str, target_id: str, confidence: float = 1.0
    ) -> "DependencyRelation":
        return cls(
            source_id=source_id,
            target_id=target_id,
            type=DependencyType.RELATED,
            confidence=confidence,
        )

    @classmethod
    def optional(
        cls, source_id: str, target_id: str, confidence: float = 1.0
    ) -> "DependencyRelation":
        return cls(
            source_id=source_id,
            target_id=target_id,
            type=DependencyType.OPTIONAL,
            confidence=confidence,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DependencyRelation":
        """Build from a plain mapping; accepts snake_case or camelCase keys."""
        return cls(
            source_id=data.get("source_id", data.get("sourceId", "")),
            target_id=data.get("target_id", data.get("targetId", "")),
            type=data.get("type", DependencyType.RELATED),
            confidence=data.get("confidence", 1.0),
        )

    # --- queries ---------------------------------------------------------

    def is_prerequisite(self) -> bool:
        return self.type is DependencyType.PREREQUISITE

    def is_related(self) -> bool:
        return self.type is DependencyType.RELATED

    def is_optional(self) -> bool:
        return self.type is DependencyType.OPTIONAL

    def inverse(self) -> "DependencyRelation":
        """Swap source and target, keeping type and confidence."""
        return DependencyRelation(
            source_id=self.target_id,
            target_id=self.source_id,
            type=self.type,
            confidence=self.confidence,
        )

    def equals(self, other: "DependencyRelation") -> bool:
        """Equality on endpoints and type only (confidence ignored)."""
        return (
            self.source_id == other.source_id
            and self.target_id == other.target_id
            and self.type is other.type
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_display_string(self) -> str:
        return f"{self.source_id} → {self.target_id} ({self.type.value})"


# =========================================================================
# Link → dependency mapping
# =========================================================================


class LinkDirection(str, Enum):
    LINKER_FIRST = "linker_first"
    LINKED_FIRST = "linked_first"


def link_to_relation(
    from_id: str,
    to_id: str,
    direction: LinkDirection = LinkDirection.LINKER_FIRST,
    confidence: float = DEFAULT_LINK_CONFIDENCE,
) -> DependencyRelation:
    """Translate the note link ``from_id → to_id`` into a prerequisite relation."""
    direction = LinkDirection(direction)
    if direction is LinkDirection.LINKER_FIRST:
        return DependencyRelation.prerequisite(from_id, to_id, confidence)
    return DependencyRelation.prerequisite(to_id, from_id, confidence)


def build_prerequisite_index(
    notes: Iterable[NoteData],
    direction: LinkDirection = LinkDirection.LINKER_FIRST,
) -> Dict[str, List[str]]:
    """Map each note id to the ids of notes that are its prerequisites.

    Under ``LINKER_FIRST`` a note's prerequisites are the notes linking to
    it: declared backlinks merged with a reverse map of everyone's links.
    Under ``LINKED_FIRST`` they are the note's own outgoing links.  Ids not
    present in *notes* are dropped; order is first-seen, duplicates removed.
    """
    direction = LinkDirection(direction)
    notes = list(notes)
    known = {n.id for n in notes}

    if direction is LinkDirection.LINKED_FIRST:
        raw = {n.id: list(n.links) for n in notes}
    else:
        reverse: Dict[str, List[str]] = defaultdict(list)
        for note in notes:
            for link in note.links:
                reverse[link].append(note.id)
        raw = {n.id: list(n.backlinks) + reverse.get(n.id, []) for n in notes}

    index: Dict[str, List[str]] = {}
    for note_id, neighbours in raw.items():
        seen = dict.fromkeys(
            nid for nid in neighbours if nid in known and nid != note_id
        )
        index[note_id] = list(seen)
    return index


def derive_link_relations(
    notes: Iterable[NoteData],
    node_ids: Iterable[str],
    direction: LinkDirection = LinkDirection.LINKER_FIRST,
    confidence: float = DEFAULT_LINK_CONFIDENCE,
) -> List[DependencyRelation]:
    """Prerequisite relations implied by links that stay inside *node_ids*.

    A declared backlink counts as a link from the backlinking note, so
    every note the traversal reaches through a backlink carries an edge.
    """
    node_set = set(node_ids)
    pairs: Dict[Tuple[str, str], None] = {}
    for note in notes:
        if note.id not in node_set:
            continue
        for link in note.links:
            pairs.setdefault((note.id, link), None)
        for linker in note.backlinks:
            pairs.setdefault((linker, note.id), None)

    relations = [
        link_to_relation(linker, linked, direction, confidence)
        for linker, linked in pairs
        if linker in node_set and linked in node_set and linker != linked
    ]
    logger.debug(
        "Derived %d link relation(s) over %d note(s) (%s).",
        len(relations), len(node_set), LinkDirection(direction).value,
    )
    return relations
