"""
Collaborator contracts consumed by the path generator and progress use case.

Concrete implementations live in ``note_source``, ``db``, ``llm`` and
``semantic_search``; tests pass hand-written fakes.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from notepath.learning_path import LearningPath, MasteryLevel
from notepath.models import (
    ConceptExtraction,
    LearningPathAnalysis,
    NoteData,
    SemanticSearchResult,
)


class NoteSource(Protocol):
    def get_all_notes(
        self,
        folder: Optional[str] = None,
        exclude_folders: Iterable[str] = (),
    ) -> List[NoteData]: ...

    def get_note(self, note_id: str) -> Optional[NoteData]: ...


class PathStore(Protocol):
    def save(self, path: LearningPath) -> None: ...

    def find_by_id(self, path_id: str) -> Optional[LearningPath]: ...

    def find_by_goal_note(self, goal_note_id: str) -> Optional[LearningPath]: ...

    def delete(self, path_id: str) -> bool: ...


class LanguageModel(Protocol):
    def is_available(self) -> bool: ...

    def extract_prerequisite_concepts(self, goal: NoteData) -> ConceptExtraction: ...

    def analyze_notes_for_learning_path(
        self, goal: NoteData, related_notes: List[NoteData]
    ) -> LearningPathAnalysis: ...


class SemanticSearch(Protocol):
    def is_available(self) -> bool: ...

    def find_similar_to_content(
        self,
        content: str,
        limit: int = ...,
        threshold: float = ...,
        exclude_ids: Iterable[str] = (),
    ) -> List[SemanticSearchResult]: ...


class ProgressStore(Protocol):
    def get_progress(self, note_id: str) -> MasteryLevel: ...

    def update_progress(self, note_id: str, level: MasteryLevel) -> None: ...

    def update_last_studied(
        self, note_id: str, when: Optional[datetime] = None
    ) -> None: ...

    def increment_study_count(self, note_id: str) -> None: ...

    def get_bulk_progress(self, note_ids: Iterable[str]) -> Dict[str, MasteryLevel]: ...

    def reset_progress(self, note_id: str) -> None: ...